#!/usr/bin/env python3
from __future__ import annotations

import importlib
import json
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient


@dataclass
class Scenario:
  name: str
  text: str
  language: str
  expect_emergency: bool | None


def run() -> int:
  repo_root = Path(__file__).resolve().parents[1]
  backend_dir = repo_root / "backend"
  if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

  # Smoke checks talk to the real providers configured in the environment.
  os.environ.setdefault("HEALBUDDY_DISABLE_EXTERNAL", "false")
  os.environ.setdefault("HEALBUDDY_STORE", "memory")

  backend_module = importlib.import_module("main")
  backend_module = importlib.reload(backend_module)
  if not backend_module.container.reasoning.available:
    print("No reasoning provider configured (set GEMINI_API_KEY or OPENAI_API_KEY).")
    return 2

  session_key = f"smoke-session-{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S')}"
  headers = {"Authorization": "Bearer smoke.user@example.com"}

  scenarios = [
    Scenario(name="Mild Headache", text="I have a mild headache since this morning.", language="en", expect_emergency=False),
    Scenario(
      name="Chest Pain Escalation",
      text="I have crushing chest pain spreading to my left arm and I am short of breath.",
      language="en",
      expect_emergency=True,
    ),
    Scenario(name="Hindi Fever", text="मुझे दो दिन से बुखार और गले में खराश है।", language="hi", expect_emergency=None),
  ]

  results: list[dict[str, Any]] = []

  with TestClient(backend_module.app) as client:
    client.post(
      "/profile",
      headers=headers,
      json={"full_name": "Smoke Tester", "age": 40, "gender": "unspecified", "medical_history": "None"},
    )
    for scenario in scenarios:
      client.put("/profile/language", headers=headers, json={"language": scenario.language})
      response = client.post(
        "/chat/analyze",
        headers=headers,
        data={"text": scenario.text, "session_key": session_key},
      )
      scenario_result: dict[str, Any] = {
        "name": scenario.name,
        "language": scenario.language,
        "status_code": response.status_code,
      }
      if response.status_code != 200:
        scenario_result["pass"] = False
        scenario_result["error"] = f"/chat/analyze returned {response.status_code}"
        results.append(scenario_result)
        continue

      body = response.json()
      analysis = body.get("analysis") if isinstance(body, dict) else None
      scenario_result["outcome"] = body.get("status")
      scenario_result["analysis"] = analysis
      scenario_result["reply_preview"] = (body.get("messages") or [{}])[-1].get("text", "")[:240]

      if not isinstance(analysis, dict):
        scenario_result["pass"] = False
        scenario_result["error"] = "No analysis result returned."
      elif scenario.expect_emergency is not None and analysis.get("emergencyContact") != scenario.expect_emergency:
        scenario_result["pass"] = False
        scenario_result["error"] = f"Expected emergencyContact={scenario.expect_emergency}"
      else:
        scenario_result["pass"] = True
      results.append(scenario_result)

    translation = client.post(
      "/translate",
      headers=headers,
      json={"text": "Drink plenty of fluids and rest.", "source": "en", "target": "ta"},
    )
    translated_text = translation.json().get("text") if translation.status_code == 200 else None
    results.append(
      {
        "name": "English To Tamil Translation",
        "language": "ta",
        "status_code": translation.status_code,
        "reply_preview": translated_text,
        "pass": bool(translated_text) and translated_text != "Drink plenty of fluids and rest.",
      }
    )

  passed = sum(1 for item in results if item.get("pass"))
  failed = len(results) - passed
  timestamp = datetime.now(timezone.utc).isoformat()

  report_lines = [
    "# HealBuddy Chat Smoke Report",
    "",
    f"- Timestamp (UTC): `{timestamp}`",
    f"- Providers: `{[provider.provider for provider in backend_module.container.reasoning.providers]}`",
    f"- Total scenarios: `{len(results)}`",
    f"- Passed: `{passed}`",
    f"- Failed: `{failed}`",
    "",
    "## Scenario Results",
    "",
  ]

  for item in results:
    status = "PASS" if item.get("pass") else "FAIL"
    report_lines.append(f"### {status} - {item['name']}")
    report_lines.append(f"- Language: `{item.get('language')}`")
    report_lines.append(f"- Status code: `{item.get('status_code')}`")
    if item.get("outcome"):
      report_lines.append(f"- Outcome: `{item['outcome']}`")
    if item.get("error"):
      report_lines.append(f"- Error: `{item['error']}`")
    preview = item.get("reply_preview") or ""
    if preview:
      report_lines.append(f"- Reply preview: `{preview}`")
    if "analysis" in item:
      report_lines.append("- Analysis payload:")
      report_lines.append("```json")
      report_lines.append(json.dumps(item.get("analysis"), indent=2, ensure_ascii=False))
      report_lines.append("```")
    report_lines.append("")

  report_path = repo_root / "HEALBUDDY_SMOKE_REPORT.md"
  report_path.write_text("\n".join(report_lines), encoding="utf-8")
  print(f"Wrote report: {report_path}")
  print(f"Passed {passed}/{len(results)} scenarios.")

  return 0 if failed == 0 else 1


if __name__ == "__main__":
  raise SystemExit(run())
