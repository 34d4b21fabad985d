from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from .input_capture import Submission
from .languages import DEFAULT_LANGUAGE, get_language
from .models import ANALYSIS_RESPONSE_SCHEMA, REQUIRED_ANALYSIS_FIELDS, AnalysisResult, UserContext

logger = logging.getLogger(__name__)


class EmptyInputError(ValueError):
    pass


class ReasoningServiceError(RuntimeError):
    pass


class AnalysisSchemaError(ReasoningServiceError):
    pass


BASE_SYSTEM_INSTRUCTION = """
You are HealBuddy, a compassionate and careful AI health assistant.
Analyze the user's symptoms (typed text, spoken audio, or photos of rashes and wounds) and give structured health guidance.

RULES:
1. You are not a doctor. Always include a disclaimer.
2. Do not diagnose definitively. Use phrasing such as "Possible causes include...".
3. Do not suggest prescription-only medicines. Suggest only over-the-counter options or home remedies.
4. Severity:
   - MILD: cold, minor headache, fatigue, sore throat, acidity, minor rashes.
   - MODERATE: persistent pain, fever above 101F, dizziness, migraine, spreading rashes, signs of infection.
   - SEVERE: chest pain, trouble breathing, fainting, severe dehydration, uncontrolled bleeding, stroke symptoms, severe allergic reactions.

Respond strictly with JSON matching the provided schema.
If the case is SEVERE, set "emergencyContact" to true and advise immediate medical attention.
""".strip()


def build_system_instruction(user: UserContext | None, language_code: str | None) -> str:
    instruction = BASE_SYSTEM_INSTRUCTION
    language = get_language(language_code)
    if language and language.code != DEFAULT_LANGUAGE:
        instruction += (
            f"\n\nIMPORTANT: Respond in {language.name} ({language.native_name}). "
            f"All text fields in the JSON response (summary, possibleCauses, remedies, medicalAdvice, "
            f"disclaimer) MUST be in {language.name}."
        )
    if user:
        age = user.age if user.age is not None else "unknown"
        instruction += (
            "\n\nUSER CONTEXT:\n"
            f"Name: {user.full_name}\n"
            f"Age: {age}\n"
            f"Gender: {user.gender or 'unspecified'}\n"
            f"Medical History: {user.medical_history or 'none reported'}\n\n"
            "Tailor the advice to this profile and medical history. Address the user by name where appropriate."
        )
    return instruction


def build_request_parts(submission: Submission) -> list[dict[str, Any]]:
    """Audio, then image, then text; at least one part is required."""
    parts: list[dict[str, Any]] = []
    if submission.audio is not None:
        parts.append({"kind": "audio", "mime_type": submission.audio.mime_type, "data": submission.audio.base64})
    if submission.image is not None:
        parts.append({"kind": "image", "mime_type": submission.image.mime_type, "data": submission.image.base64})
    if submission.text:
        parts.append({"kind": "text", "text": submission.text})
    if not parts:
        raise EmptyInputError("No input provided.")
    return parts


def _extract_json_object(raw_text: str) -> dict[str, Any] | None:
    text = (raw_text or "").strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
        if isinstance(payload, dict):
            return payload
    except json.JSONDecodeError:
        pass

    for start_idx in [idx for idx, char in enumerate(text) if char == "{"]:
        depth = 0
        for end_idx in range(start_idx, len(text)):
            char = text[end_idx]
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
            if depth == 0:
                candidate = text[start_idx : end_idx + 1]
                try:
                    payload = json.loads(candidate)
                    if isinstance(payload, dict):
                        return payload
                except json.JSONDecodeError:
                    break
    return None


def parse_analysis_payload(raw: str | dict[str, Any]) -> AnalysisResult:
    payload = raw if isinstance(raw, dict) else _extract_json_object(raw)
    if payload is None:
        raise AnalysisSchemaError("Reasoning service returned no JSON object.")
    missing = [name for name in REQUIRED_ANALYSIS_FIELDS if name not in payload]
    if missing:
        raise AnalysisSchemaError(f"Reasoning response missing fields: {', '.join(missing)}")
    try:
        return AnalysisResult.model_validate(payload)
    except ValidationError as exc:
        raise AnalysisSchemaError(f"Reasoning response failed validation: {exc.error_count()} error(s)") from exc


def _provider_error_message(response: httpx.Response) -> str:
    message = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        msg = payload.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return message or f"HTTP {response.status_code}"


def _coerce_completion_text(response_json: Any) -> str:
    if not isinstance(response_json, dict):
        return ""
    choices = response_json.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                text_value = item.get("text")
                if isinstance(text_value, str):
                    parts.append(text_value)
        return "\n".join(parts)
    return ""


def _coerce_gemini_text(response_json: Any) -> str:
    if not isinstance(response_json, dict):
        return ""
    candidates = response_json.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    texts = [item["text"] for item in parts if isinstance(item, dict) and isinstance(item.get("text"), str)]
    return "\n".join(texts).strip()


def _gemini_schema(schema: dict[str, Any]) -> dict[str, Any]:
    converted: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type" and isinstance(value, str):
            converted[key] = value.upper()
        elif key == "properties" and isinstance(value, dict):
            converted[key] = {name: _gemini_schema(prop) for name, prop in value.items()}
        elif key == "items" and isinstance(value, dict):
            converted[key] = _gemini_schema(value)
        else:
            converted[key] = value
    return converted


def _openai_audio_format(mime_type: str) -> str:
    lowered = mime_type.lower()
    if "mpeg" in lowered or "mp3" in lowered:
        return "mp3"
    return "wav"


@dataclass(frozen=True)
class ProviderConfig:
    provider: str
    base_url: str
    api_key: str
    model: str
    text_model: str


def provider_candidates_from_env() -> list[ProviderConfig]:
    if (os.getenv("HEALBUDDY_DISABLE_EXTERNAL") or "false").strip().lower() in {"1", "true", "yes"}:
        return []
    preference = (os.getenv("HEALBUDDY_REASONING_PROVIDER") or "auto").strip().lower()
    candidates: list[ProviderConfig] = []

    gemini_api_key = (os.getenv("GEMINI_API_KEY") or "").strip()
    if gemini_api_key:
        candidates.append(
            ProviderConfig(
                provider="gemini",
                base_url=(os.getenv("GEMINI_API_BASE_URL") or "https://generativelanguage.googleapis.com/v1beta").rstrip("/"),
                api_key=gemini_api_key,
                model=(os.getenv("GEMINI_MODEL") or "gemini-1.5-pro").strip(),
                text_model=(os.getenv("GEMINI_TRANSLATION_MODEL") or "gemini-1.5-flash").strip(),
            )
        )

    openai_api_key = (os.getenv("OPENAI_API_KEY") or "").strip()
    if openai_api_key:
        candidates.append(
            ProviderConfig(
                provider="openai",
                base_url=(os.getenv("OPENAI_API_BASE_URL") or "https://api.openai.com/v1").rstrip("/"),
                api_key=openai_api_key,
                model=(os.getenv("HEALBUDDY_CHAT_MODEL") or "gpt-4o-mini").strip(),
                text_model=(os.getenv("HEALBUDDY_TRANSLATION_MODEL") or "gpt-4o-mini").strip(),
            )
        )

    if preference in {"", "auto"}:
        return candidates
    aliases = {"gemini": "gemini", "google": "gemini", "openai": "openai"}
    canonical = aliases.get(preference)
    if not canonical:
        return candidates
    preferred = [candidate for candidate in candidates if candidate.provider == canonical]
    others = [candidate for candidate in candidates if candidate.provider != canonical]
    return preferred + others


class ReasoningClient:
    """Async client for the external reasoning model.

    Providers are tried in order; the first one that returns a usable reply
    wins. When every provider fails, ``ReasoningServiceError`` is raised.
    """

    def __init__(
        self,
        providers: list[ProviderConfig],
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.providers = list(providers)
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_env(cls, transport: httpx.AsyncBaseTransport | None = None) -> "ReasoningClient":
        timeout_seconds = float(os.getenv("HEALBUDDY_REASONING_TIMEOUT_SECONDS", "30"))
        return cls(provider_candidates_from_env(), timeout_seconds=timeout_seconds, transport=transport)

    @property
    def available(self) -> bool:
        return bool(self.providers)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds, connect=8.0),
            transport=self._transport,
        )

    async def analyze(self, submission: Submission, *, system_instruction: str) -> AnalysisResult:
        parts = build_request_parts(submission)
        if not self.providers:
            raise ReasoningServiceError("No reasoning provider is configured.")
        errors: list[str] = []
        for provider in self.providers:
            try:
                if provider.provider == "gemini":
                    raw_text = await self._gemini_generate(
                        provider=provider,
                        model=provider.model,
                        system_instruction=system_instruction,
                        parts=parts,
                        response_schema=ANALYSIS_RESPONSE_SCHEMA,
                    )
                else:
                    raw_text = await self._openai_chat(
                        provider=provider,
                        model=provider.model,
                        system_instruction=system_instruction,
                        parts=parts,
                        response_schema=ANALYSIS_RESPONSE_SCHEMA,
                    )
                result = parse_analysis_payload(raw_text)
                logger.info("analysis provider used (%s)", provider.provider)
                return result
            except (httpx.HTTPError, ReasoningServiceError, ValueError) as exc:
                logger.warning("analysis provider failed (%s): %s", provider.provider, exc)
                errors.append(f"{provider.provider}: {exc}")
        raise ReasoningServiceError("; ".join(errors))

    async def complete_text(self, *, system_instruction: str, text: str) -> str:
        if not self.providers:
            raise ReasoningServiceError("No reasoning provider is configured.")
        parts = [{"kind": "text", "text": text}]
        errors: list[str] = []
        for provider in self.providers:
            try:
                if provider.provider == "gemini":
                    reply = await self._gemini_generate(
                        provider=provider,
                        model=provider.text_model,
                        system_instruction=system_instruction,
                        parts=parts,
                    )
                else:
                    reply = await self._openai_chat(
                        provider=provider,
                        model=provider.text_model,
                        system_instruction=system_instruction,
                        parts=parts,
                    )
                if reply.strip():
                    return reply.strip()
                errors.append(f"{provider.provider}: empty response")
            except (httpx.HTTPError, ReasoningServiceError, ValueError) as exc:
                logger.warning("text provider failed (%s): %s", provider.provider, exc)
                errors.append(f"{provider.provider}: {exc}")
        raise ReasoningServiceError("; ".join(errors))

    async def _gemini_generate(
        self,
        *,
        provider: ProviderConfig,
        model: str,
        system_instruction: str,
        parts: list[dict[str, Any]],
        response_schema: dict[str, Any] | None = None,
    ) -> str:
        gemini_parts: list[dict[str, Any]] = []
        for part in parts:
            if part["kind"] == "text":
                gemini_parts.append({"text": part["text"]})
            else:
                gemini_parts.append({"inlineData": {"mimeType": part["mime_type"], "data": part["data"]}})
        payload: dict[str, Any] = {
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "contents": [{"role": "user", "parts": gemini_parts}],
        }
        if response_schema is not None:
            payload["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": _gemini_schema(response_schema),
            }
        headers = {"x-goog-api-key": provider.api_key, "Content-Type": "application/json"}
        async with self._client() as client:
            response = await client.post(
                f"{provider.base_url}/models/{model}:generateContent",
                headers=headers,
                json=payload,
            )
        if response.status_code >= 400:
            raise ReasoningServiceError(_provider_error_message(response))
        text = _coerce_gemini_text(response.json())
        if not text:
            raise ReasoningServiceError("Empty response from reasoning service.")
        return text

    async def _openai_chat(
        self,
        *,
        provider: ProviderConfig,
        model: str,
        system_instruction: str,
        parts: list[dict[str, Any]],
        response_schema: dict[str, Any] | None = None,
    ) -> str:
        content: list[dict[str, Any]] = []
        for part in parts:
            if part["kind"] == "text":
                content.append({"type": "text", "text": part["text"]})
            elif part["kind"] == "image":
                content.append(
                    {"type": "image_url", "image_url": {"url": f"data:{part['mime_type']};base64,{part['data']}"}}
                )
            else:
                content.append(
                    {
                        "type": "input_audio",
                        "input_audio": {"data": part["data"], "format": _openai_audio_format(part["mime_type"])},
                    }
                )
        payload: dict[str, Any] = {
            "model": model,
            "temperature": 0.2,
            "messages": [
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": content},
            ],
        }
        if response_schema is not None:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": "health_analysis",
                    "strict": True,
                    "schema": {**response_schema, "additionalProperties": False},
                },
            }
        headers = {"Authorization": f"Bearer {provider.api_key}", "Content-Type": "application/json"}
        async with self._client() as client:
            response = await client.post(f"{provider.base_url}/chat/completions", headers=headers, json=payload)
        if response.status_code >= 400:
            raise ReasoningServiceError(_provider_error_message(response))
        text = _coerce_completion_text(response.json()).strip()
        if not text:
            raise ReasoningServiceError("Empty response from reasoning service.")
        return text
