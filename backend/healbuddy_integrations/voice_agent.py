from __future__ import annotations

import os
import re
from dataclasses import dataclass

DEFAULT_AGENT_PHONE_NUMBER = "+1 (415) 231-1749"
VAPI_WEB_SDK_URL = "https://cdn.jsdelivr.net/npm/@vapi-ai/web@latest/dist/vapi.umd.min.js"


def format_phone_number(phone: str) -> str:
    """Render an 11-digit North American number as ``+1 (xxx) xxx-xxxx``; anything else is returned as given."""
    cleaned = re.sub(r"\D", "", phone or "")
    if len(cleaned) == 11 and cleaned.startswith("1"):
        return f"+1 ({cleaned[1:4]}) {cleaned[4:7]}-{cleaned[7:]}"
    return phone


def dialable_phone_number(phone: str) -> str:
    cleaned = re.sub(r"\D", "", phone or "")
    return f"+{cleaned}" if cleaned else ""


@dataclass(frozen=True)
class VoiceAgentConfig:
    public_key: str | None
    assistant_id: str | None
    phone_number: str

    @classmethod
    def from_env(cls) -> "VoiceAgentConfig":
        return cls(
            public_key=(os.getenv("VAPI_PUBLIC_KEY") or "").strip() or None,
            assistant_id=(os.getenv("VAPI_ASSISTANT_ID") or "").strip() or None,
            phone_number=(os.getenv("VAPI_PHONE_NUMBER") or "").strip() or DEFAULT_AGENT_PHONE_NUMBER,
        )

    @property
    def web_calls_enabled(self) -> bool:
        return bool(self.public_key and self.assistant_id)

    def as_dict(self) -> dict[str, object]:
        return {
            "public_key": self.public_key,
            "assistant_id": self.assistant_id,
            "phone_number": format_phone_number(self.phone_number),
            "phone_number_dialable": dialable_phone_number(self.phone_number),
            "web_calls_enabled": self.web_calls_enabled,
            "sdk_url": VAPI_WEB_SDK_URL,
        }
