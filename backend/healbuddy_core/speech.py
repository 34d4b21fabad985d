from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from typing import Protocol

import httpx

from records.time_utils import to_iso, utc_now

from .languages import locale_for

logger = logging.getLogger(__name__)


@dataclass
class Utterance:
    id: str
    text: str
    locale: str
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0
    created_at: str = ""
    audio: bytes | None = None
    media_type: str = "audio/wav"
    cancelled: bool = False

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "text": self.text,
            "locale": self.locale,
            "rate": self.rate,
            "pitch": self.pitch,
            "volume": self.volume,
            "created_at": self.created_at,
            "has_audio": self.audio is not None,
        }


class SpeechEngine(Protocol):
    async def synthesize(self, utterance: Utterance) -> bytes: ...


class OpenAISpeechEngine:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini-tts",
        voice: str = "alloy",
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.voice = voice
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_env(cls) -> "OpenAISpeechEngine | None":
        if (os.getenv("HEALBUDDY_DISABLE_EXTERNAL") or "false").strip().lower() in {"1", "true", "yes"}:
            return None
        api_key = (os.getenv("OPENAI_API_KEY") or "").strip()
        if not api_key:
            return None
        return cls(
            api_key=api_key,
            base_url=os.getenv("OPENAI_API_BASE_URL", "https://api.openai.com/v1"),
            model=(os.getenv("HEALBUDDY_TTS_MODEL") or "gpt-4o-mini-tts").strip(),
            voice=(os.getenv("HEALBUDDY_TTS_VOICE") or "alloy").strip(),
        )

    async def synthesize(self, utterance: Utterance) -> bytes:
        payload = {
            "model": self.model,
            "voice": self.voice,
            "input": utterance.text,
            "response_format": "wav",
            "speed": utterance.rate,
            "instructions": f"Speak naturally in the {utterance.locale} locale at a calm, even pitch.",
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds, connect=8.0),
            transport=self._transport,
        ) as client:
            response = await client.post(f"{self.base_url}/audio/speech", headers=headers, json=payload)
        if response.status_code != 200:
            raise RuntimeError(f"TTS failed with status {response.status_code}")
        audio_bytes = response.content
        # A WAV header alone is 44 bytes.
        if len(audio_bytes) <= 44:
            raise RuntimeError(f"Invalid audio: {len(audio_bytes)} bytes")
        return audio_bytes


class SpeechPlaybackAdapter:
    """Plays text through a speech engine; at most one utterance is live at a time."""

    def __init__(self, engine: SpeechEngine | None) -> None:
        self._engine = engine
        self._current: Utterance | None = None

    @property
    def current(self) -> Utterance | None:
        return self._current

    def stop(self) -> None:
        if self._current is not None:
            self._current.cancelled = True
            self._current = None

    async def speak(
        self,
        text: str,
        language_code: str | None,
        *,
        rate: float = 1.0,
        pitch: float = 1.0,
        volume: float = 1.0,
    ) -> bool:
        self.stop()
        if not (text or "").strip() or self._engine is None:
            return False
        utterance = Utterance(
            id=f"utt_{uuid.uuid4().hex[:16]}",
            text=text.strip(),
            locale=locale_for(language_code),
            rate=rate,
            pitch=pitch,
            volume=volume,
            created_at=to_iso(utc_now()),
        )
        self._current = utterance
        try:
            audio = await self._engine.synthesize(utterance)
        except Exception as exc:
            logger.warning("speech playback failed (%s): %s", utterance.locale, exc)
            if self._current is utterance:
                self._current = None
            return False
        if utterance.cancelled or self._current is not utterance:
            return False
        if not audio:
            self._current = None
            return False
        utterance.audio = audio
        return True
