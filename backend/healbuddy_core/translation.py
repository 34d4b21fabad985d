from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from .languages import DEFAULT_LANGUAGE, SUPPORTED_LANGUAGES, get_language
from .reasoning import ReasoningClient
from .speech import SpeechPlaybackAdapter

logger = logging.getLogger(__name__)

BATCH_WINDOW = 5
DOCTOR_CHAT_SPEECH_RATE = 0.9


class TranslationAdapter:
    """Fail-open translation through the reasoning service."""

    def __init__(self, reasoning: ReasoningClient, *, batch_window: int = BATCH_WINDOW) -> None:
        self._reasoning = reasoning
        self.batch_window = max(1, batch_window)

    async def translate(self, text: str, source: str, target: str) -> str:
        if source == target:
            return text
        source_language = get_language(source)
        target_language = get_language(target)
        if not source_language or not target_language:
            logger.warning("translation skipped, unsupported language pair %s -> %s", source, target)
            return text
        if not (text or "").strip():
            return text
        instruction = (
            f"You are a professional medical translator. Translate the following text from "
            f"{source_language.name} to {target_language.name}. Keep medical terminology accurate and be "
            "culturally sensitive. Return ONLY the translated text, nothing else."
        )
        try:
            return await self._reasoning.complete_text(system_instruction=instruction, text=text)
        except Exception as exc:
            logger.warning("translation failed (%s -> %s): %s", source, target, exc)
            return text

    async def batch_translate(
        self,
        items: Iterable[tuple[str, str]],
        source: str,
        target: str,
    ) -> dict[str, str]:
        """Translate ``(id, text)`` pairs; the result keeps input order."""
        pending = list(items)
        if source == target:
            return {item_id: text for item_id, text in pending}
        translations: dict[str, str] = {}
        for start in range(0, len(pending), self.batch_window):
            window = pending[start : start + self.batch_window]
            results = await asyncio.gather(*(self.translate(text, source, target) for _, text in window))
            for (item_id, _), translated in zip(window, results):
                translations[item_id] = translated
        return translations

    async def detect_language(self, text: str) -> str:
        if not (text or "").strip():
            return DEFAULT_LANGUAGE
        listing = ", ".join(f"{language.code} ({language.name})" for language in SUPPORTED_LANGUAGES)
        instruction = (
            "Detect the language of the following text. Return ONLY the two-letter language code from this "
            f"list: {listing}. Return only the code, nothing else."
        )
        try:
            detected = (await self._reasoning.complete_text(system_instruction=instruction, text=text)).strip().lower()
        except Exception as exc:
            logger.warning("language detection failed: %s", exc)
            return DEFAULT_LANGUAGE
        return detected if get_language(detected) else DEFAULT_LANGUAGE

    async def translate_and_speak(
        self,
        text: str,
        source: str,
        target: str,
        speech: SpeechPlaybackAdapter,
    ) -> tuple[str, bool]:
        translated = await self.translate(text, source, target)
        spoken = await speech.speak(translated, target, rate=DOCTOR_CHAT_SPEECH_RATE)
        return translated, spoken
