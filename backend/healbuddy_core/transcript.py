from __future__ import annotations

import uuid
from typing import Iterator

from records.time_utils import to_iso, utc_now

from .models import AnalysisResult, ChatMessage


class Transcript:
    """Append-only, creation-ordered message log of one chat session."""

    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []
        self._ids: set[str] = set()
        self.generation = 0

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(tuple(self._messages))

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def append(
        self,
        role: str,
        *,
        text: str | None = None,
        image_data: str | None = None,
        analysis: AnalysisResult | None = None,
    ) -> ChatMessage:
        if role not in {"user", "assistant"}:
            raise ValueError(f"Unsupported message role: {role}")
        message_id = f"msg_{uuid.uuid4().hex[:16]}"
        while message_id in self._ids:
            message_id = f"msg_{uuid.uuid4().hex[:16]}"
        message = ChatMessage(
            id=message_id,
            role=role,  # type: ignore[arg-type]
            created_at=to_iso(utc_now()),
            text=text,
            image_data=image_data,
            analysis=analysis,
        )
        self._messages.append(message)
        self._ids.add(message_id)
        return message

    def reset(self, greeting: str) -> ChatMessage:
        self.generation += 1
        self._messages = []
        self._ids = set()
        return self.append("assistant", text=greeting)
