from __future__ import annotations

import base64
from dataclasses import dataclass


@dataclass(frozen=True)
class MediaPart:
    data: bytes
    mime_type: str

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


@dataclass(frozen=True)
class Submission:
    text: str | None = None
    audio: MediaPart | None = None
    image: MediaPart | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text and self.audio is None and self.image is None


@dataclass
class InputStaging:
    """What the user has prepared but not yet sent."""

    image: MediaPart | None = None

    def clear(self) -> None:
        self.image = None


def capture_submission(
    text: str | None = None,
    audio: MediaPart | None = None,
    image: MediaPart | None = None,
) -> Submission:
    cleaned = (text or "").strip() or None
    if audio is not None and not audio.data:
        audio = None
    if image is not None and not image.data:
        image = None
    return Submission(text=cleaned, audio=audio, image=image)
