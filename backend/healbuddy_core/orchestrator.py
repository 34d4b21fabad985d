from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Callable

from .input_capture import InputStaging, MediaPart, capture_submission
from .languages import DEFAULT_LANGUAGE, get_language
from .messages import APOLOGY_TEXT, VOICE_INPUT_LABEL, assistant_reply_text, render_message
from .models import AnalysisResult, ChatMessage, SubmissionOutcome, UserContext
from .reasoning import ReasoningClient, ReasoningServiceError, build_system_instruction
from .speech import SpeechEngine, SpeechPlaybackAdapter
from .transcript import Transcript

logger = logging.getLogger(__name__)


class ChatSession:
    """State of one user's chat: transcript, staged input, latest result, busy flag."""

    def __init__(
        self,
        *,
        user_id: str,
        session_key: str,
        user: UserContext,
        speech: SpeechPlaybackAdapter,
    ) -> None:
        self.user_id = user_id
        self.session_key = session_key
        self.user = user
        self.speech = speech
        self.transcript = Transcript()
        self.staging = InputStaging()
        self.latest_analysis: AnalysisResult | None = None
        self.busy = False
        preferred = get_language(user.preferred_language)
        self._language = preferred.code if preferred else DEFAULT_LANGUAGE
        self.transcript.reset(render_message("greeting", self._language, name=user.full_name))

    @property
    def language(self) -> str:
        return self._language

    def set_language(self, language_code: str) -> None:
        language = get_language(language_code)
        if language is None:
            raise ValueError(f"Unsupported language code: {language_code}")
        self._language = language.code

    def update_user(self, user: UserContext) -> None:
        self.user = user

    def clear(self) -> None:
        self.transcript.reset(render_message("chat_cleared", self._language))
        self.latest_analysis = None
        self.staging.clear()
        self.speech.stop()

    def snapshot(self) -> dict[str, Any]:
        current = self.speech.current
        return {
            "session_key": self.session_key,
            "language": self._language,
            "busy": self.busy,
            "messages": [message.as_dict() for message in self.transcript],
            "latest_analysis": self.latest_analysis.as_wire() if self.latest_analysis else None,
            "staged_image": self.staging.image is not None,
            "utterance": current.as_dict() if current else None,
        }


class AnalysisOrchestrator:
    def __init__(self, reasoning: ReasoningClient) -> None:
        self._reasoning = reasoning

    async def submit(
        self,
        session: ChatSession,
        *,
        text: str | None = None,
        audio: MediaPart | None = None,
        image: MediaPart | None = None,
    ) -> SubmissionOutcome:
        if session.busy:
            return SubmissionOutcome(status="busy")
        submission = capture_submission(text, audio, image or session.staging.image)
        if submission.is_empty:
            return SubmissionOutcome(status="empty")

        session.busy = True
        try:
            user_text = submission.text or (VOICE_INPUT_LABEL if submission.audio is not None else None)
            user_message = session.transcript.append(
                "user",
                text=user_text,
                image_data=submission.image.data_url if submission.image is not None else None,
            )
            session.staging.clear()
            generation = session.transcript.generation

            instruction = build_system_instruction(session.user, session.language)
            try:
                analysis = await self._reasoning.analyze(submission, system_instruction=instruction)
            except ReasoningServiceError as exc:
                logger.warning("analysis failed for session %s: %s", session.session_key, exc)
                analysis = None
            except Exception:
                logger.exception("analysis crashed for session %s", session.session_key)
                analysis = None

            # A clear while the request was in flight owns the transcript now.
            if session.transcript.generation != generation:
                logger.info("session %s was cleared during analysis, reply dropped", session.session_key)
                return SubmissionOutcome(status="superseded", messages=[user_message])
            if analysis is None:
                return self._fail(session, user_message)

            session.latest_analysis = analysis
            reply_text = assistant_reply_text(analysis.emergency_contact, session.language, session.user.full_name)
            assistant_message = session.transcript.append("assistant", text=reply_text, analysis=analysis)
            speech_started = await session.speech.speak(analysis.summary, session.language)
            return SubmissionOutcome(
                status="analyzed",
                messages=[user_message, assistant_message],
                analysis=analysis,
                speech_started=speech_started,
            )
        finally:
            session.busy = False

    @staticmethod
    def _fail(session: ChatSession, user_message: ChatMessage) -> SubmissionOutcome:
        apology = session.transcript.append("assistant", text=APOLOGY_TEXT)
        return SubmissionOutcome(status="failed", messages=[user_message, apology])


class SessionRegistry:
    """Live chat sessions, least recently used first.

    Each user keeps at most ``max_sessions_per_user`` sessions and the
    registry as a whole at most ``max_sessions``; the oldest are evicted.
    """

    def __init__(
        self,
        speech_engine_factory: Callable[[], SpeechEngine | None],
        *,
        max_sessions_per_user: int = 4,
        max_sessions: int = 1000,
    ) -> None:
        self._sessions: OrderedDict[tuple[str, str], ChatSession] = OrderedDict()
        self._speech_engine_factory = speech_engine_factory
        self.max_sessions_per_user = max(1, max_sessions_per_user)
        self.max_sessions = max(1, max_sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def get_or_create(self, user_id: str, session_key: str, user: UserContext) -> ChatSession:
        key = (user_id, session_key)
        session = self._sessions.get(key)
        if session is not None:
            self._sessions.move_to_end(key)
            session.update_user(user)
            return session
        session = ChatSession(
            user_id=user_id,
            session_key=session_key,
            user=user,
            speech=SpeechPlaybackAdapter(self._speech_engine_factory()),
        )
        self._sessions[key] = session
        self._evict(user_id)
        return session

    def sessions_for_user(self, user_id: str) -> list[ChatSession]:
        return [session for (owner, _), session in self._sessions.items() if owner == user_id]

    def discard(self, user_id: str, session_key: str) -> bool:
        session = self._sessions.pop((user_id, session_key), None)
        if session is None:
            return False
        self._release(session)
        return True

    def _evict(self, user_id: str) -> None:
        owned = [key for key in self._sessions if key[0] == user_id]
        for key in owned[: max(0, len(owned) - self.max_sessions_per_user)]:
            self._release(self._sessions.pop(key))
        while len(self._sessions) > self.max_sessions:
            _, session = self._sessions.popitem(last=False)
            self._release(session)

    @staticmethod
    def _release(session: ChatSession) -> None:
        logger.info("chat session %s released", session.session_key)
        session.staging.clear()
        session.speech.stop()
