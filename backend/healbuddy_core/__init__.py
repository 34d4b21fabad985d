from .input_capture import InputStaging, MediaPart, Submission, capture_submission
from .languages import DEFAULT_LANGUAGE, SUPPORTED_CODES, SUPPORTED_LANGUAGES, Language, get_language, locale_for
from .models import AnalysisResult, ChatMessage, Severity, SubmissionOutcome, UserContext
from .orchestrator import AnalysisOrchestrator, ChatSession, SessionRegistry
from .reasoning import AnalysisSchemaError, EmptyInputError, ReasoningClient, ReasoningServiceError
from .speech import OpenAISpeechEngine, SpeechEngine, SpeechPlaybackAdapter, Utterance
from .transcript import Transcript
from .translation import TranslationAdapter

__all__ = [
    "DEFAULT_LANGUAGE",
    "SUPPORTED_CODES",
    "SUPPORTED_LANGUAGES",
    "AnalysisOrchestrator",
    "AnalysisResult",
    "AnalysisSchemaError",
    "ChatMessage",
    "ChatSession",
    "EmptyInputError",
    "InputStaging",
    "Language",
    "MediaPart",
    "OpenAISpeechEngine",
    "ReasoningClient",
    "ReasoningServiceError",
    "SessionRegistry",
    "Severity",
    "SpeechEngine",
    "SpeechPlaybackAdapter",
    "Submission",
    "SubmissionOutcome",
    "Transcript",
    "TranslationAdapter",
    "UserContext",
    "Utterance",
    "capture_submission",
    "get_language",
    "locale_for",
]
