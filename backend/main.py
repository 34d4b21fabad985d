from __future__ import annotations

import hashlib
import logging
import os
import re
from collections import OrderedDict
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from fastapi import FastAPI, File, Form, Header, HTTPException, Query, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from healbuddy_core import (
    SUPPORTED_CODES,
    SUPPORTED_LANGUAGES,
    AnalysisOrchestrator,
    ChatSession,
    MediaPart,
    OpenAISpeechEngine,
    ReasoningClient,
    SessionRegistry,
    SpeechPlaybackAdapter,
    TranslationAdapter,
    UserContext,
)
from healbuddy_core.languages import get_language
from healbuddy_integrations import NotificationDispatcher, VoiceAgentConfig, format_phone_number, seed_sample_data
from records import (
    InMemoryKeyValueStore,
    InvalidTransitionError,
    RecordNotFoundError,
    RecordsService,
    RecordStoreError,
    RecordValidationError,
    SQLiteKeyValueStore,
    StaleWriteError,
)
from records.models import Medication, UserProfile
from records.time_utils import utc_now

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _bootstrap_local_env() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    candidates = [
        repo_root / ".env",
        repo_root / "backend/.env",
        repo_root / "frontend/.env.local",
    ]
    for candidate in candidates:
        if candidate.exists():
            _load_local_env_file(candidate)


_bootstrap_local_env()

logging.basicConfig(
    level=(os.getenv("HEALBUDDY_LOG_LEVEL") or "INFO").strip().upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


class ProfilePayload(BaseModel):
    full_name: str = Field(min_length=1, max_length=120)
    age: int = Field(ge=0, le=150)
    gender: str = ""
    medical_history: str = ""
    preferred_language: str = "en"
    mobile_number: str | None = None


class LanguagePayload(BaseModel):
    language: str


class TranslatePayload(BaseModel):
    text: str
    source: str
    target: str


class BatchItem(BaseModel):
    id: str
    text: str


class BatchTranslatePayload(BaseModel):
    items: list[BatchItem] = Field(default_factory=list)
    source: str
    target: str


class DetectPayload(BaseModel):
    text: str


class RelayPayload(BaseModel):
    text: str
    source: str
    target: str


class AppointmentPayload(BaseModel):
    doctor_id: str
    doctor_name: str
    date: str
    time: str
    symptoms: str = ""
    meeting_link: str | None = None


class PrescriptionPayload(BaseModel):
    appointment_id: str
    doctor_id: str
    doctor_name: str
    diagnosis: str
    medications: list[Medication] = Field(default_factory=list)
    instructions: str = ""
    follow_up: str | None = None
    patient_name: str | None = None
    date: str | None = None


class PhoneAppointmentPayload(BaseModel):
    patient_name: str
    patient_phone: str
    appointment_type: str
    preferred_date: str
    preferred_time: str
    reason: str = ""
    status: str = "pending"
    booked_via: str = "phone"
    call_id: str | None = None


class PhoneAppointmentUpdate(BaseModel):
    patient_name: str | None = None
    patient_phone: str | None = None
    appointment_type: str | None = None
    preferred_date: str | None = None
    preferred_time: str | None = None
    reason: str | None = None
    status: str | None = None
    call_id: str | None = None


class HealBuddyApp:
    def __init__(self) -> None:
        if (os.getenv("HEALBUDDY_STORE") or "sqlite").strip().lower() == "memory":
            store = InMemoryKeyValueStore()
        else:
            db_path = os.getenv(
                "HEALBUDDY_DB_PATH",
                str((Path(__file__).resolve().parent / "healbuddy.sqlite")),
            )
            store = SQLiteKeyValueStore(db_path)
        self.records = RecordsService(store, supported_languages=set(SUPPORTED_CODES))
        self.reasoning = ReasoningClient.from_env()
        self.translation = TranslationAdapter(self.reasoning)
        self.orchestrator = AnalysisOrchestrator(self.reasoning)
        self.speech_engine = OpenAISpeechEngine.from_env()
        self.sessions = SessionRegistry(
            lambda: self.speech_engine,
            max_sessions_per_user=int(os.getenv("HEALBUDDY_MAX_SESSIONS_PER_USER", "4")),
            max_sessions=int(os.getenv("HEALBUDDY_MAX_SESSIONS", "1000")),
        )
        self.dispatcher = NotificationDispatcher.from_env()
        self.voice_agent = VoiceAgentConfig.from_env()
        self._relay_speech: OrderedDict[str, SpeechPlaybackAdapter] = OrderedDict()
        logger.info(
            "HealBuddy backend ready (store=%s, reasoning providers=%s, speech=%s)",
            type(store).__name__,
            [provider.provider for provider in self.reasoning.providers],
            "on" if self.speech_engine else "off",
        )

    def relay_speech_for(self, user_id: str) -> SpeechPlaybackAdapter:
        adapter = self._relay_speech.get(user_id)
        if adapter is None:
            adapter = SpeechPlaybackAdapter(self.speech_engine)
            self._relay_speech[user_id] = adapter
            while len(self._relay_speech) > self.sessions.max_sessions:
                _, evicted = self._relay_speech.popitem(last=False)
                evicted.stop()
        else:
            self._relay_speech.move_to_end(user_id)
        return adapter

    def release_relay_speech(self, user_id: str) -> None:
        adapter = self._relay_speech.pop(user_id, None)
        if adapter is not None:
            adapter.stop()


container = HealBuddyApp()
app = FastAPI(title="HealBuddy Backend")

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_TRUSTED_USER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@+-]{1,127}$")


def _validated_trusted_user_id(x_user_id: str) -> str:
    candidate = x_user_id.strip()
    if not candidate:
        raise HTTPException(status_code=400, detail="Invalid X-User-Id")
    if not _TRUSTED_USER_ID_RE.fullmatch(candidate):
        raise HTTPException(status_code=400, detail="Invalid X-User-Id")
    return candidate


def get_user_id(auth_header: str | None) -> str:
    if not auth_header:
        if os.getenv("ALLOW_ANON", "false").lower() == "true":
            return "demo-user"
        raise HTTPException(status_code=401, detail="Missing Authorization")
    raw = auth_header.replace("Bearer", "", 1).strip()
    if not raw:
        if os.getenv("ALLOW_ANON", "false").lower() == "true":
            return "demo-user"
        raise HTTPException(status_code=401, detail="Missing Authorization")
    # The bearer token is an opaque user id (the profile email).
    if len(raw) > 128:
        return f"token_{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:24]}"
    return raw


def resolve_user_id(authorization: str | None, x_user_id: str | None) -> str:
    if x_user_id is not None:
        return _validated_trusted_user_id(x_user_id)
    return get_user_id(authorization)


@contextmanager
def _record_errors() -> Iterator[None]:
    try:
        yield
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (InvalidTransitionError, StaleWriteError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except RecordValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RecordStoreError as exc:
        logger.exception("record store failure")
        raise HTTPException(status_code=500, detail="Record store error.") from exc


def _find_profile(user_id: str) -> UserProfile | None:
    # Non-email ids (demo-user, hashed tokens) never have a stored profile.
    try:
        return container.records.profiles.find(user_id)
    except RecordValidationError:
        return None


def _user_context(user_id: str) -> UserContext:
    profile = _find_profile(user_id)
    if profile is None:
        return UserContext(full_name=user_id)
    return UserContext(
        full_name=profile.full_name,
        age=profile.age,
        gender=profile.gender,
        medical_history=profile.medical_history,
        preferred_language=profile.preferred_language,
    )


def _contact_for(user_id: str) -> tuple[str, str | None, str | None]:
    """Name, email and mobile number used for outbound notifications."""
    profile = _find_profile(user_id)
    if profile is not None:
        return profile.full_name, profile.email, profile.mobile_number
    return user_id, (user_id if "@" in user_id else None), None


def _default_session_key(user_id: str) -> str:
    return f"session-{hashlib.sha1(user_id.encode('utf-8')).hexdigest()[:24]}"


def _session_for(user_id: str, session_key: str | None) -> ChatSession:
    return container.sessions.get_or_create(user_id, session_key or _default_session_key(user_id), _user_context(user_id))


_MAX_AUDIO_BYTES = int(os.getenv("HEALBUDDY_MAX_AUDIO_BYTES", str(20 * 1024 * 1024)))
_MAX_IMAGE_BYTES = int(os.getenv("HEALBUDDY_MAX_IMAGE_BYTES", str(10 * 1024 * 1024)))
_ALLOWED_AUDIO_MIME_TYPES = {
    "audio/mpeg",
    "audio/mp3",
    "audio/mp4",
    "audio/m4a",
    "audio/wav",
    "audio/x-wav",
    "audio/webm",
    "audio/ogg",
}
_ALLOWED_AUDIO_EXTENSIONS = {".mp3", ".mp4", ".m4a", ".wav", ".webm", ".ogg", ".flac"}
_ALLOWED_IMAGE_MIME_TYPES = {
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/webp",
    "image/gif",
    "image/heic",
}
_ALLOWED_IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".gif", ".heic"}
_EXTENSION_MIME_TYPES = {
    ".mp3": "audio/mpeg",
    ".mp4": "audio/mp4",
    ".m4a": "audio/mp4",
    ".wav": "audio/wav",
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
    ".flac": "audio/flac",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".heic": "image/heic",
}


def _normalize_upload_filename(upload: UploadFile | None, fallback_name: str) -> str:
    file_name = (upload.filename or "").strip() if upload else ""
    return file_name or fallback_name


def _extension_from_filename(file_name: str) -> str:
    return Path(file_name).suffix.lower().strip()


async def _read_upload_bytes(upload: UploadFile, *, max_bytes: int, too_large_detail: str) -> bytes:
    raw = await upload.read(max_bytes + 1)
    if len(raw) > max_bytes:
        raise HTTPException(status_code=413, detail=too_large_detail)
    if not raw:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    return raw


def _validate_audio_upload(file_name: str, mime_type: str) -> None:
    ext = _extension_from_filename(file_name)
    if mime_type not in _ALLOWED_AUDIO_MIME_TYPES and ext not in _ALLOWED_AUDIO_EXTENSIONS:
        raise HTTPException(status_code=415, detail="Unsupported audio format.")


def _validate_image_upload(file_name: str, mime_type: str) -> None:
    ext = _extension_from_filename(file_name)
    if mime_type not in _ALLOWED_IMAGE_MIME_TYPES and ext not in _ALLOWED_IMAGE_EXTENSIONS:
        raise HTTPException(status_code=415, detail="Unsupported image format.")


def _effective_mime_type(file_name: str, mime_type: str, allowed: set[str], fallback: str) -> str:
    if mime_type in allowed:
        return mime_type
    return _EXTENSION_MIME_TYPES.get(_extension_from_filename(file_name), fallback)


async def _audio_part(upload: UploadFile) -> MediaPart:
    file_name = _normalize_upload_filename(upload, "voice-input.webm")
    mime_type = (upload.content_type or "").lower().strip()
    _validate_audio_upload(file_name, mime_type)
    data = await _read_upload_bytes(
        upload,
        max_bytes=_MAX_AUDIO_BYTES,
        too_large_detail=f"Audio file exceeds {_MAX_AUDIO_BYTES // (1024 * 1024)}MB limit.",
    )
    return MediaPart(data=data, mime_type=_effective_mime_type(file_name, mime_type, _ALLOWED_AUDIO_MIME_TYPES, "audio/webm"))


async def _image_part(upload: UploadFile) -> MediaPart:
    file_name = _normalize_upload_filename(upload, "image-upload")
    mime_type = (upload.content_type or "").lower().strip()
    _validate_image_upload(file_name, mime_type)
    data = await _read_upload_bytes(
        upload,
        max_bytes=_MAX_IMAGE_BYTES,
        too_large_detail=f"Image file exceeds {_MAX_IMAGE_BYTES // (1024 * 1024)}MB limit.",
    )
    return MediaPart(data=data, mime_type=_effective_mime_type(file_name, mime_type, _ALLOWED_IMAGE_MIME_TYPES, "image/jpeg"))


@app.get("/languages")
def get_languages():
    return {"languages": [language.as_dict() for language in SUPPORTED_LANGUAGES]}


@app.get("/profile")
def get_profile(authorization: str | None = Header(default=None), x_user_id: str | None = Header(default=None)):
    user_id = resolve_user_id(authorization, x_user_id)
    profile = _find_profile(user_id)
    if profile is None:
        return {}
    return profile.model_dump()


@app.post("/profile")
def upsert_profile(
    payload: ProfilePayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    fields = payload.model_dump()
    language = get_language(fields["preferred_language"])
    if language is not None:
        fields["preferred_language"] = language.code
    with _record_errors():
        profile = container.records.profiles.upsert(UserProfile(email=user_id, **fields))
    context = _user_context(user_id)
    for session in container.sessions.sessions_for_user(user_id):
        session.update_user(context)
        session.set_language(profile.preferred_language)
    return profile.model_dump()


@app.put("/profile/language")
def update_language(
    payload: LanguagePayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    language = get_language(payload.language)
    if language is None:
        raise HTTPException(status_code=400, detail=f"Unsupported language code '{payload.language}'.")
    if _find_profile(user_id) is not None:
        with _record_errors():
            container.records.profiles.update_language(user_id, language.code)
    context = _user_context(user_id)
    for session in container.sessions.sessions_for_user(user_id):
        session.update_user(context)
        session.set_language(language.code)
    return {"language": language.code}


@app.get("/chat/transcript")
def chat_transcript(
    session_key: str | None = Query(default=None),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    return _session_for(user_id, session_key).snapshot()


@app.post("/chat/stage-image")
async def stage_image(
    image: UploadFile = File(...),
    session_key: str | None = Form(default=None),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    part = await _image_part(image)
    session = _session_for(user_id, session_key)
    session.staging.image = part
    return {"staged_image": True, "preview": part.data_url}


@app.delete("/chat/stage-image")
def unstage_image(
    session_key: str | None = Query(default=None),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    session = _session_for(user_id, session_key)
    session.staging.image = None
    return {"staged_image": False}


@app.post("/chat/analyze")
async def chat_analyze(
    text: str | None = Form(default=None),
    audio: UploadFile | None = File(default=None),
    image: UploadFile | None = File(default=None),
    session_key: str | None = Form(default=None),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    audio_part = await _audio_part(audio) if audio is not None else None
    image_part = await _image_part(image) if image is not None else None
    session = _session_for(user_id, session_key)

    outcome = await container.orchestrator.submit(session, text=text, audio=audio_part, image=image_part)
    if outcome.status == "busy":
        raise HTTPException(status_code=409, detail="An analysis is already in progress for this chat.")
    if outcome.status == "empty":
        raise HTTPException(status_code=400, detail="Provide text, a voice recording or an image to analyze.")
    return outcome.as_envelope()


@app.post("/chat/clear")
def chat_clear(
    session_key: str | None = Query(default=None),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    session = _session_for(user_id, session_key)
    session.clear()
    return session.snapshot()


@app.delete("/chat/session")
def end_chat_session(
    session_key: str | None = Query(default=None),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    ended = container.sessions.discard(user_id, session_key or _default_session_key(user_id))
    if not container.sessions.sessions_for_user(user_id):
        container.release_relay_speech(user_id)
    return {"ended": ended}


@app.get("/chat/speech")
def chat_speech(
    session_key: str | None = Query(default=None),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    current = _session_for(user_id, session_key).speech.current
    if current is None or current.audio is None:
        return Response(status_code=204)
    return Response(
        content=current.audio,
        media_type=current.media_type,
        headers={"X-Utterance-Id": current.id, "Content-Language": current.locale},
    )


@app.post("/chat/speech/stop")
def chat_speech_stop(
    session_key: str | None = Query(default=None),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _session_for(user_id, session_key).speech.stop()
    return {"ok": True}


@app.post("/translate")
async def translate(
    payload: TranslatePayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    translated = await container.translation.translate(payload.text, payload.source, payload.target)
    return {"text": translated, "source": payload.source, "target": payload.target}


@app.post("/translate/batch")
async def translate_batch(
    payload: BatchTranslatePayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    translations = await container.translation.batch_translate(
        [(item.id, item.text) for item in payload.items],
        payload.source,
        payload.target,
    )
    return {"translations": translations}


@app.post("/translate/detect")
async def translate_detect(
    payload: DetectPayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    return {"language": await container.translation.detect_language(payload.text)}


@app.post("/doctor-chat/relay")
async def doctor_chat_relay(
    payload: RelayPayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    translated, spoken = await container.translation.translate_and_speak(
        payload.text,
        payload.source,
        payload.target,
        container.relay_speech_for(user_id),
    )
    return {"original": payload.text, "translated": translated, "spoken": spoken}


@app.get("/appointments")
def list_appointments(authorization: str | None = Header(default=None), x_user_id: str | None = Header(default=None)):
    user_id = resolve_user_id(authorization, x_user_id)
    appointments = container.records.appointments.list_for_user(user_id)
    return {"appointments": [appointment.model_dump() for appointment in appointments]}


@app.post("/appointments")
async def book_appointment(
    payload: AppointmentPayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    with _record_errors():
        appointment, notification = container.records.book_appointment(user_id=user_id, **payload.model_dump())
    name, email, mobile_number = _contact_for(user_id)
    delivery = await container.dispatcher.notify_appointment_confirmed(
        appointment,
        user_name=name,
        email=email,
        mobile_number=mobile_number,
    )
    return {
        "appointment": appointment.model_dump(),
        "notification": notification.model_dump(),
        "delivery": delivery.as_dict(),
    }


def _transition_appointment(user_id: str, appointment_id: str, target_status: str) -> dict[str, Any]:
    with _record_errors():
        current = container.records.appointments.get(appointment_id)
        container.records.guard.ensure_user_scope(current.user_id, user_id)
        updated = container.records.appointments.transition(appointment_id, target_status)
    return updated.model_dump()


@app.post("/appointments/{appointment_id}/complete")
def complete_appointment(
    appointment_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    return _transition_appointment(user_id, appointment_id, "completed")


@app.post("/appointments/{appointment_id}/cancel")
def cancel_appointment(
    appointment_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    return _transition_appointment(user_id, appointment_id, "cancelled")


@app.post("/appointments/{appointment_id}/reminder")
async def appointment_reminder(
    appointment_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    with _record_errors():
        appointment = container.records.appointments.get(appointment_id)
        container.records.guard.ensure_user_scope(appointment.user_id, user_id)
    if appointment.status != "scheduled":
        raise HTTPException(status_code=409, detail="Reminders are only sent for scheduled appointments.")
    name, email, mobile_number = _contact_for(user_id)
    delivery = await container.dispatcher.send_appointment_reminder(
        appointment,
        user_name=name,
        email=email,
        mobile_number=mobile_number,
    )
    with _record_errors():
        notification = container.records.notifications.create(
            user_id=user_id,
            notification_type="reminder",
            title="Appointment Reminder",
            message=f"Your appointment with {appointment.doctor_name} starts in 30 minutes.",
            appointment_id=appointment.id,
            action_url=appointment.meeting_link,
        )
    return {"notification": notification.model_dump(), "delivery": delivery.as_dict()}


@app.get("/prescriptions")
def list_prescriptions(authorization: str | None = Header(default=None), x_user_id: str | None = Header(default=None)):
    user_id = resolve_user_id(authorization, x_user_id)
    prescriptions = container.records.prescriptions.list_for_patient(user_id)
    return {"prescriptions": [prescription.model_dump() for prescription in prescriptions]}


@app.post("/prescriptions")
async def issue_prescription(
    payload: PrescriptionPayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    with _record_errors():
        appointment = container.records.appointments.get(payload.appointment_id)
        patient_name, email, mobile_number = _contact_for(appointment.user_id)
        prescription, notification = container.records.issue_prescription(
            appointment_id=payload.appointment_id,
            doctor_id=payload.doctor_id,
            doctor_name=payload.doctor_name,
            patient_name=payload.patient_name or patient_name,
            date=payload.date or utc_now().date().isoformat(),
            diagnosis=payload.diagnosis,
            medications=payload.medications,
            instructions=payload.instructions,
            follow_up=payload.follow_up,
        )
    delivery = await container.dispatcher.notify_prescription_issued(
        prescription,
        email=email,
        mobile_number=mobile_number,
    )
    return {
        "prescription": prescription.model_dump(),
        "notification": notification.model_dump(),
        "delivery": delivery.as_dict(),
    }


@app.get("/notifications")
def list_notifications(
    unread_only: bool = Query(default=False),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    notifications = container.records.notifications.list_for_user(user_id, unread_only=unread_only)
    unread_count = sum(1 for notification in notifications if not notification.read)
    return {
        "notifications": [notification.model_dump() for notification in notifications],
        "unread_count": unread_count,
    }


@app.post("/notifications/read-all")
def read_all_notifications(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    with _record_errors():
        updated = container.records.notifications.mark_all_read(user_id)
    return {"updated": updated}


@app.post("/notifications/{notification_id}/read")
def read_notification(
    notification_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    with _record_errors():
        notification = container.records.notifications.mark_read(notification_id, user_id=user_id)
    return notification.model_dump()


def _phone_appointment_view(record: Any) -> dict[str, Any]:
    data = record.model_dump()
    data["patient_phone_display"] = format_phone_number(record.patient_phone)
    return data


@app.get("/phone-appointments")
def list_phone_appointments(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    records = container.records.phone_appointments.list_all()
    return {"appointments": [_phone_appointment_view(record) for record in records]}


@app.post("/phone-appointments")
def create_phone_appointment(
    payload: PhoneAppointmentPayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    with _record_errors():
        record = container.records.phone_appointments.save(payload.model_dump())
    return _phone_appointment_view(record)


@app.patch("/phone-appointments/{appointment_id}")
def update_phone_appointment(
    appointment_id: str,
    payload: PhoneAppointmentUpdate,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    with _record_errors():
        record = container.records.phone_appointments.update(appointment_id, payload.model_dump(exclude_unset=True))
    if record is None:
        raise HTTPException(status_code=404, detail="Phone appointment not found.")
    return _phone_appointment_view(record)


@app.delete("/phone-appointments/{appointment_id}")
def delete_phone_appointment(
    appointment_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    with _record_errors():
        deleted = container.records.phone_appointments.delete(appointment_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Phone appointment not found.")
    return {"ok": True}


@app.get("/voice-agent")
def voice_agent():
    return container.voice_agent.as_dict()


@app.post("/demo/sample-data")
async def demo_sample_data(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    name, email, mobile_number = _contact_for(user_id)
    with _record_errors():
        return await seed_sample_data(
            container.records,
            container.dispatcher,
            user_id=user_id,
            user_name=name,
            email=email,
            mobile_number=mobile_number,
        )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HEALBUDDY_HOST", "127.0.0.1"),
        port=int(os.getenv("HEALBUDDY_PORT", "8000")),
        log_level=(os.getenv("HEALBUDDY_LOG_LEVEL") or "info").strip().lower(),
    )
