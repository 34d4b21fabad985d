from __future__ import annotations

import re


class RecordStoreError(Exception):
    pass


class RecordNotFoundError(RecordStoreError):
    pass


class RecordValidationError(RecordStoreError):
    pass


class InvalidTransitionError(RecordStoreError):
    pass


class StaleWriteError(RecordStoreError):
    pass


class RecordPolicyGuard:
    _EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    # scheduled is the only non-terminal appointment state.
    _APPOINTMENT_TRANSITIONS = {
        "scheduled": {"completed", "cancelled"},
        "completed": set(),
        "cancelled": set(),
    }
    _PHONE_APPOINTMENT_STATUSES = {"pending", "confirmed", "cancelled"}
    _NOTIFICATION_TYPES = {"appointment", "prescription", "reminder", "general"}

    def __init__(self, supported_languages: set[str] | None = None) -> None:
        self.supported_languages = set(supported_languages or {"en"})

    def ensure_language(self, language_code: str) -> None:
        if language_code not in self.supported_languages:
            raise RecordValidationError(f"Unsupported language code '{language_code}'.")

    def ensure_user_scope(self, requested_user_id: str, scoped_user_id: str) -> None:
        if requested_user_id != scoped_user_id:
            raise RecordValidationError("Cross-user access is blocked.")

    def normalize_email(self, email: str) -> str:
        cleaned = (email or "").strip().lower()
        if not self._EMAIL_RE.fullmatch(cleaned):
            raise RecordValidationError("A valid email address is required.")
        return cleaned

    def ensure_appointment_transition(self, current: str, target: str) -> None:
        allowed = self._APPOINTMENT_TRANSITIONS.get(current)
        if allowed is None:
            raise InvalidTransitionError(f"Unknown appointment status '{current}'.")
        if target not in allowed:
            raise InvalidTransitionError(f"Appointment cannot move from '{current}' to '{target}'.")

    def ensure_phone_appointment_status(self, status: str) -> None:
        if status not in self._PHONE_APPOINTMENT_STATUSES:
            raise RecordValidationError(f"Unsupported phone appointment status '{status}'.")

    def ensure_notification_type(self, notification_type: str) -> None:
        if notification_type not in self._NOTIFICATION_TYPES:
            raise RecordValidationError(f"Unsupported notification type '{notification_type}'.")
