from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from .database import KeyValueStore
from .models import Appointment, Medication, Notification, PhoneAppointment, Prescription, UserProfile
from .record_policy import (
    RecordNotFoundError,
    RecordPolicyGuard,
    RecordValidationError,
    StaleWriteError,
)
from .time_utils import parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)
ResultT = TypeVar("ResultT")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def new_record_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:20]}"


class CollectionRepository(Generic[RecordT]):
    """Get-all/set-all access to one collection; filtering happens here, after a full read."""

    collection: str = ""
    model: type[BaseModel] = BaseModel

    def __init__(self, store: KeyValueStore, guard: RecordPolicyGuard) -> None:
        self._store = store
        self._guard = guard

    def _load(self) -> tuple[list[RecordT], int]:
        stored = self._store.get(self.collection)
        raw_items = stored.value if isinstance(stored.value, list) else []
        records: list[RecordT] = []
        for item in raw_items:
            try:
                records.append(self.model.model_validate(item))  # type: ignore[arg-type]
            except ValidationError as exc:
                logger.warning("skipping malformed %s record: %s", self.collection, exc)
        return records, stored.version

    def _mutate(self, change: Callable[[list[RecordT]], ResultT]) -> ResultT:
        # One retry: a stale write re-reads the collection and re-applies the change.
        for attempt in range(2):
            records, version = self._load()
            result = change(records)
            try:
                self._store.set(
                    self.collection,
                    [record.model_dump(mode="json") for record in records],
                    expected_version=version,
                )
                return result
            except StaleWriteError:
                if attempt == 1:
                    raise
                logger.info("stale write on %s, retrying", self.collection)
        raise StaleWriteError(f"Collection '{self.collection}' could not be written.")

    def list_all(self) -> list[RecordT]:
        records, _ = self._load()
        return records

    def _find(self, records: list[RecordT], record_id: str) -> RecordT:
        for record in records:
            if getattr(record, "id", None) == record_id:
                return record
        raise RecordNotFoundError(f"{self.collection} record '{record_id}' not found.")

    def get(self, record_id: str) -> RecordT:
        return self._find(self.list_all(), record_id)


class ProfileRepository(CollectionRepository[UserProfile]):
    collection = "profiles"
    model = UserProfile

    def get(self, email: str) -> UserProfile:
        normalized = self._guard.normalize_email(email)
        for profile in self.list_all():
            if profile.email == normalized:
                return profile
        raise RecordNotFoundError(f"Profile '{normalized}' not found.")

    def find(self, email: str) -> UserProfile | None:
        try:
            return self.get(email)
        except RecordNotFoundError:
            return None

    def upsert(self, profile: UserProfile) -> UserProfile:
        normalized = profile.model_copy(update={"email": self._guard.normalize_email(profile.email)})
        self._guard.ensure_language(normalized.preferred_language)

        def change(records: list[UserProfile]) -> UserProfile:
            for idx, existing in enumerate(records):
                if existing.email == normalized.email:
                    records[idx] = normalized
                    return normalized
            records.append(normalized)
            return normalized

        return self._mutate(change)

    def update_language(self, email: str, language_code: str) -> UserProfile:
        normalized_email = self._guard.normalize_email(email)
        self._guard.ensure_language(language_code)

        def change(records: list[UserProfile]) -> UserProfile:
            for idx, existing in enumerate(records):
                if existing.email == normalized_email:
                    records[idx] = existing.model_copy(update={"preferred_language": language_code})
                    return records[idx]
            raise RecordNotFoundError(f"Profile '{normalized_email}' not found.")

        return self._mutate(change)

    def delete(self, email: str) -> bool:
        normalized_email = self._guard.normalize_email(email)

        def change(records: list[UserProfile]) -> bool:
            before = len(records)
            records[:] = [record for record in records if record.email != normalized_email]
            return len(records) != before

        return self._mutate(change)


class AppointmentRepository(CollectionRepository[Appointment]):
    collection = "appointments"
    model = Appointment

    def create(
        self,
        *,
        user_id: str,
        doctor_id: str,
        doctor_name: str,
        date: str,
        time: str,
        symptoms: str = "",
        meeting_link: str | None = None,
    ) -> Appointment:
        appointment = Appointment(
            id=new_record_id("apt"),
            user_id=user_id,
            doctor_id=doctor_id,
            doctor_name=doctor_name,
            date=date,
            time=time,
            status="scheduled",
            meeting_link=meeting_link,
            symptoms=symptoms,
            created_at=to_iso(utc_now()),
        )

        def change(records: list[Appointment]) -> Appointment:
            records.append(appointment)
            return appointment

        return self._mutate(change)

    def list_for_user(self, user_id: str) -> list[Appointment]:
        return [record for record in self.list_all() if record.user_id == user_id]

    def transition(self, appointment_id: str, target_status: str) -> Appointment:
        def change(records: list[Appointment]) -> Appointment:
            current = self._find(records, appointment_id)
            self._guard.ensure_appointment_transition(current.status, target_status)
            updated = current.model_copy(update={"status": target_status})
            records[records.index(current)] = updated
            return updated

        return self._mutate(change)

    def attach_prescription(self, appointment_id: str, prescription_id: str) -> Appointment:
        def change(records: list[Appointment]) -> Appointment:
            current = self._find(records, appointment_id)
            if current.prescription_id:
                raise RecordValidationError(
                    f"Appointment '{appointment_id}' already has prescription '{current.prescription_id}'."
                )
            updated = current.model_copy(update={"prescription_id": prescription_id})
            records[records.index(current)] = updated
            return updated

        return self._mutate(change)

    def detach_prescription(self, appointment_id: str, prescription_id: str) -> Appointment:
        def change(records: list[Appointment]) -> Appointment:
            current = self._find(records, appointment_id)
            if current.prescription_id != prescription_id:
                return current
            updated = current.model_copy(update={"prescription_id": None})
            records[records.index(current)] = updated
            return updated

        return self._mutate(change)


class PrescriptionRepository(CollectionRepository[Prescription]):
    """Prescriptions are immutable once issued."""

    collection = "prescriptions"
    model = Prescription

    def build(
        self,
        *,
        appointment_id: str,
        doctor_id: str,
        doctor_name: str,
        patient_id: str,
        patient_name: str,
        date: str,
        diagnosis: str,
        medications: list[dict[str, Any]] | list[Medication],
        instructions: str,
        follow_up: str | None = None,
    ) -> Prescription:
        try:
            return Prescription(
                id=new_record_id("prx"),
                appointment_id=appointment_id,
                doctor_id=doctor_id,
                doctor_name=doctor_name,
                patient_id=patient_id,
                patient_name=patient_name,
                date=date,
                diagnosis=diagnosis,
                medications=[Medication.model_validate(item) for item in medications],
                instructions=instructions,
                follow_up=follow_up,
                created_at=to_iso(utc_now()),
            )
        except ValidationError as exc:
            raise RecordValidationError(f"Invalid prescription: {exc.error_count()} error(s)") from exc

    def issue(self, prescription: Prescription) -> Prescription:
        def change(records: list[Prescription]) -> Prescription:
            if any(record.id == prescription.id for record in records):
                raise RecordValidationError(f"Prescription '{prescription.id}' already exists.")
            records.append(prescription)
            return prescription

        return self._mutate(change)

    def list_for_patient(self, patient_id: str) -> list[Prescription]:
        return [record for record in self.list_all() if record.patient_id == patient_id]


class NotificationRepository(CollectionRepository[Notification]):
    collection = "notifications"
    model = Notification

    def create(
        self,
        *,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        appointment_id: str | None = None,
        prescription_id: str | None = None,
        action_url: str | None = None,
    ) -> Notification:
        self._guard.ensure_notification_type(notification_type)
        notification = Notification(
            id=new_record_id("ntf"),
            user_id=user_id,
            type=notification_type,  # type: ignore[arg-type]
            title=title,
            message=message,
            read=False,
            action_url=action_url,
            appointment_id=appointment_id,
            prescription_id=prescription_id,
            created_at=to_iso(utc_now()),
        )

        def change(records: list[Notification]) -> Notification:
            records.append(notification)
            return notification

        return self._mutate(change)

    def list_for_user(self, user_id: str, *, unread_only: bool = False) -> list[Notification]:
        items = [record for record in self.list_all() if record.user_id == user_id]
        if unread_only:
            items = [record for record in items if not record.read]
        return sorted(items, key=lambda record: parse_iso(record.created_at) or _EPOCH, reverse=True)

    def mark_read(self, notification_id: str, *, user_id: str) -> Notification:
        def change(records: list[Notification]) -> Notification:
            current = self._find(records, notification_id)
            self._guard.ensure_user_scope(current.user_id, user_id)
            if current.read:
                return current
            updated = current.model_copy(update={"read": True})
            records[records.index(current)] = updated
            return updated

        return self._mutate(change)

    def mark_all_read(self, user_id: str) -> int:
        def change(records: list[Notification]) -> int:
            count = 0
            for idx, record in enumerate(records):
                if record.user_id == user_id and not record.read:
                    records[idx] = record.model_copy(update={"read": True})
                    count += 1
            return count

        return self._mutate(change)


class PhoneAppointmentRepository(CollectionRepository[PhoneAppointment]):
    collection = "phone_appointments"
    model = PhoneAppointment

    _MUTABLE_FIELDS = {
        "patient_name",
        "patient_phone",
        "appointment_type",
        "preferred_date",
        "preferred_time",
        "reason",
        "status",
        "call_id",
    }

    def save(self, payload: dict[str, Any]) -> PhoneAppointment:
        data = {key: value for key, value in payload.items() if key not in {"id", "created_at"}}
        self._guard.ensure_phone_appointment_status(data.get("status", "pending"))
        try:
            appointment = PhoneAppointment(
                id=f"phone_{int(utc_now().timestamp() * 1000)}_{uuid.uuid4().hex[:9]}",
                created_at=to_iso(utc_now()),
                **data,
            )
        except ValidationError as exc:
            raise RecordValidationError(str(exc)) from exc

        def change(records: list[PhoneAppointment]) -> PhoneAppointment:
            records.append(appointment)
            return appointment

        return self._mutate(change)

    def update(self, appointment_id: str, updates: dict[str, Any]) -> PhoneAppointment | None:
        changes = {key: value for key, value in updates.items() if key in self._MUTABLE_FIELDS}
        if "status" in changes:
            self._guard.ensure_phone_appointment_status(changes["status"])

        def change(records: list[PhoneAppointment]) -> PhoneAppointment | None:
            for idx, record in enumerate(records):
                if record.id == appointment_id:
                    try:
                        records[idx] = PhoneAppointment.model_validate(record.model_dump() | changes)
                    except ValidationError as exc:
                        raise RecordValidationError(str(exc)) from exc
                    return records[idx]
            return None

        return self._mutate(change)

    def delete(self, appointment_id: str) -> bool:
        def change(records: list[PhoneAppointment]) -> bool:
            before = len(records)
            records[:] = [record for record in records if record.id != appointment_id]
            return len(records) != before

        return self._mutate(change)
