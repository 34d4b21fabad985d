from __future__ import annotations

from typing import Any

from .database import KeyValueStore
from .models import Appointment, Medication, Notification, Prescription
from .record_policy import RecordPolicyGuard, RecordStoreError, RecordValidationError
from .repositories import (
    AppointmentRepository,
    NotificationRepository,
    PhoneAppointmentRepository,
    PrescriptionRepository,
    ProfileRepository,
)


class RecordsService:
    def __init__(self, store: KeyValueStore, *, supported_languages: set[str]) -> None:
        self.store = store
        self.guard = RecordPolicyGuard(supported_languages)
        self.profiles = ProfileRepository(store, self.guard)
        self.appointments = AppointmentRepository(store, self.guard)
        self.prescriptions = PrescriptionRepository(store, self.guard)
        self.notifications = NotificationRepository(store, self.guard)
        self.phone_appointments = PhoneAppointmentRepository(store, self.guard)

    def book_appointment(
        self,
        *,
        user_id: str,
        doctor_id: str,
        doctor_name: str,
        date: str,
        time: str,
        symptoms: str = "",
        meeting_link: str | None = None,
    ) -> tuple[Appointment, Notification]:
        appointment = self.appointments.create(
            user_id=user_id,
            doctor_id=doctor_id,
            doctor_name=doctor_name,
            date=date,
            time=time,
            symptoms=symptoms,
            meeting_link=meeting_link,
        )
        notification = self.notifications.create(
            user_id=user_id,
            notification_type="appointment",
            title="Appointment Confirmed",
            message=f"Your appointment with {doctor_name} is confirmed for {date} at {time}.",
            appointment_id=appointment.id,
            action_url=meeting_link,
        )
        return appointment, notification

    def issue_prescription(
        self,
        *,
        appointment_id: str,
        doctor_id: str,
        doctor_name: str,
        patient_name: str,
        date: str,
        diagnosis: str,
        medications: list[dict[str, Any]] | list[Medication],
        instructions: str,
        follow_up: str | None = None,
    ) -> tuple[Prescription, Notification]:
        appointment = self.appointments.get(appointment_id)
        if appointment.status == "cancelled":
            raise RecordValidationError("Cannot issue a prescription for a cancelled appointment.")
        prescription = self.prescriptions.build(
            appointment_id=appointment_id,
            doctor_id=doctor_id,
            doctor_name=doctor_name,
            patient_id=appointment.user_id,
            patient_name=patient_name,
            date=date,
            diagnosis=diagnosis,
            medications=medications,
            instructions=instructions,
            follow_up=follow_up,
        )
        # The link is the single-prescription lock; it is released if the prescription is not stored.
        self.appointments.attach_prescription(appointment_id, prescription.id)
        try:
            self.prescriptions.issue(prescription)
        except RecordStoreError:
            self.appointments.detach_prescription(appointment_id, prescription.id)
            raise
        notification = self.notifications.create(
            user_id=appointment.user_id,
            notification_type="prescription",
            title="New Prescription Available",
            message=f"{doctor_name} has issued a new prescription for you",
            appointment_id=appointment_id,
            prescription_id=prescription.id,
        )
        return prescription, notification
