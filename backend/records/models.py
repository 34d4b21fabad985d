from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


AppointmentStatus = Literal["scheduled", "completed", "cancelled"]
NotificationType = Literal["appointment", "prescription", "reminder", "general"]
PhoneAppointmentStatus = Literal["pending", "confirmed", "cancelled"]


class UserProfile(BaseModel):
    full_name: str
    email: str
    age: int = Field(ge=0, le=150)
    gender: str = ""
    medical_history: str = ""
    preferred_language: str = "en"
    mobile_number: str | None = None


class Appointment(BaseModel):
    id: str
    user_id: str
    doctor_id: str
    doctor_name: str
    date: str
    time: str
    status: AppointmentStatus = "scheduled"
    meeting_link: str | None = None
    prescription_id: str | None = None
    symptoms: str = ""
    created_at: str


class Medication(BaseModel):
    name: str
    dosage: str
    frequency: str
    duration: str
    instructions: str = ""


class Prescription(BaseModel):
    id: str
    appointment_id: str
    doctor_id: str
    doctor_name: str
    patient_id: str
    patient_name: str
    date: str
    diagnosis: str
    medications: list[Medication] = Field(default_factory=list)
    instructions: str = ""
    follow_up: str | None = None
    created_at: str


class Notification(BaseModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    read: bool = False
    action_url: str | None = None
    appointment_id: str | None = None
    prescription_id: str | None = None
    created_at: str


class PhoneAppointment(BaseModel):
    id: str
    patient_name: str
    patient_phone: str
    appointment_type: str
    preferred_date: str
    preferred_time: str
    reason: str = ""
    status: PhoneAppointmentStatus = "pending"
    booked_via: Literal["phone", "web"] = "phone"
    call_id: str | None = None
    created_at: str
