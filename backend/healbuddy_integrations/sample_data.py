from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from records import RecordsService
from records.time_utils import utc_now

from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

SAMPLE_MEDICATIONS: list[dict[str, str]] = [
    {
        "name": "Paracetamol 500mg",
        "dosage": "500mg",
        "frequency": "Three times daily",
        "duration": "5 days",
        "instructions": "Take after meals",
    },
    {
        "name": "Vitamin C",
        "dosage": "1000mg",
        "frequency": "Once daily",
        "duration": "7 days",
        "instructions": "Take with water in the morning",
    },
    {
        "name": "Cetirizine 10mg",
        "dosage": "10mg",
        "frequency": "Once daily (at night)",
        "duration": "3 days",
        "instructions": "May cause drowsiness",
    },
]


async def seed_sample_data(
    records: RecordsService,
    dispatcher: NotificationDispatcher,
    *,
    user_id: str,
    user_name: str,
    email: str | None,
    mobile_number: str | None = None,
) -> dict[str, Any]:
    """Book a follow-up consultation for tomorrow and a completed visit with a prescription."""
    today = utc_now().date()
    upcoming, _ = records.book_appointment(
        user_id=user_id,
        doctor_id="doc2",
        doctor_name="Dr. Rajesh Kumar",
        date=(today + timedelta(days=1)).isoformat(),
        time="14:30",
        symptoms="Chest pain and shortness of breath",
        meeting_link="https://meet.google.com/abc-defg-hij",
    )

    visit, _ = records.book_appointment(
        user_id=user_id,
        doctor_id="doc1",
        doctor_name="Dr. Priya Sharma",
        date=today.isoformat(),
        time="10:00",
        symptoms="Runny nose, sore throat and mild fever",
    )
    records.appointments.transition(visit.id, "completed")
    prescription, notification = records.issue_prescription(
        appointment_id=visit.id,
        doctor_id="doc1",
        doctor_name="Dr. Priya Sharma",
        patient_name=user_name,
        date=today.isoformat(),
        diagnosis="Common Cold with mild fever",
        medications=SAMPLE_MEDICATIONS,
        instructions=(
            "Rest adequately, drink plenty of fluids, and avoid cold beverages. Use a humidifier if needed."
        ),
        follow_up="Follow up after 5 days if symptoms persist or worsen.",
    )
    delivery = await dispatcher.notify_prescription_issued(
        prescription,
        email=email,
        mobile_number=mobile_number,
    )
    logger.info("sample data seeded for %s (delivery %s)", user_id, delivery.as_dict())
    return {
        "appointments": [upcoming.model_dump(), records.appointments.get(visit.id).model_dump()],
        "prescription": prescription.model_dump(),
        "notification": notification.model_dump(),
        "delivery": delivery.as_dict(),
    }
