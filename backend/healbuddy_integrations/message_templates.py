from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from html import escape

from records.models import Appointment, Prescription
from records.time_utils import parse_iso

SUPPORT_EMAIL = "support@healbuddy.com"


@dataclass(frozen=True)
class EmailEnvelope:
    to: str
    subject: str
    body: str
    html: str | None = None


@dataclass(frozen=True)
class SmsEnvelope:
    to: str
    message: str


def _parse_day(value: str) -> datetime | None:
    try:
        return datetime.strptime(value[:10], "%Y-%m-%d")
    except ValueError:
        return parse_iso(value)


def long_date(value: str) -> str:
    parsed = _parse_day(value)
    if not parsed:
        return value
    return f"{parsed.strftime('%A, %B')} {parsed.day}, {parsed.year}"


def short_date(value: str) -> str:
    parsed = _parse_day(value)
    if not parsed:
        return value
    return f"{parsed.month}/{parsed.day}/{parsed.year}"


def _html_page(title: str, accent: str, inner: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ background: {accent}; color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0; }}
    .content {{ background: #ffffff; padding: 30px; border: 1px solid #e0e0e0; }}
    .detail-box {{ background: #f8f9fa; padding: 20px; border-radius: 8px; margin: 20px 0; border-left: 4px solid {accent}; }}
    .footer {{ text-align: center; padding: 20px; color: #666; font-size: 12px; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1>{escape(title)}</h1></div>
    <div class="content">
{inner}
    </div>
    <div class="footer">
      <p>Stay healthy!<br><strong>Team HealBuddy</strong></p>
      <p style="font-size: 11px; color: #999;">This is an automated message. Please do not reply to this email.</p>
    </div>
  </div>
</body>
</html>
"""


def appointment_confirmation_email(appointment: Appointment, *, to: str, user_name: str) -> EmailEnvelope:
    when = long_date(appointment.date)
    meeting = appointment.meeting_link or "Will be shared shortly"
    body_lines = [
        f"Dear {user_name},",
        "",
        "Your appointment has been confirmed!",
        "",
        "Appointment Details:",
        f"Doctor: {appointment.doctor_name}",
        f"Date: {when}",
        f"Time: {appointment.time}",
        f"Appointment ID: {appointment.id}",
        "",
        f"Meeting Link: {meeting}",
    ]
    if appointment.symptoms:
        body_lines += ["", f"Your Symptoms: {appointment.symptoms}"]
    body_lines += [
        "",
        "Important Reminders:",
        "- Join the meeting 5 minutes early",
        "- Keep your medical history ready",
        "- Prepare any questions for the doctor",
        "- You'll receive a reminder 30 minutes before",
        "",
        f"Need to reschedule? Contact us at {SUPPORT_EMAIL}",
        "",
        "Stay healthy!",
        "Team HealBuddy",
    ]
    inner = [
        f"      <p>Dear <strong>{escape(user_name)}</strong>,</p>",
        "      <p>Your appointment has been successfully confirmed.</p>",
        '      <div class="detail-box">',
        f"        <div><strong>Doctor:</strong> {escape(appointment.doctor_name)}</div>",
        f"        <div><strong>Date:</strong> {escape(when)}</div>",
        f"        <div><strong>Time:</strong> {escape(appointment.time)}</div>",
        f"        <div><strong>Appointment ID:</strong> {escape(appointment.id)}</div>",
        "      </div>",
    ]
    if appointment.meeting_link:
        inner.append(f'      <p><a href="{escape(appointment.meeting_link)}">Join Video Consultation</a></p>')
    if appointment.symptoms:
        inner.append(f"      <p><strong>Your Symptoms:</strong><br>{escape(appointment.symptoms)}</p>")
    inner.append(f'      <p>Need to reschedule? Contact us at <a href="mailto:{SUPPORT_EMAIL}">{SUPPORT_EMAIL}</a></p>')
    return EmailEnvelope(
        to=to,
        subject="Appointment Confirmed - HealBuddy",
        body="\n".join(body_lines),
        html=_html_page("Appointment Confirmed!", "#667eea", "\n".join(inner)),
    )


def appointment_confirmation_sms(appointment: Appointment, *, to: str, user_name: str) -> SmsEnvelope:
    return SmsEnvelope(
        to=to,
        message=(
            f"Dear {user_name}, Your appointment with {appointment.doctor_name} is confirmed for "
            f"{short_date(appointment.date)} at {appointment.time}. "
            f"Meeting: {appointment.meeting_link or 'Will be shared'}. ID: {appointment.id}. -HealBuddy"
        ),
    )


def prescription_email(prescription: Prescription, *, to: str) -> EmailEnvelope:
    medications = "\n".join(
        f"{idx}. {med.name} - {med.dosage}, {med.frequency}, {med.duration}"
        for idx, med in enumerate(prescription.medications, start=1)
    )
    body_lines = [
        f"Dear {prescription.patient_name},",
        "",
        f"{prescription.doctor_name} has issued a new prescription for you.",
        "",
        "Prescription Details:",
        f"Prescription ID: {prescription.id}",
        f"Date: {short_date(prescription.date)}",
        f"Diagnosis: {prescription.diagnosis}",
        "",
        "Medications Prescribed:",
        medications,
        "",
        f"Instructions: {prescription.instructions}",
    ]
    if prescription.follow_up:
        body_lines += ["", f"Follow-up: {prescription.follow_up}"]
    body_lines += [
        "",
        "Please download your prescription from the HealBuddy app for complete details.",
        "",
        "Stay healthy!",
        "Team HealBuddy",
    ]
    med_items = "\n".join(
        f"        <li><strong>{escape(med.name)}</strong> - Dosage: {escape(med.dosage)} | "
        f"Frequency: {escape(med.frequency)} | Duration: {escape(med.duration)}"
        + (f"<br><em>Note: {escape(med.instructions)}</em>" if med.instructions else "")
        + "</li>"
        for med in prescription.medications
    )
    inner = [
        f"      <p>Dear <strong>{escape(prescription.patient_name)}</strong>,</p>",
        f"      <p>{escape(prescription.doctor_name)} has issued a new prescription for you.</p>",
        '      <div class="detail-box">',
        f"        <div><strong>Prescription ID:</strong> {escape(prescription.id)}</div>",
        f"        <div><strong>Date:</strong> {escape(short_date(prescription.date))}</div>",
        f"        <div><strong>Diagnosis:</strong> {escape(prescription.diagnosis)}</div>",
        "      </div>",
        "      <h3>Medications Prescribed:</h3>",
        "      <ol>",
        med_items,
        "      </ol>",
        f"      <p><strong>Instructions:</strong><br>{escape(prescription.instructions)}</p>",
    ]
    if prescription.follow_up:
        inner.append(f"      <p><strong>Follow-up Required:</strong><br>{escape(prescription.follow_up)}</p>")
    return EmailEnvelope(
        to=to,
        subject="New Prescription - HealBuddy",
        body="\n".join(body_lines),
        html=_html_page("New Prescription", "#10b981", "\n".join(inner)),
    )


def prescription_sms(prescription: Prescription, *, to: str) -> SmsEnvelope:
    return SmsEnvelope(
        to=to,
        message=(
            f"Dear {prescription.patient_name}, {prescription.doctor_name} has issued a new prescription "
            f"(ID: {prescription.id}). Diagnosis: {prescription.diagnosis}. "
            "Please check the HealBuddy app for complete details. -HealBuddy"
        ),
    )


def appointment_reminder_email(appointment: Appointment, *, to: str, user_name: str) -> EmailEnvelope:
    return EmailEnvelope(
        to=to,
        subject="Appointment Reminder - In 30 Minutes!",
        body=(
            f"Dear {user_name},\n\n"
            f"This is a reminder that your appointment with {appointment.doctor_name} is scheduled in 30 minutes.\n\n"
            f"Time: {appointment.time}\n"
            f"Meeting Link: {appointment.meeting_link or 'Will be shared shortly'}\n\n"
            "Please join 5 minutes early.\n\n"
            "Team HealBuddy"
        ),
    )


def appointment_reminder_sms(appointment: Appointment, *, to: str) -> SmsEnvelope:
    return SmsEnvelope(
        to=to,
        message=(
            f"REMINDER: Your appointment with {appointment.doctor_name} is in 30 minutes at {appointment.time}. "
            f"Join: {appointment.meeting_link or 'link to follow'} -HealBuddy"
        ),
    )
