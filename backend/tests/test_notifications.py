from __future__ import annotations

import asyncio
import json

import httpx

from fakes import RecordingTransport
from healbuddy_integrations import (
    EmailEnvelope,
    NotificationChannels,
    NotificationDispatcher,
    SmsEnvelope,
    VoiceAgentConfig,
    format_phone_number,
)
from healbuddy_integrations.message_templates import (
    appointment_confirmation_email,
    appointment_confirmation_sms,
    appointment_reminder_sms,
    prescription_email,
)
from healbuddy_integrations.notifications import EMAILJS_SEND_URL
from records.models import Appointment, Medication, Prescription

RELAY_CHANNELS = NotificationChannels(
    email_relay_url="https://relay.test/send-email",
    sms_relay_url="https://relay.test/send-sms",
    emailjs_service_id="service_x",
    emailjs_template_id="template_y",
    emailjs_public_key="public_z",
)


def _appointment() -> Appointment:
    return Appointment(
        id="apt_1",
        user_id="asha@example.com",
        doctor_id="doc2",
        doctor_name="Dr. Rajesh Kumar",
        date="2026-03-02",
        time="14:30",
        meeting_link="https://meet.google.com/abc-defg-hij",
        symptoms="Chest pain and shortness of breath",
        created_at="2026-03-01T08:00:00Z",
    )


def _prescription() -> Prescription:
    return Prescription(
        id="prx_1",
        appointment_id="apt_1",
        doctor_id="doc1",
        doctor_name="Dr. Priya Sharma",
        patient_id="asha@example.com",
        patient_name="Asha Rao",
        date="2026-03-02",
        diagnosis="Common Cold with mild fever",
        medications=[
            Medication(
                name="Paracetamol 500mg",
                dosage="500mg",
                frequency="Three times daily",
                duration="5 days",
                instructions="Take after meals",
            )
        ],
        instructions="Rest adequately.",
        follow_up="Follow up after 5 days if symptoms persist or worsen.",
        created_at="2026-03-02T08:00:00Z",
    )


def test_email_goes_through_relay_first():
    recorder = RecordingTransport(lambda request: httpx.Response(200, json={"ok": True}))
    dispatcher = NotificationDispatcher(RELAY_CHANNELS, transport=recorder.transport)

    delivered = asyncio.run(dispatcher.send_email(EmailEnvelope(to="asha@example.com", subject="Hi", body="Body")))

    assert delivered is True
    assert [str(request.url) for request in recorder.requests] == ["https://relay.test/send-email"]
    assert recorder.json_bodies()[0]["to"] == "asha@example.com"


def test_email_falls_back_to_emailjs_once_when_relay_fails():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "relay.test":
            return httpx.Response(502, json={"error": "down"})
        return httpx.Response(200, text="OK")

    recorder = RecordingTransport(handler)
    dispatcher = NotificationDispatcher(RELAY_CHANNELS, transport=recorder.transport)

    delivered = asyncio.run(
        dispatcher.send_email(EmailEnvelope(to="asha@example.com", subject="Hi", body="Body", html="<p>Body</p>"))
    )

    assert delivered is True
    assert [str(request.url) for request in recorder.requests] == ["https://relay.test/send-email", EMAILJS_SEND_URL]
    emailjs_body = json.loads(recorder.requests[1].content)
    assert emailjs_body["service_id"] == "service_x"
    assert emailjs_body["user_id"] == "public_z"
    assert emailjs_body["template_params"]["html_content"] == "<p>Body</p>"


def test_email_reports_failure_when_both_channels_fail():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    recorder = RecordingTransport(handler)
    dispatcher = NotificationDispatcher(RELAY_CHANNELS, transport=recorder.transport)

    assert asyncio.run(dispatcher.send_email(EmailEnvelope(to="a@b.co", subject="s", body="b"))) is False
    assert len(recorder.requests) == 2


def test_sms_has_no_fallback():
    recorder = RecordingTransport(lambda request: httpx.Response(500))
    dispatcher = NotificationDispatcher(RELAY_CHANNELS, transport=recorder.transport)

    assert asyncio.run(dispatcher.send_sms(SmsEnvelope(to="+919876543210", message="hello"))) is False
    assert len(recorder.requests) == 1


def test_unconfigured_channels_send_nothing():
    recorder = RecordingTransport(lambda request: httpx.Response(200))
    dispatcher = NotificationDispatcher(NotificationChannels(), transport=recorder.transport)

    assert asyncio.run(dispatcher.send_email(EmailEnvelope(to="a@b.co", subject="s", body="b"))) is False
    assert asyncio.run(dispatcher.send_sms(SmsEnvelope(to="+15550000000", message="m"))) is False
    assert recorder.requests == []


def test_disable_external_clears_channels(monkeypatch):
    monkeypatch.setenv("HEALBUDDY_EMAIL_RELAY_URL", "https://relay.test/send-email")
    monkeypatch.setenv("HEALBUDDY_DISABLE_EXTERNAL", "true")
    assert NotificationChannels.from_env() == NotificationChannels()

    monkeypatch.setenv("HEALBUDDY_DISABLE_EXTERNAL", "false")
    assert NotificationChannels.from_env().email_relay_url == "https://relay.test/send-email"


def test_appointment_confirmation_reports_each_channel():
    recorder = RecordingTransport(lambda request: httpx.Response(200))
    dispatcher = NotificationDispatcher(RELAY_CHANNELS, transport=recorder.transport)

    report = asyncio.run(
        dispatcher.notify_appointment_confirmed(
            _appointment(),
            user_name="Asha",
            email="asha@example.com",
            mobile_number="+919876543210",
        )
    )
    no_mobile = asyncio.run(
        dispatcher.notify_appointment_confirmed(_appointment(), user_name="Asha", email="asha@example.com")
    )

    assert report.as_dict() == {"email": True, "sms": True}
    assert no_mobile.as_dict() == {"email": True, "sms": None}


def test_message_templates_carry_booking_details():
    email = appointment_confirmation_email(_appointment(), to="asha@example.com", user_name="Asha")
    sms = appointment_confirmation_sms(_appointment(), to="+919876543210", user_name="Asha")
    reminder = appointment_reminder_sms(_appointment(), to="+919876543210")

    assert email.subject == "Appointment Confirmed - HealBuddy"
    assert "Monday, March 2, 2026" in email.body
    assert "https://meet.google.com/abc-defg-hij" in (email.html or "")
    assert "3/2/2026 at 14:30" in sms.message
    assert reminder.message.startswith("REMINDER:")


def test_prescription_email_lists_medications():
    email = prescription_email(_prescription(), to="asha@example.com")

    assert email.subject == "New Prescription - HealBuddy"
    assert "1. Paracetamol 500mg - 500mg, Three times daily, 5 days" in email.body
    assert "Follow-up: Follow up after 5 days" in email.body
    assert "<em>Note: Take after meals</em>" in (email.html or "")


def test_phone_number_formatting():
    assert format_phone_number("14152311749") == "+1 (415) 231-1749"
    assert format_phone_number("+1 415-231-1749") == "+1 (415) 231-1749"
    assert format_phone_number("+91 98765 43210") == "+91 98765 43210"


def test_voice_agent_defaults(monkeypatch):
    monkeypatch.delenv("VAPI_PUBLIC_KEY", raising=False)
    monkeypatch.delenv("VAPI_ASSISTANT_ID", raising=False)
    monkeypatch.delenv("VAPI_PHONE_NUMBER", raising=False)

    config = VoiceAgentConfig.from_env().as_dict()

    assert config["phone_number"] == "+1 (415) 231-1749"
    assert config["phone_number_dialable"] == "+14152311749"
    assert config["web_calls_enabled"] is False
