from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx

from records.models import Appointment, Prescription

from .message_templates import (
    EmailEnvelope,
    SmsEnvelope,
    appointment_confirmation_email,
    appointment_confirmation_sms,
    appointment_reminder_email,
    appointment_reminder_sms,
    prescription_email,
    prescription_sms,
)

logger = logging.getLogger(__name__)

EMAILJS_SEND_URL = "https://api.emailjs.com/api/v1.0/email/send"


def _external_disabled() -> bool:
    return (os.getenv("HEALBUDDY_DISABLE_EXTERNAL") or "false").strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class NotificationChannels:
    email_relay_url: str | None = None
    sms_relay_url: str | None = None
    emailjs_service_id: str | None = None
    emailjs_template_id: str | None = None
    emailjs_public_key: str | None = None

    @classmethod
    def from_env(cls) -> "NotificationChannels":
        if _external_disabled():
            return cls()

        def _value(name: str) -> str | None:
            return (os.getenv(name) or "").strip() or None

        return cls(
            email_relay_url=_value("HEALBUDDY_EMAIL_RELAY_URL"),
            sms_relay_url=_value("HEALBUDDY_SMS_RELAY_URL"),
            emailjs_service_id=_value("EMAILJS_SERVICE_ID"),
            emailjs_template_id=_value("EMAILJS_TEMPLATE_ID"),
            emailjs_public_key=_value("EMAILJS_PUBLIC_KEY"),
        )

    @property
    def emailjs_configured(self) -> bool:
        return bool(self.emailjs_service_id and self.emailjs_template_id and self.emailjs_public_key)


@dataclass
class DeliveryReport:
    email: bool | None = None
    sms: bool | None = None

    def as_dict(self) -> dict[str, bool | None]:
        return {"email": self.email, "sms": self.sms}


class NotificationDispatcher:
    """Sends email and SMS; every send returns a bool and never raises.

    Email goes to the backend relay first and falls back to EmailJS. SMS has
    no fallback.
    """

    def __init__(
        self,
        channels: NotificationChannels,
        *,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.channels = channels
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_env(cls, transport: httpx.AsyncBaseTransport | None = None) -> "NotificationDispatcher":
        return cls(NotificationChannels.from_env(), transport=transport)

    async def _post_json(self, url: str, payload: dict[str, Any], *, channel: str) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds, connect=8.0),
                transport=self._transport,
            ) as client:
                response = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("%s delivery to %s failed: %s", channel, url, exc)
            return False
        if response.status_code >= 400:
            logger.warning("%s delivery to %s rejected with status %s", channel, url, response.status_code)
            return False
        return True

    async def send_email(self, envelope: EmailEnvelope) -> bool:
        if not envelope.to:
            return False
        if self.channels.email_relay_url:
            payload = {
                "to": envelope.to,
                "subject": envelope.subject,
                "body": envelope.body,
                "html": envelope.html,
            }
            if await self._post_json(self.channels.email_relay_url, payload, channel="email relay"):
                logger.info("email sent to %s via relay", envelope.to)
                return True
        if not self.channels.emailjs_configured:
            logger.info("email to %s not sent: no delivery channel available", envelope.to)
            return False
        payload = {
            "service_id": self.channels.emailjs_service_id,
            "template_id": self.channels.emailjs_template_id,
            "user_id": self.channels.emailjs_public_key,
            "template_params": {
                "to_email": envelope.to,
                "subject": envelope.subject,
                "message": envelope.body,
                "html_content": envelope.html or envelope.body,
            },
        }
        delivered = await self._post_json(EMAILJS_SEND_URL, payload, channel="emailjs")
        if delivered:
            logger.info("email sent to %s via emailjs", envelope.to)
        return delivered

    async def send_sms(self, envelope: SmsEnvelope) -> bool:
        if not envelope.to:
            return False
        if not self.channels.sms_relay_url:
            logger.info("sms to %s not sent: relay not configured", envelope.to)
            return False
        delivered = await self._post_json(
            self.channels.sms_relay_url,
            {"to": envelope.to, "message": envelope.message},
            channel="sms relay",
        )
        if delivered:
            logger.info("sms sent to %s", envelope.to)
        return delivered

    async def notify_appointment_confirmed(
        self,
        appointment: Appointment,
        *,
        user_name: str,
        email: str | None,
        mobile_number: str | None = None,
    ) -> DeliveryReport:
        report = DeliveryReport()
        if email:
            report.email = await self.send_email(
                appointment_confirmation_email(appointment, to=email, user_name=user_name)
            )
        if mobile_number:
            report.sms = await self.send_sms(
                appointment_confirmation_sms(appointment, to=mobile_number, user_name=user_name)
            )
        return report

    async def notify_prescription_issued(
        self,
        prescription: Prescription,
        *,
        email: str | None,
        mobile_number: str | None = None,
    ) -> DeliveryReport:
        report = DeliveryReport()
        if email:
            report.email = await self.send_email(prescription_email(prescription, to=email))
        if mobile_number:
            report.sms = await self.send_sms(prescription_sms(prescription, to=mobile_number))
        return report

    async def send_appointment_reminder(
        self,
        appointment: Appointment,
        *,
        user_name: str,
        email: str | None,
        mobile_number: str | None = None,
    ) -> DeliveryReport:
        report = DeliveryReport()
        if email:
            report.email = await self.send_email(appointment_reminder_email(appointment, to=email, user_name=user_name))
        if mobile_number:
            report.sms = await self.send_sms(appointment_reminder_sms(appointment, to=mobile_number))
        return report
