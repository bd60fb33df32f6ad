"""
Notification channels: email over SMTP and SMS over the Twilio REST API.

Каналы уведомлений. Каждый канал сам форматирует сообщение и сам
отправляет его; ошибки отправки поднимаются как NotificationError.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.mime.text import MIMEText
from typing import List, Optional, Protocol, Sequence

import httpx

from .errors import NotificationError
from .models import AppointmentSlot, NotificationConfig

logger = logging.getLogger(__name__)


TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
SMTP_TIMEOUT = 30.0
SMS_TIMEOUT = 15.0

EMAIL_TEST_SUBJECT = "DMV Monitor - Test Email"
EMAIL_TEST_BODY = (
    "This is a test email from your DMV appointment monitor. "
    "If you received this, your email configuration is working correctly!"
)
SMS_TEST_BODY = "Test message from your DMV appointment monitor. SMS notifications are working correctly!"


@dataclass(frozen=True)
class Message:
    body: str
    subject: str = ""


class NotificationChannel(Protocol):
    """Independent delivery mechanism used by the dispatcher."""

    name: str

    def can_test_now(self) -> bool: ...

    def format_slots(self, slots: Sequence[AppointmentSlot]) -> Message: ...

    async def send(self, message: Message) -> None: ...

    async def send_test(self) -> None: ...


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def format_email(slots: Sequence[AppointmentSlot]) -> Message:
    """Plain-text email listing every slot with its booking link."""
    subject = f"DMV Appointment Available - {_plural(len(slots), 'slot')} found!"
    details = "\n\n".join(f"• {slot.location}\n  {slot.time}\n  Book here: {slot.url}" for slot in slots)
    body = (
        "Great news! We found available DMV appointment slots:\n\n"
        f"{details}\n\n"
        "Book quickly as these slots may fill up fast!"
    )
    return Message(body=body, subject=subject)


def short_location(name: str) -> str:
    """Shorten office names for SMS: 'Henderson DMV (DL)' -> 'Henderson DL'."""
    return name.replace(" DMV", "").replace(" (All Services)", "").replace(" (DL)", " DL")


def format_sms(slots: Sequence[AppointmentSlot]) -> Message:
    header = f"🚗 DMV Alert! {_plural(len(slots), 'appointment')} available:"
    details = "\n".join(f"• {short_location(slot.location)}: {slot.time}" for slot in slots)
    footer = "Book quickly - slots fill up fast!"
    return Message(body=f"{header}\n\n{details}\n\n{footer}")


class EmailChannel:
    """SMTP delivery; smtplib is blocking, so sending runs in a worker thread."""

    name = "email"

    def __init__(self, config: NotificationConfig) -> None:
        self._config = config

    def can_test_now(self) -> bool:
        return self._config.email_ready

    def format_slots(self, slots: Sequence[AppointmentSlot]) -> Message:
        return format_email(slots)

    async def send(self, message: Message) -> None:
        if not self.can_test_now():
            raise NotificationError("email configuration not found", channel=self.name)
        try:
            await asyncio.to_thread(self._send_blocking, message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(str(e) or e.__class__.__name__, channel=self.name) from e
        logger.info("Email sent to %s", self._config.notification_email)

    async def send_test(self) -> None:
        await self.send(Message(body=EMAIL_TEST_BODY, subject=EMAIL_TEST_SUBJECT))

    def _send_blocking(self, message: Message) -> None:
        cfg = self._config
        sender = cfg.smtp_username or cfg.notification_email

        mime = MIMEText(message.body, "plain", "utf-8")
        mime["From"] = sender
        mime["To"] = cfg.notification_email
        mime["Subject"] = message.subject

        password = cfg.smtp_password.get_secret_value() if cfg.smtp_password else ""
        if cfg.smtp_port == 465:
            server: smtplib.SMTP = smtplib.SMTP_SSL(cfg.smtp_server, cfg.smtp_port, timeout=SMTP_TIMEOUT)
        else:
            server = smtplib.SMTP(cfg.smtp_server, cfg.smtp_port, timeout=SMTP_TIMEOUT)
        with server:
            if cfg.smtp_port != 465:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
            # Авторизация только при наличии логина и пароля
            if cfg.smtp_username and password:
                server.login(cfg.smtp_username, password)
            server.sendmail(sender, [cfg.notification_email], mime.as_string())


class SmsChannel:
    """SMS through the Twilio Messages API."""

    name = "sms"

    def __init__(self, config: NotificationConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._config = config
        self._transport = transport

    def can_test_now(self) -> bool:
        return self._config.sms_ready

    def format_slots(self, slots: Sequence[AppointmentSlot]) -> Message:
        return format_sms(slots)

    async def send(self, message: Message) -> None:
        if not self.can_test_now():
            raise NotificationError("SMS configuration incomplete or disabled", channel=self.name)

        cfg = self._config
        sid = cfg.twilio_account_sid or ""
        token = cfg.twilio_auth_token.get_secret_value() if cfg.twilio_auth_token else ""
        url = f"{TWILIO_API_BASE}/Accounts/{sid}/Messages.json"
        payload = {"To": cfg.phone_number, "From": cfg.twilio_phone_number, "Body": message.body}

        logger.info("Sending SMS to %s", cfg.phone_number)
        try:
            async with httpx.AsyncClient(timeout=SMS_TIMEOUT, transport=self._transport) as client:
                response = await client.post(url, data=payload, auth=(sid, token))
        except httpx.HTTPError as e:
            raise NotificationError(f"request failed: {e}", channel=self.name) from e

        if response.is_success:
            logger.info("SMS sent")
            return
        logger.error("SMS send failed: status=%s body=%s", response.status_code, response.text)
        raise NotificationError(f"Twilio returned {response.status_code}: {response.text}", channel=self.name)

    async def send_test(self) -> None:
        await self.send(Message(body=SMS_TEST_BODY))


def build_channels(config: Optional[NotificationConfig]) -> List[NotificationChannel]:
    """All known channels for a config, configured or not."""
    config = config or NotificationConfig()
    return [EmailChannel(config), SmsChannel(config)]


__all__ = [
    "EmailChannel",
    "Message",
    "NotificationChannel",
    "SmsChannel",
    "build_channels",
    "format_email",
    "format_sms",
    "short_location",
]
