"""
Pydantic models for DMV monitoring domain.

Pydantic-модели: локации, настройки, слоты, журнал событий, статистика.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, SecretStr


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class LocationCreate(BaseModel):
    """Payload for a new monitored booking page."""

    name: str = Field(min_length=1)
    url: str = Field(min_length=1, pattern=r"^https?://")
    type: str = Field(min_length=1)
    enabled: bool = True


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    url: Optional[str] = Field(default=None, pattern=r"^https?://")
    type: Optional[str] = Field(default=None, min_length=1)
    enabled: Optional[bool] = None


class Location(LocationCreate):
    """Booking page of a single DMV office and service type."""

    id: str = Field(default_factory=_new_id)
    created_at: datetime = Field(default_factory=utcnow)


class MonitoringSettings(BaseModel):
    check_interval: int = Field(default=300, ge=60, description="Seconds between checks.")
    days_ahead: int = Field(default=5, ge=1, le=30)
    business_days_only: bool = True
    is_enabled: bool = False
    updated_at: datetime = Field(default_factory=utcnow)


class NotificationConfig(BaseModel):
    """Email (SMTP) and SMS (Twilio) delivery settings."""

    notification_email: str = ""
    smtp_server: str = ""
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: Optional[str] = None
    smtp_password: Optional[SecretStr] = None
    sms_enabled: bool = False
    phone_number: Optional[str] = None
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[SecretStr] = None
    twilio_phone_number: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def email_ready(self) -> bool:
        return bool(self.notification_email and self.smtp_server)

    @property
    def sms_ready(self) -> bool:
        return bool(
            self.sms_enabled
            and self.phone_number
            and self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_auth_token.get_secret_value()
            and self.twilio_phone_number
        )

    def public_view(self) -> dict[str, Any]:
        """Representation safe to show to a user: secrets are replaced by flags."""
        data = self.model_dump(exclude={"smtp_password", "twilio_auth_token"})
        data["has_smtp_password"] = bool(
            self.smtp_password and self.smtp_password.get_secret_value()
        )
        data["has_twilio_auth_token"] = bool(
            self.twilio_auth_token and self.twilio_auth_token.get_secret_value()
        )
        return data


class AppointmentSlot(BaseModel):
    """Candidate appointment opening found on a booking page."""

    location: str
    date: str  # ISO дата (YYYY-MM-DD) или значение data-date со страницы
    time: str  # сырой текст слота
    url: str


class ActivityKind(str, Enum):
    APPOINTMENT_FOUND = "appointment_found"
    CHECK_COMPLETED = "check_completed"
    MONITORING_STARTED = "monitoring_started"
    MONITORING_STOPPED = "monitoring_stopped"
    NOTIFICATION_SENT = "notification_sent"
    NOTIFICATION_FAILED = "notification_failed"
    ERROR = "error"


class ActivityLog(BaseModel):
    """Immutable user-visible record of a monitoring event."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=_new_id)
    type: ActivityKind
    title: str
    description: Optional[str] = None
    action: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)


class MonitoringStats(BaseModel):
    total_checks: int = 0
    appointments_found: int = 0
    emails_sent: int = 0
    sms_sent: int = 0
    last_check_time: Optional[datetime] = None
    uptime: int = 0  # минуты
    updated_at: datetime = Field(default_factory=utcnow)


class MonitorStatus(BaseModel):
    is_running: bool = False
    start_time: Optional[datetime] = None
    uptime_minutes: int = 0


class CycleResult(BaseModel):
    """Outcome of one check cycle, returned to manual callers."""

    slots: list[AppointmentSlot] = Field(default_factory=list)
    notified: dict[str, bool] = Field(default_factory=dict)
    error: Optional[str] = None
    finished_at: datetime = Field(default_factory=utcnow)

    @property
    def found(self) -> bool:
        return bool(self.slots)


__all__ = [
    "ActivityKind",
    "ActivityLog",
    "AppointmentSlot",
    "CycleResult",
    "Location",
    "LocationCreate",
    "LocationUpdate",
    "MonitorStatus",
    "MonitoringSettings",
    "MonitoringStats",
    "NotificationConfig",
]
