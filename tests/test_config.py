"""Regression tests for environment-driven configuration."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from dmv_monitor import config as config_module
from dmv_monitor.config import get_settings


ENV_KEYS = [
    "BOT_TOKEN",
    "ADMIN_CHAT_ID",
    "BROWSER_HEADLESS",
    "BROWSER_CHANNEL",
    "CHROME_CDP_URL",
    "NAVIGATION_TIMEOUT",
    "SETTLE_DELAY",
    "CHECK_INTERVAL",
    "DAYS_AHEAD",
    "BUSINESS_DAYS_ONLY",
    "MONITORING_ENABLED",
    "NOTIFICATION_EMAIL",
    "SMTP_SERVER",
    "SMTP_PORT",
    "SMTP_USERNAME",
    "SMTP_PASSWORD",
    "SMS_ENABLED",
    "SMS_PHONE_NUMBER",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_NUMBER",
    "STORAGE_PATH",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("BOT_TOKEN", "123:abc")
    monkeypatch.setenv("ADMIN_CHAT_ID", "42")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults() -> None:
    settings = get_settings()

    assert settings.bot.admin_chat_id == 42
    assert settings.browser.headless is True
    assert settings.browser.settle_delay == 5.0
    assert settings.defaults.monitoring.check_interval == 300
    assert settings.defaults.monitoring.days_ahead == 5
    assert settings.defaults.monitoring.business_days_only is True
    assert settings.defaults.monitoring.is_enabled is False
    assert settings.defaults.notifications.smtp_port == 587
    assert settings.defaults.notifications.smtp_password is None
    assert settings.storage.path is None


def test_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHECK_INTERVAL", "600")
    monkeypatch.setenv("DAYS_AHEAD", "10")
    monkeypatch.setenv("BUSINESS_DAYS_ONLY", "false")
    monkeypatch.setenv("MONITORING_ENABLED", "yes")
    monkeypatch.setenv("BROWSER_HEADLESS", "0")
    monkeypatch.setenv("SMTP_PASSWORD", "hunter2")
    monkeypatch.setenv("SMS_ENABLED", "true")
    monkeypatch.setenv("STORAGE_PATH", "storage.json")

    settings = get_settings()

    monitoring = settings.defaults.monitoring
    assert (monitoring.check_interval, monitoring.days_ahead) == (600, 10)
    assert monitoring.business_days_only is False
    assert monitoring.is_enabled is True
    assert settings.browser.headless is False
    assert settings.defaults.notifications.smtp_password is not None
    assert settings.defaults.notifications.smtp_password.get_secret_value() == "hunter2"
    assert settings.defaults.notifications.sms_enabled is True
    assert settings.storage.path == config_module.DATA_DIR / "storage.json"


def test_settings_are_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    first = get_settings()
    monkeypatch.setenv("CHECK_INTERVAL", "900")

    assert get_settings() is first


@pytest.mark.parametrize(
    ("key", "value"),
    [("CHECK_INTERVAL", "30"), ("DAYS_AHEAD", "31"), ("DAYS_AHEAD", "0"), ("SMTP_PORT", "70000")],
)
def test_rejects_out_of_range_values(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    monkeypatch.setenv(key, value)

    with pytest.raises(ValidationError):
        get_settings()


@pytest.mark.parametrize("key", ["CHECK_INTERVAL", "DAYS_AHEAD", "SMTP_PORT"])
def test_empty_numeric_values_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch, key: str) -> None:
    monkeypatch.setenv(key, "")

    monitoring = get_settings().defaults.monitoring

    assert (monitoring.check_interval, monitoring.days_ahead) == (300, 5)
