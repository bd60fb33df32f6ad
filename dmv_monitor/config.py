"""
Config loading via Pydantic v2 and python-dotenv.

Загрузка конфигурации из .env и базовая валидация.
"""

from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, ValidationError

from .models import MonitoringSettings, NotificationConfig


BASE_DIR = Path(__file__).resolve().parent.parent
# В Docker можно задать DATA_DIR=/app/data и смонтировать volume, тогда снимок хранилища сохранится
DATA_DIR = Path(os.environ.get("DATA_DIR", str(BASE_DIR)))
ENV_PATH = BASE_DIR / ".env"

# Явно загружаем переменные окружения из .env, если файл существует
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=False)


class BotConfig(BaseModel):
    token: str
    admin_chat_id: int


class BrowserConfig(BaseModel):
    headless: bool = True
    channel: Optional[str] = None
    cdp_url: Optional[str] = None
    navigation_timeout: float = Field(default=30.0, gt=0, description="Seconds per page load.")
    settle_delay: float = Field(default=5.0, ge=0, description="Seconds to wait for dynamic content.")
    user_agent: str = (
        "Mozilla/5.0 (X11; Linux x86_64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/122.0.0.0 Safari/537.36"
    )


class DefaultsConfig(BaseModel):
    """Initial values for the singletons kept in storage."""

    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)


class StorageConfig(BaseModel):
    path: Optional[Path] = Field(
        default=None,
        description="JSON snapshot file. Empty means in-memory storage only.",
    )


class LoggingConfig(BaseModel):
    logs_dir: Path = Field(default_factory=lambda: BASE_DIR / "logs")
    log_level: str = Field(default="INFO")
    max_bytes: int = Field(default=5 * 1024 * 1024)  # 5 MB
    backup_count: int = Field(default=5)


class Settings(BaseModel):
    bot: BotConfig
    browser: BrowserConfig = BrowserConfig()
    defaults: DefaultsConfig = DefaultsConfig()
    storage: StorageConfig = StorageConfig()
    logging: LoggingConfig = LoggingConfig()


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_optional(value: str | None) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


@lru_cache
def get_settings() -> Settings:
    """
    Load and cache settings.

    Raises ValidationError if .env is incomplete or invalid.
    """
    # Собираем значения из окружения вручную, чтобы не зависеть от pydantic-settings
    env = os.environ

    try:
        bot = BotConfig(
            token=env.get("BOT_TOKEN", ""),
            admin_chat_id=int(env.get("ADMIN_CHAT_ID", "0") or "0"),
        )
        browser = BrowserConfig(
            headless=_env_bool(env.get("BROWSER_HEADLESS"), True),
            channel=_env_optional(env.get("BROWSER_CHANNEL")),
            cdp_url=_env_optional(env.get("CHROME_CDP_URL")),
            navigation_timeout=float(env.get("NAVIGATION_TIMEOUT", "30") or "30"),
            settle_delay=float(env.get("SETTLE_DELAY", "5") or "5"),
        )
        monitoring = MonitoringSettings(
            check_interval=int(env.get("CHECK_INTERVAL", "300") or "300"),
            days_ahead=int(env.get("DAYS_AHEAD", "5") or "5"),
            business_days_only=_env_bool(env.get("BUSINESS_DAYS_ONLY"), True),
            is_enabled=_env_bool(env.get("MONITORING_ENABLED"), False),
        )
        smtp_password = _env_optional(env.get("SMTP_PASSWORD"))
        twilio_token = _env_optional(env.get("TWILIO_AUTH_TOKEN"))
        notifications = NotificationConfig(
            notification_email=env.get("NOTIFICATION_EMAIL", "").strip(),
            smtp_server=env.get("SMTP_SERVER", "").strip(),
            smtp_port=int(env.get("SMTP_PORT", "587") or "587"),
            smtp_username=_env_optional(env.get("SMTP_USERNAME")),
            smtp_password=SecretStr(smtp_password) if smtp_password else None,
            sms_enabled=_env_bool(env.get("SMS_ENABLED"), False),
            phone_number=_env_optional(env.get("SMS_PHONE_NUMBER")),
            twilio_account_sid=_env_optional(env.get("TWILIO_ACCOUNT_SID")),
            twilio_auth_token=SecretStr(twilio_token) if twilio_token else None,
            twilio_phone_number=_env_optional(env.get("TWILIO_PHONE_NUMBER")),
        )
        storage_path = _env_optional(env.get("STORAGE_PATH"))
        storage = StorageConfig(path=DATA_DIR / storage_path if storage_path else None)
        logging_cfg = LoggingConfig(log_level=env.get("LOG_LEVEL", "INFO") or "INFO")
        return Settings(
            bot=bot,
            browser=browser,
            defaults=DefaultsConfig(monitoring=monitoring, notifications=notifications),
            storage=storage,
            logging=logging_cfg,
        )
    except ValidationError:
        # Пробрасываем дальше, чтобы верхний уровень мог вывести аккуратную ошибку
        raise


__all__ = [
    "BrowserConfig",
    "DefaultsConfig",
    "LoggingConfig",
    "Settings",
    "StorageConfig",
    "get_settings",
    "BASE_DIR",
    "DATA_DIR",
]
