"""
Utility helpers: logging setup and small formatting helpers.

Вспомогательные функции: настройка логирования и форматирование.
"""

from __future__ import annotations

import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import LoggingConfig, get_settings


def setup_logging(logging_cfg: LoggingConfig | None = None) -> None:
    """
    Configure application-wide logging with rotation.

    Настраивает логирование в файл с ротацией и вывод в консоль.
    """
    if logging_cfg is None:
        logging_cfg = get_settings().logging

    logs_dir: Path = logging_cfg.logs_dir
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / "dmv_monitor.log"

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=logging_cfg.max_bytes,
        backupCount=logging_cfg.backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(logging_cfg.log_level.upper())
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # httpx и aiogram слишком многословны на INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiogram.event").setLevel(logging.WARNING)


def format_timestamp(value: Optional[datetime]) -> str:
    """Short local-time representation for chat messages; '—' when missing."""
    if value is None:
        return "—"
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def format_uptime(minutes: int) -> str:
    hours, mins = divmod(max(0, minutes), 60)
    if hours:
        return f"{hours}h {mins}m"
    return f"{mins}m"


__all__ = ["setup_logging", "format_timestamp", "format_uptime"]
