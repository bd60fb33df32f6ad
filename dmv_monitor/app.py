"""
Application context: builds and owns the monitoring components.

Единый объект-контекст вместо глобальных синглтонов: создаётся при старте,
передаётся обработчикам, закрывается при завершении процесса.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .browser import BrowserFetcher, PageFetcher
from .checker import AppointmentChecker
from .config import Settings
from .dispatcher import NotificationDispatcher
from .monitor import MonitoringScheduler
from .storage import JsonFileStorage, MemoryStorage, Storage

logger = logging.getLogger(__name__)


@dataclass
class MonitorApp:
    storage: Storage
    fetcher: PageFetcher
    checker: AppointmentChecker
    dispatcher: NotificationDispatcher
    scheduler: MonitoringScheduler
    _closed: bool = field(default=False, init=False)

    @classmethod
    def build(cls, storage: Storage, fetcher: PageFetcher) -> "MonitorApp":
        checker = AppointmentChecker(storage, fetcher)
        dispatcher = NotificationDispatcher(storage)
        scheduler = MonitoringScheduler(storage, checker, dispatcher)
        return cls(
            storage=storage,
            fetcher=fetcher,
            checker=checker,
            dispatcher=dispatcher,
            scheduler=scheduler,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "MonitorApp":
        defaults = settings.defaults
        if settings.storage.path:
            logger.info("Using JSON storage at %s", settings.storage.path)
            storage: Storage = JsonFileStorage(
                settings.storage.path,
                settings=defaults.monitoring,
                notification_config=defaults.notifications,
            )
        else:
            storage = MemoryStorage(
                settings=defaults.monitoring,
                notification_config=defaults.notifications,
            )
        return cls.build(storage, BrowserFetcher(settings.browser))

    async def aclose(self) -> None:
        """Stop the scheduler, let a running check finish, then release the browser. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            await self.scheduler.shutdown()
        finally:
            await self.fetcher.close()
        logger.info("Monitor shut down")


__all__ = ["MonitorApp"]
