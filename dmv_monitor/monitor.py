"""
Monitoring scheduler for DMV booking pages.

Сервис мониторинга в фоне:
- периодические проверки по таймеру
- ручная проверка «сейчас» без параллельных циклов
- статистика и журнал событий по итогам каждого цикла
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from .checker import AppointmentChecker
from .dispatcher import NotificationDispatcher
from .errors import ConfigurationError
from .models import (
    ActivityKind,
    ActivityLog,
    AppointmentSlot,
    CycleResult,
    MonitoringStats,
    MonitorStatus,
    utcnow,
)
from .storage import Storage
from .timer import AsyncioRepeatingTimer, RepeatingTimer

logger = logging.getLogger(__name__)


Clock = Callable[[], datetime]
TimerFactory = Callable[[], RepeatingTimer]

CHANNEL_LABELS = {"email": "Email", "sms": "SMS"}
SHUTDOWN_TIMEOUT = 30.0  # секунды


def interval_minutes(check_interval: int) -> int:
    """Check interval in whole minutes, at least one."""
    return max(1, check_interval // 60)


class MonitoringScheduler:
    """
    Start/stop-able periodic check loop.

    Only one check cycle runs at a time: a manual check issued during a
    cycle waits for that cycle and receives its result, timer ticks that
    arrive during a cycle are skipped.
    """

    def __init__(
        self,
        storage: Storage,
        checker: AppointmentChecker,
        dispatcher: NotificationDispatcher,
        *,
        timer_factory: TimerFactory = AsyncioRepeatingTimer,
        clock: Clock = utcnow,
    ) -> None:
        self._storage = storage
        self._checker = checker
        self._dispatcher = dispatcher
        self._timer_factory = timer_factory
        self._clock = clock
        self._timer: Optional[RepeatingTimer] = None
        self._is_running = False
        self._start_time: Optional[datetime] = None
        self._lifecycle_lock = asyncio.Lock()
        self._cycle: Optional[asyncio.Task[CycleResult]] = None

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle is not None and not self._cycle.done()

    # region lifecycle
    async def start(self) -> None:
        async with self._lifecycle_lock:
            await self._start_locked()

    async def stop(self) -> None:
        async with self._lifecycle_lock:
            await self._stop_locked()

    async def shutdown(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        """
        Stop the timer and wait for the in-flight cycle, if any.

        Цикл, не успевший за ``timeout`` секунд, отменяется: после shutdown()
        браузер можно закрывать.
        """
        await self.stop()
        cycle = self._cycle
        if cycle is None or cycle.done():
            return
        logger.info("Waiting for the running check to finish")
        try:
            await asyncio.wait_for(asyncio.shield(cycle), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Check did not finish within %ss, cancelling", timeout)
            cycle.cancel()
            try:
                await cycle
            except asyncio.CancelledError:
                pass

    async def update_settings(self) -> None:
        """Restart with the latest settings if running; no-op otherwise."""
        async with self._lifecycle_lock:
            if not self._is_running:
                return
            await self._stop_locked()
            await self._start_locked()

    async def _start_locked(self) -> None:
        if self._is_running:
            logger.info("Monitor already running")
            return

        settings = await self._storage.get_settings()
        if settings is None or not settings.is_enabled:
            raise ConfigurationError("Monitoring is not enabled")

        minutes = interval_minutes(settings.check_interval)
        timer = self._timer_factory()
        timer.start(minutes * 60, self._on_tick)
        self._timer = timer
        self._is_running = True
        self._start_time = self._clock()

        await self._log(
            ActivityKind.MONITORING_STARTED,
            "Monitoring Started",
            f"Started monitoring with {minutes} minute intervals",
        )
        logger.info("DMV monitoring started with %s minute intervals", minutes)

    async def _stop_locked(self) -> None:
        if not self._is_running:
            return
        timer, self._timer = self._timer, None
        self._is_running = False
        if timer is not None:
            await timer.stop()

        await self._log(
            ActivityKind.MONITORING_STOPPED,
            "Monitoring Stopped",
            "Appointment monitoring has been stopped",
        )
        logger.info("DMV monitoring stopped")

    # endregion

    # region cycles
    async def check_now(self) -> CycleResult:
        """Run a cycle now, or join the one already in flight."""
        if self.cycle_in_progress:
            logger.info("Check already in progress, waiting for it")
        else:
            self._cycle = asyncio.create_task(self._perform_check(), name="dmv-check-cycle")
        return await asyncio.shield(self._cycle)  # type: ignore[arg-type]

    async def _on_tick(self) -> None:
        if self.cycle_in_progress:
            logger.info("Previous check still running, skipping this tick")
            return
        await self.check_now()

    async def _perform_check(self) -> CycleResult:
        logger.info("Performing appointment check...")
        try:
            slots = await self._checker.check_appointments()
        except Exception as e:  # noqa: BLE001
            logger.exception("Error during appointment check: %s", e)
            await self._update_stats(found=0)
            await self._log(
                ActivityKind.ERROR,
                "Check Failed",
                f"Appointment check failed: {e}",
                metadata={"error": repr(e)},
            )
            return CycleResult(error=str(e), finished_at=self._clock())

        await self._update_stats(found=len(slots))

        if not slots:
            enabled_count = sum(1 for loc in await self._storage.list_locations() if loc.enabled)
            await self._log(
                ActivityKind.CHECK_COMPLETED,
                "Routine Check Completed",
                f"Checked {enabled_count} locations - No appointments available",
            )
            logger.info("No appointments found")
            return CycleResult(finished_at=self._clock())

        notified = await self._notify(slots)
        succeeded = [CHANNEL_LABELS.get(name, name) for name, ok in notified.items() if ok]
        action = f"{' and '.join(succeeded)} notification sent" if succeeded else "Notification failed"
        count = len(slots)
        await self._log(
            ActivityKind.APPOINTMENT_FOUND,
            "Appointment Found!",
            f"Found {count} available slot{'s' if count != 1 else ''}: "
            + ", ".join(f"{slot.location} - {slot.time}" for slot in slots),
            action=action,
            metadata={"slots": [slot.model_dump() for slot in slots]},
        )
        logger.info("Found %s appointments, %s", count, action.lower())
        return CycleResult(slots=slots, notified=notified, finished_at=self._clock())

    async def _notify(self, slots: List[AppointmentSlot]) -> dict[str, bool]:
        # Сбой рассылки не отменяет факт найденных слотов
        try:
            return await self._dispatcher.notify(slots)
        except Exception as e:  # noqa: BLE001
            logger.exception("Notification dispatch failed: %s", e)
            return {}

    # endregion

    # region status
    def get_status(self) -> MonitorStatus:
        return MonitorStatus(
            is_running=self._is_running,
            start_time=self._start_time,
            uptime_minutes=self._uptime_minutes() or 0,
        )

    def _uptime_minutes(self) -> Optional[int]:
        if not self._is_running or self._start_time is None:
            return None
        return int((self._clock() - self._start_time).total_seconds() // 60)

    async def _update_stats(self, *, found: int) -> None:
        stats = await self._storage.get_stats() or MonitoringStats()
        uptime = self._uptime_minutes()
        await self._storage.upsert_stats(
            stats.model_copy(
                update={
                    "total_checks": stats.total_checks + 1,
                    "appointments_found": stats.appointments_found + found,
                    "last_check_time": self._clock(),
                    "uptime": uptime if uptime is not None else stats.uptime,
                }
            )
        )

    async def _log(
        self,
        kind: ActivityKind,
        title: str,
        description: Optional[str] = None,
        *,
        action: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        await self._storage.add_activity(
            ActivityLog(type=kind, title=title, description=description, action=action, metadata=metadata)
        )

    # endregion


__all__ = ["MonitoringScheduler", "interval_minutes"]
