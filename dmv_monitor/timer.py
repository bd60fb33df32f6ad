"""
Repeating timer abstraction for periodic checks.

Периодический запуск корутины в фоне. Ошибки колбэка логируются,
таймер продолжает работу.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


TickCallback = Callable[[], Awaitable[None]]


class RepeatingTimer(Protocol):
    @property
    def is_active(self) -> bool: ...

    def start(self, interval_seconds: float, callback: TickCallback) -> None: ...

    async def stop(self) -> None: ...


class AsyncioRepeatingTimer:
    """Fires ``callback`` every ``interval_seconds``; the first tick comes after one interval."""

    def __init__(self, name: str = "dmv-monitor-timer") -> None:
        self._name = name
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_seconds: float, callback: TickCallback) -> None:
        if self.is_active:
            raise RuntimeError("Timer already started")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(interval_seconds, callback), name=self._name)

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        task, self._task = self._task, None
        try:
            # Текущий тик может ещё выполнять проверку, ждём, но недолго
            await asyncio.wait_for(task, timeout=5)
        except asyncio.TimeoutError:
            logger.warning("Timer task did not stop within timeout, cancelling")
            task.cancel()
        except asyncio.CancelledError:
            pass

    async def _run(self, interval_seconds: float, callback: TickCallback) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await callback()
            except Exception as e:  # noqa: BLE001
                logger.exception("Timer callback failed: %s", e)


__all__ = ["AsyncioRepeatingTimer", "RepeatingTimer", "TickCallback"]
