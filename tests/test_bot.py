"""Regression tests for bot helpers and the application context."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

import pytest
from pydantic import ValidationError

from dmv_monitor.app import MonitorApp
from dmv_monitor.bot import (
    _parse_switch,
    format_activity,
    format_cycle,
    format_locations,
    format_stats,
    format_test_results,
    format_validation_error,
    location_by_index,
    update_monitoring_settings,
)
from dmv_monitor.models import (
    ActivityKind,
    ActivityLog,
    AppointmentSlot,
    CycleResult,
    LocationCreate,
    MonitoringSettings,
    MonitoringStats,
)
from dmv_monitor.storage import MemoryStorage


class _FetcherStub:
    def __init__(self):
        self.close_calls = 0

    @asynccontextmanager
    async def open_page(self) -> AsyncIterator[object]:
        yield object()

    async def close(self) -> None:
        self.close_calls += 1


class _BlockingFetcher:
    """Fetcher whose pages wait for ``release`` and fail once the browser is closed."""

    def __init__(self):
        self.loading = asyncio.Event()
        self.release = asyncio.Event()
        self.closed = False
        self.close_calls = 0

    @asynccontextmanager
    async def open_page(self) -> AsyncIterator["_BlockingFetcher"]:
        yield self

    async def load(self, url: str) -> str:
        self.loading.set()
        await self.release.wait()
        if self.closed:
            raise RuntimeError("browser has been closed")
        return "<html><body>No appointments</body></html>"

    async def close(self) -> None:
        self.closed = True
        self.close_calls += 1


def _blocking_app() -> tuple[MonitorApp, _BlockingFetcher]:
    fetcher = _BlockingFetcher()
    storage = MemoryStorage(
        settings=MonitoringSettings(is_enabled=True),
        locations=[
            LocationCreate(name=f"Office {idx}", url=f"https://{idx}.example", type="DL") for idx in range(3)
        ],
    )
    return MonitorApp.build(storage, fetcher), fetcher


def _app(settings: MonitoringSettings | None = None) -> tuple[MonitorApp, _FetcherStub]:
    fetcher = _FetcherStub()
    storage = MemoryStorage(
        settings=settings or MonitoringSettings(is_enabled=True),
        locations=[
            LocationCreate(name="Henderson DMV (DL)", url="https://a.example", type="DL"),
            LocationCreate(name="West <Flamingo>", url="https://b.example", type="DL", enabled=False),
        ],
    )
    return MonitorApp.build(storage, fetcher), fetcher


def test_update_settings_rejects_out_of_range_without_saving() -> None:
    app, _ = _app(MonitoringSettings(days_ahead=5))

    async def scenario() -> None:
        with pytest.raises(ValidationError):
            await update_monitoring_settings(app, days_ahead=31)
        with pytest.raises(ValidationError):
            await update_monitoring_settings(app, check_interval=59)
        settings = await app.storage.get_settings()
        assert settings is not None
        assert settings.days_ahead == 5
        assert settings.check_interval == 300

    asyncio.run(scenario())


def test_update_settings_saves_valid_change() -> None:
    app, _ = _app()

    async def scenario() -> None:
        saved = await update_monitoring_settings(app, check_interval=120, business_days_only=False)
        assert saved.check_interval == 120
        assert saved.business_days_only is False
        stored = await app.storage.get_settings()
        assert stored is not None and stored.check_interval == 120

    asyncio.run(scenario())


def test_disabling_running_monitor_stops_it() -> None:
    app, fetcher = _app()

    async def scenario() -> None:
        await app.scheduler.start()
        assert app.scheduler.is_running

        await update_monitoring_settings(app, is_enabled=False)
        assert not app.scheduler.is_running

        await app.aclose()
        await app.aclose()

    asyncio.run(scenario())

    assert fetcher.close_calls == 1


def test_location_by_index() -> None:
    app, _ = _app()

    async def scenario() -> None:
        first = await location_by_index(app, "1")
        assert first is not None and first.name == "Henderson DMV (DL)"
        assert await location_by_index(app, "3") is None
        assert await location_by_index(app, "0") is None
        assert await location_by_index(app, "abc") is None
        assert await location_by_index(app, None) is None

    asyncio.run(scenario())


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("on", True), ("YES", True), (" off ", False), ("0", False), ("maybe", None), (None, None)],
)
def test_parse_switch(raw, expected) -> None:
    assert _parse_switch(raw) is expected


def test_format_locations_escapes_names() -> None:
    app, _ = _app()
    locations = asyncio.run(app.storage.list_locations())

    text = format_locations(locations)

    assert "1. ✅ Henderson DMV (DL)" in text
    assert "2. ⏸ West &lt;Flamingo&gt;" in text
    assert format_locations([]).startswith("No locations configured")


def test_format_cycle_variants() -> None:
    slot = AppointmentSlot(location="Henderson DMV (DL)", date="2025-01-06", time="2:30 PM", url="https://a.example")

    assert "Check failed" in format_cycle(CycleResult(error="boom"))
    assert format_cycle(CycleResult()) == "No appointments available right now."

    found = format_cycle(CycleResult(slots=[slot], notified={"email": True, "sms": False}))
    assert "Found 1 slot(s)" in found
    assert "Notified via: email" in found

    assert "Notifications failed." in format_cycle(CycleResult(slots=[slot], notified={}))


def test_format_stats_and_activity() -> None:
    stats = MonitoringStats(total_checks=3, appointments_found=2, emails_sent=1, uptime=75)

    text = format_stats(stats)

    assert "Total checks: 3" in text
    assert "Uptime: 1h 15m" in text

    entry = ActivityLog(
        type=ActivityKind.APPOINTMENT_FOUND,
        title="Appointment Found!",
        description="Found 1 available slot: A - 2:30 PM",
        action="Email notification sent",
        created_at=datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc),
    )
    rendered = format_activity([entry])
    assert "<b>Appointment Found!</b>" in rendered
    assert "<i>Email notification sent</i>" in rendered
    assert format_activity([]) == "Activity log is empty."


def test_format_test_results() -> None:
    assert format_test_results({"email": True, "sms": False}) == "email: ✅ sent\nsms: ❌ failed"
    assert format_test_results({}) == "No such channel."


def test_format_validation_error() -> None:
    with pytest.raises(ValidationError) as exc_info:
        MonitoringSettings(days_ahead=31)

    assert format_validation_error(exc_info.value).startswith("Invalid value: days_ahead:")


def test_aclose_waits_for_running_check_before_closing_browser() -> None:
    async def scenario() -> None:
        app, fetcher = _blocking_app()
        check = asyncio.create_task(app.scheduler.check_now())
        await fetcher.loading.wait()

        closing = asyncio.create_task(app.aclose())
        await asyncio.sleep(0.05)
        assert not closing.done()
        assert fetcher.close_calls == 0
        assert app.scheduler.cycle_in_progress

        fetcher.release.set()
        await closing
        result = await check

        assert result.error is None
        assert fetcher.close_calls == 1
        assert not app.scheduler.cycle_in_progress
        activity = await app.storage.list_activity()
        assert [entry.type for entry in activity] == [ActivityKind.CHECK_COMPLETED]

    asyncio.run(scenario())


def test_shutdown_cancels_check_that_outlives_timeout() -> None:
    async def scenario() -> None:
        app, fetcher = _blocking_app()
        check = asyncio.create_task(app.scheduler.check_now())
        await fetcher.loading.wait()

        await app.scheduler.shutdown(timeout=0.05)

        assert not app.scheduler.cycle_in_progress
        with pytest.raises(asyncio.CancelledError):
            await check

        await app.aclose()
        assert fetcher.close_calls == 1
        activity = await app.storage.list_activity()
        assert not any(entry.type == ActivityKind.ERROR for entry in activity)

    asyncio.run(scenario())
