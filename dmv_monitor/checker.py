"""
Appointment checker: fetch every enabled location and extract slots.

Проверка всех включённых локаций за один проход. Ошибка одной локации
записывается в журнал и не прерывает проверку остальных.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable, List, Optional

from .browser import PageFetcher
from .dates import compute_target_dates
from .errors import ConfigurationError, ExtractionError
from .extractor import extract_slots
from .models import ActivityKind, ActivityLog, AppointmentSlot, Location
from .storage import Storage

logger = logging.getLogger(__name__)


Today = Callable[[], date]


class AppointmentChecker:
    """Runs one pass over the enabled locations using a shared page fetcher."""

    def __init__(self, storage: Storage, fetcher: PageFetcher, today: Optional[Today] = None) -> None:
        self._storage = storage
        self._fetcher = fetcher
        self._today = today or date.today

    async def check_appointments(self) -> List[AppointmentSlot]:
        """
        Check all enabled locations and return the slots found.

        Per-location failures are logged as ``error`` activity entries.
        Anything else (settings missing, browser start failure) propagates.
        """
        locations = [loc for loc in await self._storage.list_locations() if loc.enabled]
        settings = await self._storage.get_settings()
        if settings is None:
            raise ConfigurationError("Monitoring settings not found")

        today = self._today()
        target_dates = compute_target_dates(settings.days_ahead, settings.business_days_only, today=today)
        logger.info(
            "Checking %s location(s) for %s",
            len(locations),
            ", ".join(d.isoformat() for d in target_dates),
        )

        found: List[AppointmentSlot] = []
        if not locations:
            return found

        async with self._fetcher.open_page() as page:
            for location in locations:
                logger.info("Checking %s at %s", location.name, location.url)
                try:
                    html = await page.load(location.url)
                    try:
                        slots = extract_slots(html, location, target_dates, today=today)
                    except Exception as e:  # noqa: BLE001
                        raise ExtractionError(f"Failed to parse {location.url}: {e}") from e
                except Exception as e:  # noqa: BLE001
                    logger.error("Error checking %s: %s", location.name, e)
                    await self._record_location_error(location, e)
                    continue

                if slots:
                    logger.info("Found %s slot(s) at %s", len(slots), location.name)
                found.extend(slots)

        return found

    async def _record_location_error(self, location: Location, error: Exception) -> None:
        await self._storage.add_activity(
            ActivityLog(
                type=ActivityKind.ERROR,
                title=f"Error checking {location.name}",
                description=f"Failed to check appointments: {error}",
                metadata={"location_id": location.id, "url": location.url},
            )
        )


__all__ = ["AppointmentChecker"]
