"""
Heuristic extraction of appointment slots from booking page markup.

Разбор HTML страниц записи. Разметка сторонних сайтов не версионирована,
поэтому применяются две независимые эвристики, результаты объединяются.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from .dates import date_variants
from .models import AppointmentSlot, Location

logger = logging.getLogger(__name__)


AVAILABLE_SELECTOR = '.available, .time-slot, [data-available="true"], .calendar-day.available'
STRUCTURED_SELECTOR = ".calendar-cell, .booking-slot, .appointment-time"
UNAVAILABLE_CLASSES = {"disabled", "unavailable"}

TIME_PATTERNS = (
    re.compile(r"\d{1,2}:\d{2}\s*(AM|PM)", re.IGNORECASE),
    re.compile(r"\d{1,2}(AM|PM)", re.IGNORECASE),
)


def extract_slots(
    html: str,
    location: Location,
    target_dates: Sequence[date],
    today: Optional[date] = None,
) -> List[AppointmentSlot]:
    """
    Return candidate slots found on a page for the given target dates.

    Never raises for page content: a broken element is skipped, a broken
    strategy is logged and the other one still runs. Duplicates are possible.
    """
    today = today or date.today()
    soup = BeautifulSoup(html or "", "html.parser")

    slots: List[AppointmentSlot] = []
    try:
        slots.extend(_text_pattern_slots(soup, location, target_dates))
    except Exception as e:  # noqa: BLE001
        logger.warning("Text-pattern scan failed for %s: %s", location.name, e)
    try:
        slots.extend(_structured_slots(soup, location, today))
    except Exception as e:  # noqa: BLE001
        logger.warning("Structured scan failed for %s: %s", location.name, e)

    logger.debug("Extracted %s slot(s) for %s", len(slots), location.name)
    return slots


def _text_pattern_slots(
    soup: BeautifulSoup,
    location: Location,
    target_dates: Sequence[date],
) -> List[AppointmentSlot]:
    """Elements marked as available whose text names a target date and a time."""
    variants = [(target, date_variants(target)) for target in target_dates]
    found: List[AppointmentSlot] = []

    for element in soup.select(AVAILABLE_SELECTOR):
        try:
            text = element.get_text().strip()
            if not text:
                continue
            has_time = _has_time(text)
            mentions_available = "available" in text.lower()
            for target, formats in variants:
                if not any(fmt in text for fmt in formats):
                    continue
                if has_time or mentions_available:
                    found.append(
                        AppointmentSlot(
                            location=location.name,
                            date=target.isoformat(),
                            time=text,
                            url=location.url,
                        )
                    )
        except Exception as e:  # noqa: BLE001
            logger.debug("Skipping unreadable element on %s: %s", location.url, e)

    return found


def _structured_slots(soup: BeautifulSoup, location: Location, today: date) -> List[AppointmentSlot]:
    """Calendar cells / booking slots that are not disabled and carry data-date or data-time."""
    found: List[AppointmentSlot] = []

    for element in soup.select(STRUCTURED_SELECTOR):
        try:
            if not _is_selectable(element):
                continue
            text = element.get_text().strip()
            if not text:
                continue
            slot_date = _attr(element, "data-date")
            slot_time = _attr(element, "data-time")
            # Ячейка без data-атрибутов: просто элемент сетки, не слот
            if not slot_date and not slot_time:
                continue
            found.append(
                AppointmentSlot(
                    location=location.name,
                    date=slot_date or today.isoformat(),
                    time=slot_time or text,
                    url=location.url,
                )
            )
        except Exception as e:  # noqa: BLE001
            logger.debug("Skipping unreadable calendar cell on %s: %s", location.url, e)

    return found


def _has_time(text: str) -> bool:
    return any(pattern.search(text) for pattern in TIME_PATTERNS)


def _classes(element: Tag) -> Iterable[str]:
    value = element.get("class") or []
    if isinstance(value, str):
        return value.split()
    return value


def _is_selectable(element: Tag) -> bool:
    if UNAVAILABLE_CLASSES.intersection(_classes(element)):
        return False
    return not element.has_attr("disabled")


def _attr(element: Tag, name: str) -> str:
    value = element.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return (value or "").strip()


__all__ = ["extract_slots", "AVAILABLE_SELECTOR", "STRUCTURED_SELECTOR"]
