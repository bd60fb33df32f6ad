"""Utilities for selecting the calendar dates to search booking pages for."""

from __future__ import annotations

from datetime import date, timedelta
from typing import List, Optional

WEEKDAY_ABBR = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

WEEKEND_INDICES = {5, 6}


def is_business_day(value: date) -> bool:
    return value.weekday() not in WEEKEND_INDICES


def compute_target_dates(count: int, business_days_only: bool, today: Optional[date] = None) -> List[date]:
    """
    Collect the next ``count`` dates starting from ``today`` inclusive.

    With ``business_days_only`` Saturdays and Sundays are skipped, so the
    window may stretch past ``count`` calendar days.
    """
    if count < 1:
        raise ValueError(f"count must be >= 1, got {count}")

    day = today or date.today()
    dates: List[date] = []
    while len(dates) < count:
        if not business_days_only or is_business_day(day):
            dates.append(day)
        day += timedelta(days=1)
    return dates


def date_variants(value: date) -> List[str]:
    """
    Human-readable spellings of a date as booking pages print them.

    Names come from fixed English tables so the result does not depend on the
    process locale. Order: "Mon, Jan 5", "Jan 5", "1/5", "5".
    """
    weekday = WEEKDAY_ABBR[value.weekday()]
    month = MONTH_ABBR[value.month - 1]
    variants = [
        f"{weekday}, {month} {value.day}",
        f"{month} {value.day}",
        f"{value.month}/{value.day}",
        f"{value.day}",
    ]
    # dict сохраняет порядок и убирает повторы
    return list(dict.fromkeys(variants))


__all__ = ["compute_target_dates", "date_variants", "is_business_day"]
