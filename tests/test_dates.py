"""Regression tests for target date generation."""

from __future__ import annotations

from datetime import date

import pytest

from dmv_monitor.dates import compute_target_dates, date_variants


SATURDAY = date(2025, 1, 4)
MONDAY = date(2025, 1, 6)


@pytest.mark.parametrize("business_days_only", [True, False])
@pytest.mark.parametrize("count", range(1, 31))
def test_compute_target_dates_properties(count: int, business_days_only: bool) -> None:
    """Return exactly ``count`` increasing dates from today, weekdays only when asked."""

    dates = compute_target_dates(count, business_days_only, today=SATURDAY)

    assert len(dates) == count
    assert all(d >= SATURDAY for d in dates)
    assert all(a < b for a, b in zip(dates, dates[1:]))
    if business_days_only:
        assert all(d.weekday() < 5 for d in dates)


def test_compute_target_dates_includes_today() -> None:
    assert compute_target_dates(1, True, today=MONDAY) == [MONDAY]
    assert compute_target_dates(2, False, today=SATURDAY) == [SATURDAY, date(2025, 1, 5)]


def test_compute_target_dates_skips_weekend() -> None:
    """Friday + 2 business days lands on Monday."""

    friday = date(2025, 1, 3)

    assert compute_target_dates(2, True, today=friday) == [friday, MONDAY]


def test_compute_target_dates_rejects_zero() -> None:
    with pytest.raises(ValueError):
        compute_target_dates(0, False, today=MONDAY)


def test_date_variants_use_english_names() -> None:
    assert date_variants(MONDAY) == ["Mon, Jan 6", "Jan 6", "1/6", "6"]
    assert date_variants(date(2025, 12, 25)) == ["Thu, Dec 25", "Dec 25", "12/25", "25"]
