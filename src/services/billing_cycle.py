"""Non-calendar billing cycle calculation.

A billing cycle does not follow calendar months. It starts on day 20 in
January, day 22 in March and day 21 in every other month, and ends on day 20
in 31-day months and day 19 in all other months (February included).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date

LONG_MONTHS = frozenset({1, 3, 5, 7, 8, 10, 12})


@dataclass(frozen=True)
class BillingPeriod:
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end

    def as_dict(self) -> dict[str, str]:
        return {"start_date": self.start.isoformat(), "end_date": self.end.isoformat()}


def start_day(month: int) -> int:
    if month == 1:
        return 20
    if month == 3:
        return 22
    return 21


def end_day(month: int) -> int:
    return 20 if month in LONG_MONTHS else 19


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def billing_period(reference: date) -> BillingPeriod:
    """Return the billing cycle containing ``reference``."""

    if reference.day < start_day(reference.month):
        prev_year, prev_month = _shift_month(reference.year, reference.month, -1)
        return BillingPeriod(
            start=date(prev_year, prev_month, start_day(prev_month)),
            end=date(reference.year, reference.month, end_day(reference.month)),
        )

    next_year, next_month = _shift_month(reference.year, reference.month, 1)
    return BillingPeriod(
        start=date(reference.year, reference.month, start_day(reference.month)),
        end=date(next_year, next_month, end_day(next_month)),
    )


def in_same_billing_period(first: date, second: date) -> bool:
    return billing_period(first) == billing_period(second)
