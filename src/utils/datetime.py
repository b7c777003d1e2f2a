"""Datetime utilities for timezone-aware UTC timestamps and calendar dates."""
from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import Iterator


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def today() -> date:
    return utcnow().date()


def date_range(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end, both inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
