"""Tests for the billing cycle calculation."""
from __future__ import annotations

from datetime import date

import pytest

from src.services.billing_cycle import BillingPeriod, billing_period, end_day, in_same_billing_period, start_day


@pytest.mark.parametrize(
    ("reference", "start", "end"),
    [
        (date(2024, 1, 10), date(2023, 12, 21), date(2024, 1, 20)),
        (date(2024, 3, 25), date(2024, 3, 22), date(2024, 4, 19)),
        (date(2024, 2, 15), date(2024, 1, 20), date(2024, 2, 19)),
        (date(2024, 12, 25), date(2024, 12, 21), date(2025, 1, 20)),
    ],
)
def test_billing_period(reference, start, end):
    assert billing_period(reference) == BillingPeriod(start, end)


def test_start_and_end_days():
    assert start_day(1) == 20
    assert start_day(3) == 22
    assert start_day(6) == 21
    assert end_day(2) == 19
    assert end_day(7) == 20
    assert end_day(9) == 19


def test_period_helpers():
    period = billing_period(date(2024, 3, 25))
    assert period.days == 29
    assert period.contains(date(2024, 4, 1))
    assert not period.contains(date(2024, 4, 20))
    assert period.as_dict() == {"start_date": "2024-03-22", "end_date": "2024-04-19"}


def test_same_period():
    assert in_same_billing_period(date(2024, 3, 25), date(2024, 4, 10))
    assert not in_same_billing_period(date(2024, 3, 20), date(2024, 3, 25))
