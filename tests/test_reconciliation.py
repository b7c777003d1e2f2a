"""Tests for ledger reconciliation, completion recording and sync."""
from __future__ import annotations

from datetime import date, timedelta

import pytest

from src.core.errors import InvalidState, NotFound, SyncLimitExceeded
from src.db import models
from src.services.reconciliation_service import ReconciliationService, check_discrepancy
from src.services.reservation_service import ReservationService
from src.services.sync_service import SyncService

DAY = date(2024, 5, 10)


def _entry(db, unit, day=DAY):
    db.expire_all()
    return (
        db.query(models.UsageLedgerEntry)
        .filter(models.UsageLedgerEntry.tenant_id == unit.id, models.UsageLedgerEntry.usage_date == day)
        .one()
    )


def _complete(db, code, count, day=DAY):
    reservation_id = ReservationService(db).request_reservation(code, day, count).main_reservation["id"]
    return ReconciliationService(db).record_completion(code, reservation_id, count)


def test_discrepancy_tolerance_boundaries():
    assert check_discrepancy(1000, 1045, 1000, 1045).status == models.DISCREPANCY_NORMAL

    result = check_discrepancy(1000, 1060, 1000, 1060)
    assert result.status == models.DISCREPANCY_WARNING
    assert result.details == [
        {"type": "daily_discrepancy", "center_value": 1000, "unit_value": 1060, "difference": 60, "tolerance": 50}
    ]


def test_tolerance_scales_with_central_value():
    assert check_discrepancy(2000, 2100, 0, 0).status == models.DISCREPANCY_NORMAL
    assert check_discrepancy(2000, 2101, 0, 0).status == models.DISCREPANCY_WARNING
    assert check_discrepancy(0, 0, 20000, 21001).details[0]["type"] == "monthly_discrepancy"


def test_record_completion_updates_ledger(db, pool_factory, unit_factory):
    pool = pool_factory(daily=2000)
    unit = unit_factory(pool, "A")

    result = _complete(db, "A", 1000)

    assert result.status == models.STATUS_SENT
    assert result.daily_used == 1000
    entry = _entry(db, unit)
    assert entry.daily_used == 1000
    assert entry.breakdown[0]["type"] == "campaign_completion"


def test_record_completion_requires_approved(db, pool_factory, unit_factory):
    pool = pool_factory(daily=2000)
    unit_factory(pool, "A")
    unit_factory(pool, "B")
    result = _complete(db, "A", 100)

    with pytest.raises(InvalidState):
        ReconciliationService(db).record_completion("A", result.reservation_id, 100)
    with pytest.raises(NotFound):
        ReconciliationService(db).record_completion("B", result.reservation_id, 100)


def test_monthly_usage_sums_the_billing_period(db, pool_factory, unit_factory):
    pool = pool_factory(daily=2000)
    unit = unit_factory(pool, "A")
    service = ReconciliationService(db)

    service.apply_usage(pool.id, unit.id, DAY - timedelta(days=1), 300, "campaign_sent")
    service.apply_usage(pool.id, unit.id, DAY, 200, "mandatory")
    db.commit()

    entry = _entry(db, unit)
    assert entry.daily_used == 200
    assert entry.mandatory_used == 200
    assert entry.monthly_used == 500
    assert service.central_monthly(pool.id, unit.id, DAY) == 500


def test_pool_level_usage_keeps_one_entry_per_day(db, pool_factory):
    pool = pool_factory(daily=2000)
    service = ReconciliationService(db)

    service.apply_usage(pool.id, None, DAY, 100, "campaign_sent")
    service.apply_usage(pool.id, None, DAY, 50, "campaign_sent")
    db.commit()

    entries = db.query(models.UsageLedgerEntry).filter(models.UsageLedgerEntry.tenant_id.is_(None)).all()
    assert len(entries) == 1
    assert entries[0].daily_used == 150
    assert [event["count"] for event in entries[0].breakdown] == [100, 50]


def test_sync_flags_warning_and_keeps_central_counters(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit = unit_factory(pool, "A")
    _complete(db, "A", 1000)

    result = ReconciliationService(db).sync_from_tenant("A", 1060, 1060, on_date=DAY)

    assert result.discrepancy.status == models.DISCREPANCY_WARNING
    assert result.updated_quota["daily_used"] == 1000
    entry = _entry(db, unit)
    assert entry.daily_used == 1000
    assert entry.reported_daily == 1060
    assert entry.discrepancy_status == models.DISCREPANCY_WARNING
    assert entry.last_sync_at is not None


def test_sync_within_tolerance_is_normal(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit = unit_factory(pool, "A")
    _complete(db, "A", 1000)

    result = ReconciliationService(db).sync_from_tenant("A", 1045, 1045, sync_type="scheduled", on_date=DAY)

    assert result.discrepancy.status == models.DISCREPANCY_NORMAL
    assert result.discrepancy.details == []
    assert _entry(db, unit).sync_type == "scheduled"


def test_breakdown_history_is_append_only(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit = unit_factory(pool, "A")
    _complete(db, "A", 1000)
    service = ReconciliationService(db)

    service.sync_from_tenant("A", 1060, 1060, on_date=DAY)
    before = _entry(db, unit).breakdown
    service.sync_from_tenant("A", 1045, 1045, on_date=DAY)
    after = _entry(db, unit).breakdown

    assert len(before) == 2
    assert after[: len(before)] == before
    assert [event["type"] for event in after] == ["campaign_completion", "unit_sync", "unit_sync"]
    assert after[-1]["discrepancy_status"] == models.DISCREPANCY_NORMAL


def test_capacity_inconsistency_is_reported_separately(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A")
    _complete(db, "A", 1000)

    over = ReconciliationService(db).sync_from_tenant("A", 1045, 1045, on_date=DAY)
    under = ReconciliationService(db).sync_from_tenant("A", 990, 990, on_date=DAY)

    assert over.discrepancy.status == models.DISCREPANCY_NORMAL
    assert over.capacity_inconsistency["excess"] == 45
    assert under.capacity_inconsistency is None


def test_discrepancy_summary_clips_to_billing_period(db, pool_factory, unit_factory):
    pool = pool_factory(daily=5000)
    unit_factory(pool, "A")
    service = ReconciliationService(db)
    service.sync_from_tenant("A", 100, 100, on_date=date(2024, 4, 19))
    service.sync_from_tenant("A", 100, 100, on_date=date(2024, 4, 22))
    service.sync_from_tenant("A", 10, 10, on_date=date(2024, 4, 23))

    summary = service.discrepancy_summary(window_days=7, on_date=date(2024, 4, 23))

    assert summary["window"]["start_date"] == "2024-04-21"
    assert summary["window"]["clipped"] is True
    assert summary["total_entries"] == 2
    assert summary["warning_count"] == 1
    assert summary["warning_rate"] == 50.0
    assert summary["by_unit"][0] == {
        "unit_code": "A",
        "entries": 2,
        "warnings": 1,
        "last_warning_date": "2024-04-22",
    }
    assert summary["latest_warnings"][0]["usage_date"] == "2024-04-22"


def test_discrepancy_report_filters(db, pool_factory, unit_factory):
    pool = pool_factory(name="Pool 1", daily=5000)
    unit_factory(pool, "A")
    unit_factory(pool, "B")
    service = ReconciliationService(db)
    service.sync_from_tenant("A", 100, 100, on_date=date(2024, 4, 22))
    service.sync_from_tenant("B", 10, 10, on_date=date(2024, 4, 22))

    report = service.discrepancy_report(status="warning", start=date(2024, 4, 1), on_date=date(2024, 4, 23))

    assert report["total"] == 1
    assert report["items"][0]["unit_code"] == "A"
    assert report["window"]["clipped"] is True
    assert service.discrepancy_report(pool_name="Pool 1", tenant_code="B", on_date=date(2024, 4, 23))["total"] == 1


def test_quota_status(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000, cycle=30000)
    unit = unit_factory(pool, "A")
    ReconciliationService(db).apply_usage(pool.id, unit.id, DAY, 900, "campaign_sent")
    db.commit()

    status = SyncService(db).quota_status("A", DAY)

    assert status["daily"]["unit_used"] == 900
    assert status["daily"]["usage_percentage"] == 90.0
    assert status["monthly"]["group_used"] == 900
    assert status["projection"]["remaining_days"] == 11
    assert {item["type"] for item in status["recommendations"]} == {"warning", "info"}


def test_pull_sync_is_rate_limited(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A", max_sync_per_day=2)
    ReservationService(db).request_reservation("A", DAY + timedelta(days=2), 100)
    service = SyncService(db)

    first = service.pull_sync("A", on_date=DAY)
    second = service.pull_sync("A", "scheduled", on_date=DAY)

    assert first["remaining_syncs"] == 1
    assert second["remaining_syncs"] == 0
    assert len(first["data"]["upcoming_reservations"]) == 1
    with pytest.raises(SyncLimitExceeded):
        service.pull_sync("A", on_date=DAY)
    log = db.query(models.SyncLog).one()
    assert log.sync_count == 2
    assert log.sync_type == "scheduled"
