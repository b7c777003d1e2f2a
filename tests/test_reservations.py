"""Tests for booking, cascade auto-booking and cancellation."""
from __future__ import annotations

from datetime import date, timedelta
import threading

import pytest
from sqlalchemy import func
from sqlalchemy.exc import OperationalError

from src.core.errors import Inactive, InvalidDateRange, InvalidState, NotFound, RangeTooLarge, TransactionFailure
from src.db import models
from src.services import capacity
from src.services.quota_manager import configure_quota_manager
from src.services.reservation_service import (
    BOOKING_AUTO,
    BOOKING_FULL,
    BOOKING_PARTIAL,
    BOOKING_REJECTED,
    ReservationService,
)

DAY = date(2024, 5, 10)


def _active_total(db, pool, day=DAY):
    return capacity.pool_reserved(db, pool.id, day)


def _reservation_count(db):
    return db.query(func.count(models.Reservation.id)).scalar()


def test_full_approval(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A")

    result = ReservationService(db).request_reservation("A", DAY, 400, subject="Spring sale")

    assert result.success
    assert result.type == BOOKING_FULL
    assert result.total_approved == 400
    assert result.main_reservation["status"] == models.STATUS_APPROVED
    assert result.main_reservation["metadata"]["quota_reserved"] is True
    assert _active_total(db, pool) == 400


def test_partial_approval_cascades_onto_following_days(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A")

    result = ReservationService(db).request_reservation("A", DAY, 2500, subject="Launch", description="Newsletter")

    assert result.type == BOOKING_PARTIAL
    assert result.main_reservation["email_count"] == 1000
    assert [(row["date"], row["email_count"]) for row in result.auto_booked] == [
        ("2024-05-11", 1000),
        ("2024-05-12", 500),
    ]
    assert result.total_approved == 2500
    assert result.remaining_unbooked == 0

    follow_up = db.query(models.Reservation).filter(models.Reservation.scheduled_date == DAY + timedelta(days=1)).one()
    assert follow_up.subject == "Launch (Auto-booked)"
    assert follow_up.description == "Newsletter - Auto-booked continuation"
    assert follow_up.meta["main_reservation_id"] == result.main_reservation["id"]
    assert follow_up.meta["sequence_order"] == 1


def test_mandatory_quota_is_held_back(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A", mandatory=150)
    unit_factory(pool, "B", mandatory=50)

    result = ReservationService(db).request_reservation("A", DAY, 1000)

    assert result.main_reservation["email_count"] == 800
    assert _active_total(db, pool) <= pool.daily_capacity - capacity.pool_mandatory(db, pool.id)


def test_first_request_wins(session_factory, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A")
    unit_factory(pool, "B")

    first_session, second_session = session_factory(), session_factory()
    first = ReservationService(first_session).request_reservation("A", DAY, 700)
    second = ReservationService(second_session).request_reservation("B", DAY, 700)

    assert first.type == BOOKING_FULL
    assert second.type == BOOKING_PARTIAL
    assert second.main_reservation["email_count"] == 300
    assert first.total_approved + second.main_reservation["email_count"] == 1000
    assert _active_total(second_session, pool) == 1000
    first_session.close()
    second_session.close()


def test_concurrent_requests_never_overbook_a_date(file_session_factory):
    codes = ["A", "B", "C", "D"]
    setup = file_session_factory()
    pool = models.QuotaPool(name="Pool 1", daily_capacity=1000, cycle_capacity=30000, is_active=True)
    setup.add(pool)
    setup.flush()
    for code in codes:
        setup.add(
            models.TenantUnit(
                code=code, name=f"Unit {code}", pool_id=pool.id, daily_capacity=1000, cycle_capacity=30000
            )
        )
    setup.commit()
    pool_id = pool.id
    setup.close()

    barrier = threading.Barrier(len(codes))
    results, errors = [], []

    def book(code):
        session = file_session_factory()
        try:
            barrier.wait()
            results.append(ReservationService(session).request_reservation(code, DAY, 700))
        except Exception as exc:
            errors.append(exc)
        finally:
            session.close()

    workers = [threading.Thread(target=book, args=(code,)) for code in codes]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert errors == []
    assert sorted(result.type for result in results) == [
        BOOKING_FULL,
        BOOKING_AUTO,
        BOOKING_AUTO,
        BOOKING_PARTIAL,
    ]
    assert sum(result.total_approved for result in results) == 2800
    check = file_session_factory()
    for offset in range(3):
        assert capacity.pool_reserved(check, pool_id, DAY + timedelta(days=offset)) <= 1000
    assert capacity.pool_reserved(check, pool_id, DAY) == 1000
    check.close()


def test_full_auto_booking_when_date_is_exhausted(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A")
    service = ReservationService(db)
    service.request_reservation("A", DAY, 1000)

    result = service.request_reservation("A", DAY, 300, subject="Promo")

    assert result.type == BOOKING_AUTO
    assert result.main_reservation is None
    assert result.auto_booked[0]["date"] == "2024-05-11"
    booked = db.get(models.Reservation, result.auto_booked[0]["reservation_id"])
    assert booked.meta["full_auto_booking"] is True
    assert booked.meta["original_request_date"] == "2024-05-10"
    assert booked.subject == "Promo (Auto-booked)"
    assert booked.description is None
    assert _active_total(db, pool) == 1000


def test_cascade_stops_after_window(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A")
    filler = unit_factory(pool, "B")
    for offset in range(15):
        db.add(
            models.Reservation(
                tenant_id=filler.id,
                pool_id=pool.id,
                scheduled_date=DAY + timedelta(days=offset),
                email_count=1000,
                status=models.STATUS_APPROVED,
            )
        )
    db.commit()
    before = _reservation_count(db)

    result = ReservationService(db).request_reservation("A", DAY, 10000)

    assert result.type == BOOKING_AUTO
    assert result.remaining_unbooked == 10000
    assert result.total_approved == 0
    assert result.auto_booked == []
    assert _reservation_count(db) == before


def test_rejection_offers_suggestions_under_equal_share(db, pool_factory, unit_factory):
    configure_quota_manager(equal_share=True)
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A")
    unit_factory(pool, "B")
    service = ReservationService(db)
    service.request_reservation("A", DAY, 500)

    result = service.request_reservation("A", DAY, 100)

    assert not result.success
    assert result.type == BOOKING_REJECTED
    dates = result.suggestions["dates"]
    assert len(dates) == 5
    assert dates[0] == {"date": "2024-05-11", "available_quota": 500, "day_name": "Saturday", "can_reserve": True}


def test_inactive_unit_cannot_book(db, pool_factory, unit_factory):
    pool = pool_factory()
    unit_factory(pool, "A", active=False)

    with pytest.raises(Inactive):
        ReservationService(db).request_reservation("A", DAY, 10)


def test_unknown_unit(db):
    with pytest.raises(NotFound):
        ReservationService(db).request_reservation("NOPE", DAY, 10)


def test_failed_cascade_rolls_back_everything(db, pool_factory, unit_factory, monkeypatch):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A")
    service = ReservationService(db)
    original_create = service._create
    calls = []

    def failing_create(*args, **kwargs):
        calls.append(args)
        if len(calls) == 2:
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))
        return original_create(*args, **kwargs)

    monkeypatch.setattr(service, "_create", failing_create)

    with pytest.raises(TransactionFailure):
        service.request_reservation("A", DAY, 1500)

    assert _reservation_count(db) == 0


def test_cancellation_releases_capacity(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A")
    unit_factory(pool, "B")
    service = ReservationService(db)
    booked = service.request_reservation("A", DAY, 1000)

    data = service.cancel_reservation(booked.main_reservation["id"], "A", "Postponed")

    assert data["cancelled_reservation"]["released_quota"] == 1000
    reservation = db.get(models.Reservation, booked.main_reservation["id"])
    assert reservation.status == models.STATUS_CANCELLED
    assert reservation.meta["cancellation_reason"] == "Postponed"
    assert reservation.meta["quota_reserved"] is False
    assert service.request_reservation("B", DAY, 1000).type == BOOKING_FULL


def test_cancellation_rules(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A")
    unit_factory(pool, "B")
    service = ReservationService(db)
    first = service.request_reservation("A", DAY, 100).main_reservation["id"]
    second = service.request_reservation("A", DAY, 100).main_reservation["id"]

    with pytest.raises(NotFound):
        service.cancel_reservation(first, "B")

    service.cancel_reservation(first, "A")
    with pytest.raises(InvalidState):
        service.cancel_reservation(first, "A")

    service.mark_sent(second, "A")
    with pytest.raises(InvalidState):
        service.cancel_reservation(second, "A")


def test_mark_sent_records_usage(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit = unit_factory(pool, "A")
    service = ReservationService(db)
    reservation_id = service.request_reservation("A", DAY, 500).main_reservation["id"]

    data = service.mark_sent(reservation_id, "A", actual_count=480)

    assert data["actual_emails_sent"] == 480
    entry = db.query(models.UsageLedgerEntry).filter(models.UsageLedgerEntry.tenant_id == unit.id).one()
    assert entry.daily_used == 480
    assert entry.breakdown[0]["type"] == "campaign_sent"
    assert entry.breakdown[0]["count"] == 480
    with pytest.raises(InvalidState):
        service.mark_sent(reservation_id, "A")


def test_mark_sent_without_count_leaves_ledger_alone(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A")
    service = ReservationService(db)
    reservation_id = service.request_reservation("A", DAY, 500).main_reservation["id"]

    assert service.mark_sent(reservation_id, "A")["actual_emails_sent"] == 500
    assert db.query(models.UsageLedgerEntry).count() == 0
    # Sent reservations keep holding capacity.
    assert _active_total(db, pool) == 500


def test_overview(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A", mandatory=100)
    unit_factory(pool, "B")
    service = ReservationService(db)
    service.request_reservation("B", DAY, 300)

    data = service.overview("A", DAY)

    assert data["group_quota"]["available_daily"] == 600
    assert data["can_book"] is True
    assert data["quota_mode"] == "group_quota"
    assert [row["unit"] for row in data["scheduled_reservations"]] == ["B"]
    assert {row["unit_code"] for row in data["group_units"]} == {"A", "B"}
    assert data["sync_status"]["can_sync_today"] is True


def test_overview_range(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A")
    service = ReservationService(db)
    service.request_reservation("A", DAY, 1000)
    service.request_reservation("A", DAY + timedelta(days=1), 850)
    service.request_reservation("A", DAY + timedelta(days=2), 600)

    data = service.overview_range("A", DAY, DAY + timedelta(days=3))

    statuses = [row["status"] for row in data["daily_breakdown"]]
    assert statuses == ["fully_booked", "almost_full", "moderate", "available"]
    summary = data["summary"]
    assert summary["quota_capacity"] == 4000
    assert summary["total_used"] == 2450
    assert summary["available_days"] == 3
    assert summary["fully_booked_days"] == 1
    assert summary["booking_rate"] == 25.0


def test_overview_range_limits(db, pool_factory, unit_factory):
    pool = pool_factory()
    unit_factory(pool, "A")
    service = ReservationService(db)

    with pytest.raises(RangeTooLarge):
        service.overview_range("A", DAY, DAY + timedelta(days=32))
    with pytest.raises(InvalidDateRange):
        service.overview_range("A", DAY, DAY - timedelta(days=1))
    assert service.overview_range("A", DAY, DAY + timedelta(days=31))["date_range"]["total_days"] == 32


def test_history_filters(db, pool_factory, unit_factory):
    pool = pool_factory(daily=1000)
    unit_factory(pool, "A")
    service = ReservationService(db)
    first = service.request_reservation("A", DAY, 100).main_reservation["id"]
    service.request_reservation("A", DAY + timedelta(days=1), 100)
    service.cancel_reservation(first, "A")

    data = service.history("A", status=models.STATUS_APPROVED)

    assert data["total"] == 1
    assert data["items"][0]["scheduled_date"] == "2024-05-11"
