"""Booking, cascade auto-booking, cancellation and schedule views."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from src.core.config import settings
from src.core.errors import InvalidDateRange, InvalidState, RangeTooLarge
from src.db import models
from src.db.transactions import insert_if_absent, transaction
from src.services import capacity
from src.services.lookups import get_owned_reservation, get_tenant
from src.services.quota_manager import QuotaManager, get_quota_manager
from src.services.quota_strategy import OUTCOME_AUTO_BOOK, OUTCOME_PARTIAL, OUTCOME_REJECTED
from src.services.reconciliation_service import SOURCE_CAMPAIGN_SENT, ReconciliationService
from src.services.sync_service import syncs_today
from src.utils.datetime import date_range, today, utcnow
from src.utils.logger import get_logger

BOOKING_FULL = "full_approval"
BOOKING_PARTIAL = "partial_approval_with_auto_booking"
BOOKING_AUTO = "full_auto_booking"
BOOKING_REJECTED = "rejected"

logger = get_logger("reservations")


@dataclass
class BookingResult:
    success: bool
    type: str
    message: str
    total_requested: int
    total_approved: int = 0
    remaining_unbooked: int = 0
    main_reservation: Optional[dict] = None
    auto_booked: list[dict] = field(default_factory=list)
    suggestions: Optional[dict] = None

    def as_dict(self) -> dict:
        return asdict(self)


def date_status(available: int, daily_capacity: int) -> str:
    if available <= 0:
        return "fully_booked"
    if available < daily_capacity * 0.2:
        return "almost_full"
    if available < daily_capacity * 0.5:
        return "moderate"
    return "available"


def reservation_row(reservation: models.Reservation) -> dict:
    return {
        "id": reservation.id,
        "unit": reservation.tenant.code if reservation.tenant else None,
        "scheduled_date": reservation.scheduled_date.isoformat(),
        "email_count": reservation.email_count,
        "status": reservation.status,
        "type": reservation.campaign_type,
        "subject": reservation.subject,
        "metadata": reservation.meta or {},
    }


class ReservationService:
    def __init__(self, db: Session, manager: Optional[QuotaManager] = None) -> None:
        self.db = db
        self.manager = manager or get_quota_manager()

    def _lock_slot(self, pool_id: int, day: date) -> models.CapacitySlot:
        """Serialize every capacity decision for (pool, day) behind one row lock."""

        insert_if_absent(self.db, models.CapacitySlot, pool_id=pool_id, slot_date=day)
        return (
            self.db.query(models.CapacitySlot)
            .filter(models.CapacitySlot.pool_id == pool_id, models.CapacitySlot.slot_date == day)
            .with_for_update()
            .one()
        )

    def _create(
        self,
        tenant: models.TenantUnit,
        day: date,
        count: int,
        campaign_type: str,
        subject: Optional[str],
        description: Optional[str],
        meta: dict,
    ) -> models.Reservation:
        now = utcnow()
        reservation = models.Reservation(
            tenant_id=tenant.id,
            pool_id=tenant.pool_id,
            scheduled_date=day,
            email_count=count,
            campaign_type=campaign_type,
            subject=subject,
            description=description,
            status=models.STATUS_APPROVED,
            requested_at=now,
            approved_at=now,
            meta={**meta, "quota_reserved": True},
        )
        self.db.add(reservation)
        self.db.flush()
        return reservation

    def _cascade(
        self,
        tenant: models.TenantUnit,
        reference: date,
        remaining: int,
        campaign_type: str,
        subject: Optional[str],
        description_suffix: str,
        description: Optional[str],
        link: dict,
    ) -> tuple[list[dict], int]:
        """Spread ``remaining`` over the days after ``reference``; returns bookings and what is left."""

        booked: list[dict] = []
        for offset in range(1, settings.auto_book_window_days + 1):
            if remaining <= 0:
                break
            day = reference + timedelta(days=offset)
            self._lock_slot(tenant.pool_id, day)
            available = self.manager.get_available(self.db, tenant, day)
            if available <= 0:
                continue
            count = min(remaining, available)
            reservation = self._create(
                tenant,
                day,
                count,
                campaign_type,
                f"{subject} (Auto-booked)" if subject else None,
                f"{description}{description_suffix}" if description else None,
                {**link, "auto_booked": True, "sequence_order": len(booked) + 1},
            )
            booked.append(
                {
                    "reservation_id": reservation.id,
                    "date": day.isoformat(),
                    "email_count": count,
                    "day_name": day.strftime("%A"),
                }
            )
            remaining -= count
        return booked, remaining

    def suggest_dates(self, tenant: models.TenantUnit, reference: date) -> dict:
        dates = []
        for offset in range(1, settings.auto_book_window_days + 1):
            day = reference + timedelta(days=offset)
            available = self.manager.get_available(self.db, tenant, day)
            if available > 0:
                dates.append(
                    {
                        "date": day.isoformat(),
                        "available_quota": available,
                        "day_name": day.strftime("%A"),
                        "can_reserve": True,
                    }
                )
                if len(dates) >= settings.max_date_suggestions:
                    break
        return {
            "type": "sequential_dates",
            "message": "Suggested consecutive dates for remaining emails",
            "dates": dates,
        }

    def request_reservation(
        self,
        tenant_code: str,
        scheduled_date: date,
        email_count: int,
        campaign_type: str = "regular",
        subject: Optional[str] = None,
        description: Optional[str] = None,
    ) -> BookingResult:
        with transaction(self.db):
            tenant = get_tenant(self.db, tenant_code, require_active=True)
            self._lock_slot(tenant.pool_id, scheduled_date)
            check = self.manager.validate(self.db, tenant, scheduled_date, email_count)

            if check.outcome == OUTCOME_REJECTED:
                result = BookingResult(
                    success=False,
                    type=BOOKING_REJECTED,
                    message=check.message,
                    total_requested=email_count,
                    remaining_unbooked=email_count,
                    suggestions=self.suggest_dates(tenant, scheduled_date),
                )
            elif check.outcome == OUTCOME_AUTO_BOOK:
                booked, remaining = self._cascade(
                    tenant,
                    scheduled_date,
                    email_count,
                    campaign_type,
                    subject,
                    f" - Auto-booked due to no quota on {scheduled_date.isoformat()}",
                    description,
                    {
                        "original_request": email_count,
                        "original_request_date": scheduled_date.isoformat(),
                        "full_auto_booking": True,
                    },
                )
                result = BookingResult(
                    success=True,
                    type=BOOKING_AUTO,
                    message=(
                        f"No quota available for {scheduled_date.isoformat()}. "
                        f"Auto-booked {email_count - remaining} emails on subsequent dates"
                    ),
                    total_requested=email_count,
                    total_approved=email_count - remaining,
                    remaining_unbooked=remaining,
                    auto_booked=booked,
                )
            elif check.outcome == OUTCOME_PARTIAL:
                main = self._create(
                    tenant,
                    scheduled_date,
                    check.approved_count,
                    campaign_type,
                    subject,
                    description,
                    {"original_request": email_count, "partial_approval": True, "main_reservation": True},
                )
                booked, remaining = self._cascade(
                    tenant,
                    scheduled_date,
                    check.remaining_count,
                    campaign_type,
                    subject,
                    " - Auto-booked continuation",
                    description,
                    {"original_request": email_count, "main_reservation_id": main.id},
                )
                result = BookingResult(
                    success=True,
                    type=BOOKING_PARTIAL,
                    message=(
                        f"Reservation partially approved with auto-booking: {check.approved_count} emails on "
                        f"{scheduled_date.isoformat()}, {check.remaining_count - remaining} emails auto-booked "
                        "on subsequent dates"
                    ),
                    total_requested=email_count,
                    total_approved=email_count - remaining,
                    remaining_unbooked=remaining,
                    main_reservation=reservation_row(main),
                    auto_booked=booked,
                )
            else:
                main = self._create(tenant, scheduled_date, email_count, campaign_type, subject, description, {})
                result = BookingResult(
                    success=True,
                    type=BOOKING_FULL,
                    message="Reservation approved and quota reserved",
                    total_requested=email_count,
                    total_approved=email_count,
                    main_reservation=reservation_row(main),
                )

        logger.info(
            "Reservation request %s for %s on %s: %s approved of %s (%s)",
            result.type,
            tenant_code,
            scheduled_date,
            result.total_approved,
            email_count,
            self.manager.mode,
        )
        return result

    def cancel_reservation(self, reservation_id: int, tenant_code: str, reason: Optional[str] = None) -> dict:
        with transaction(self.db):
            tenant = get_tenant(self.db, tenant_code)
            reservation = get_owned_reservation(self.db, reservation_id, tenant)
            self._lock_slot(reservation.pool_id, reservation.scheduled_date)
            self.db.refresh(reservation, with_for_update=True)

            if reservation.status == models.STATUS_SENT:
                raise InvalidState(
                    "Cannot cancel a reservation that has already been sent",
                    details={"reservation_id": reservation.id},
                )
            if reservation.status == models.STATUS_CANCELLED:
                raise InvalidState("Reservation is already cancelled", details={"reservation_id": reservation.id})

            released = reservation.email_count
            original_date = reservation.scheduled_date.isoformat()
            reservation.status = models.STATUS_CANCELLED
            reservation.meta = {
                **(reservation.meta or {}),
                "cancelled_at": utcnow().isoformat(),
                "cancellation_reason": reason or "Reservation cancelled by tenant",
                "original_date": original_date,
                "quota_released": released,
                "quota_reserved": False,
            }

        logger.info("Reservation %s cancelled by %s, %s released on %s", reservation_id, tenant_code, released, original_date)
        return {
            "cancelled_reservation": {
                "id": reservation_id,
                "original_date": original_date,
                "released_quota": released,
                "status": models.STATUS_CANCELLED,
            },
            "quota_status": {"date": original_date, "released_quota": released, "available_for_booking": True},
        }

    def mark_sent(self, reservation_id: int, tenant_code: str, actual_count: Optional[int] = None) -> dict:
        with transaction(self.db):
            tenant = get_tenant(self.db, tenant_code)
            reservation = get_owned_reservation(self.db, reservation_id, tenant, lock=True)
            if reservation.status != models.STATUS_APPROVED:
                raise InvalidState(
                    "Only approved reservations can be marked as sent",
                    details={"reservation_id": reservation.id, "status": reservation.status},
                )
            sent_at = utcnow()
            sent = reservation.email_count if actual_count is None else actual_count
            reservation.status = models.STATUS_SENT
            reservation.sent_at = sent_at
            reservation.meta = {
                **(reservation.meta or {}),
                "sent_at": sent_at.isoformat(),
                "actual_emails_sent": sent,
                "quota_consumed": True,
            }
            if actual_count is not None:
                ReconciliationService(self.db).apply_usage(
                    reservation.pool_id,
                    tenant.id,
                    reservation.scheduled_date,
                    actual_count,
                    SOURCE_CAMPAIGN_SENT,
                    {"reservation_id": reservation.id, "campaign_type": reservation.campaign_type},
                )

        logger.info("Reservation %s marked as sent (%s emails)", reservation_id, sent)
        return {
            "reservation_id": reservation_id,
            "status": models.STATUS_SENT,
            "sent_at": sent_at.isoformat(),
            "actual_emails_sent": sent,
        }

    def _scheduled(self, pool_id: int, day: date) -> list[models.Reservation]:
        return (
            self.db.query(models.Reservation)
            .filter(
                models.Reservation.pool_id == pool_id,
                models.Reservation.scheduled_date == day,
                models.Reservation.status.in_(models.CANCELLABLE_STATUSES),
            )
            .order_by(models.Reservation.id)
            .all()
        )

    def _group_units(self, pool_id: int) -> list[dict]:
        return [
            {
                "unit_code": unit.code,
                "name": unit.name,
                "daily_quota": unit.daily_capacity,
                "mandatory_daily_quota": unit.mandatory_daily_quota,
            }
            for unit in capacity.active_units(self.db, pool_id)
        ]

    def overview(self, tenant_code: str, day: Optional[date] = None) -> dict:
        day = day or today()
        tenant = get_tenant(self.db, tenant_code)
        data = self.manager.overview(self.db, tenant, day)
        sync_count = syncs_today(self.db, tenant)
        data.update(
            {
                "date": day.isoformat(),
                "scheduled_reservations": [reservation_row(r) for r in self._scheduled(tenant.pool_id, day)],
                "group_units": self._group_units(tenant.pool_id),
                "alternative_dates": self.suggest_dates(tenant, day)["dates"],
                "can_book": self.manager.can_book(self.db, tenant, day),
                "quota_mode": self.manager.mode,
                "quota_mode_description": self.manager.mode_description,
                "sync_status": {
                    "can_sync_today": sync_count < tenant.max_sync_per_day,
                    "sync_count_today": sync_count,
                    "max_sync_per_day": tenant.max_sync_per_day,
                },
            }
        )
        return data

    def overview_range(self, tenant_code: str, start: date, end: date) -> dict:
        if end < start:
            raise InvalidDateRange(
                "End date must not be before start date",
                details={"start_date": start.isoformat(), "end_date": end.isoformat()},
            )
        if (end - start).days > settings.max_overview_range_days:
            raise RangeTooLarge(
                f"Date range cannot exceed {settings.max_overview_range_days} days",
                details={"start_date": start.isoformat(), "end_date": end.isoformat()},
            )
        tenant = get_tenant(self.db, tenant_code)
        pool = tenant.pool

        breakdown = []
        for day in date_range(start, end):
            scheduled = self._scheduled(pool.id, day)
            available = capacity.pool_available_daily(self.db, pool, day)
            used = pool.daily_capacity - available
            breakdown.append(
                {
                    "date": day.isoformat(),
                    "day_name": day.strftime("%A"),
                    "day_short": day.strftime("%a"),
                    "quota_info": {
                        "daily_quota": pool.daily_capacity,
                        "available_quota": available,
                        "used_quota": used,
                        "scheduled_count": sum(r.email_count for r in scheduled),
                        "utilization_rate": round(used / pool.daily_capacity * 100, 2) if pool.daily_capacity else 0,
                    },
                    "scheduled_reservations": [reservation_row(r) for r in scheduled],
                    "can_book": available > 0,
                    "status": date_status(available, pool.daily_capacity),
                }
            )

        total_days = len(breakdown)
        total_capacity = pool.daily_capacity * total_days
        total_used = sum(row["quota_info"]["used_quota"] for row in breakdown)
        available_days = sum(1 for row in breakdown if row["can_book"])
        return {
            "date_range": {"start_date": start.isoformat(), "end_date": end.isoformat(), "total_days": total_days},
            "summary": {
                "quota_capacity": total_capacity,
                "total_available": sum(row["quota_info"]["available_quota"] for row in breakdown),
                "total_used": total_used,
                "total_scheduled": sum(row["quota_info"]["scheduled_count"] for row in breakdown),
                "overall_utilization": round(total_used / total_capacity * 100, 2) if total_capacity else 0,
                "available_days": available_days,
                "fully_booked_days": sum(1 for row in breakdown if row["status"] == "fully_booked"),
                "booking_rate": round((total_days - available_days) / total_days * 100, 2) if total_days else 0,
            },
            "pool_info": {
                "pool_name": pool.name,
                "daily_quota": pool.daily_capacity,
                "monthly_quota": pool.cycle_capacity,
            },
            "unit_info": {
                "unit_name": tenant.name,
                "unit_code": tenant.code,
                "daily_quota": tenant.daily_capacity,
                "mandatory_daily": tenant.mandatory_daily_quota,
            },
            "daily_breakdown": breakdown,
            "group_units": self._group_units(pool.id),
        }

    def history(
        self,
        tenant_code: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict:
        tenant = get_tenant(self.db, tenant_code)
        query = self.db.query(models.Reservation).filter(models.Reservation.tenant_id == tenant.id)
        if start:
            query = query.filter(models.Reservation.scheduled_date >= start)
        if end:
            query = query.filter(models.Reservation.scheduled_date <= end)
        if status:
            query = query.filter(models.Reservation.status == status)
        total = query.count()
        rows = (
            query.order_by(models.Reservation.scheduled_date.desc(), models.Reservation.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return {"total": total, "limit": limit, "offset": offset, "items": [reservation_row(r) for r in rows]}
