"""Reconciliation of the central usage ledger against tenant-reported usage."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.core.config import settings
from src.core.errors import InvalidState
from src.db import models
from src.db.transactions import insert_if_absent, transaction
from src.services import capacity
from src.services.billing_cycle import billing_period
from src.services.lookups import get_owned_reservation, get_tenant
from src.utils.datetime import today, utcnow
from src.utils.logger import get_logger

SOURCE_UNIT_SYNC = "unit_sync"
SOURCE_CAMPAIGN_SENT = "campaign_sent"
SOURCE_CAMPAIGN_COMPLETION = "campaign_completion"
SOURCE_MANDATORY = "mandatory"

logger = get_logger("reconciliation")


@dataclass
class Discrepancy:
    status: str
    details: list[dict] = field(default_factory=list)


@dataclass
class SyncResult:
    ledger_entry_id: int
    discrepancy: Discrepancy
    capacity_inconsistency: Optional[dict]
    updated_quota: dict


@dataclass
class CompletionResult:
    reservation_id: int
    status: str
    actual_emails_sent: int
    usage_date: date
    daily_used: int
    monthly_used: int


def _tolerance(central: int, floor: int) -> float:
    return max(floor, central * settings.discrepancy_tolerance_ratio)


def check_discrepancy(center_daily: int, unit_daily: int, center_monthly: int, unit_monthly: int) -> Discrepancy:
    """Compare central and reported figures; either tolerance breach means ``warning``."""

    result = Discrepancy(status=models.DISCREPANCY_NORMAL)
    checks = (
        ("daily_discrepancy", center_daily, unit_daily, settings.daily_discrepancy_floor),
        ("monthly_discrepancy", center_monthly, unit_monthly, settings.monthly_discrepancy_floor),
    )
    for kind, center, unit, floor in checks:
        difference = abs(center - unit)
        tolerance = _tolerance(center, floor)
        if difference > tolerance:
            result.status = models.DISCREPANCY_WARNING
            result.details.append(
                {
                    "type": kind,
                    "center_value": center,
                    "unit_value": unit,
                    "difference": difference,
                    "tolerance": tolerance,
                }
            )
    return result


class ReconciliationService:
    def __init__(self, db: Session) -> None:
        self.db = db

    # Ledger primitives

    def _entry_query(self, pool_id: int, tenant_id: Optional[int]):
        query = self.db.query(models.UsageLedgerEntry).filter(models.UsageLedgerEntry.pool_id == pool_id)
        if tenant_id is None:
            return query.filter(models.UsageLedgerEntry.tenant_id.is_(None))
        return query.filter(models.UsageLedgerEntry.tenant_id == tenant_id)

    def load_entry(self, pool_id: int, tenant_id: Optional[int], day: date) -> models.UsageLedgerEntry:
        """Load the (pool, tenant, day) entry, creating it if absent, and lock it."""

        insert_if_absent(
            self.db,
            models.UsageLedgerEntry,
            pool_id=pool_id,
            tenant_id=tenant_id,
            usage_date=day,
            daily_used=0,
            monthly_used=0,
            mandatory_used=0,
            discrepancy_status=models.DISCREPANCY_NORMAL,
        )
        return (
            self._entry_query(pool_id, tenant_id)
            .filter(models.UsageLedgerEntry.usage_date == day)
            .with_for_update()
            .order_by(models.UsageLedgerEntry.id)
            .first()
        )

    def central_monthly(self, pool_id: int, tenant_id: Optional[int], day: date, exclude_day: bool = False) -> int:
        period = billing_period(day)
        query = self._entry_query(pool_id, tenant_id).filter(
            models.UsageLedgerEntry.usage_date.between(period.start, period.end)
        )
        if exclude_day:
            query = query.filter(models.UsageLedgerEntry.usage_date != day)
        total = query.with_entities(func.coalesce(func.sum(models.UsageLedgerEntry.daily_used), 0)).scalar()
        return int(total or 0)

    def _append_event(
        self, entry: models.UsageLedgerEntry, source: str, delta: Optional[int], payload: dict[str, Any]
    ) -> models.UsageLedgerEvent:
        event = models.UsageLedgerEvent(entry=entry, source=source, delta=delta, payload=payload, recorded_at=utcnow())
        self.db.add(event)
        return event

    def apply_usage(
        self,
        pool_id: int,
        tenant_id: Optional[int],
        day: date,
        count: int,
        source: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> models.UsageLedgerEntry:
        """Fold a usage delta into the ledger. Does not commit."""

        entry = self.load_entry(pool_id, tenant_id, day)
        entry.daily_used += count
        if source == SOURCE_MANDATORY:
            entry.mandatory_used += count
        entry.monthly_used = self.central_monthly(pool_id, tenant_id, day, exclude_day=True) + entry.daily_used
        self._append_event(entry, source, count, payload or {})
        self.db.flush()
        return entry

    # Operations

    def sync_from_tenant(
        self,
        tenant_code: str,
        reported_daily: int,
        reported_monthly: int,
        sync_type: str = "manual",
        on_date: Optional[date] = None,
    ) -> SyncResult:
        day = on_date or today()
        with transaction(self.db):
            tenant = get_tenant(self.db, tenant_code)
            pool = tenant.pool
            entry = self.load_entry(pool.id, tenant.id, day)

            center_daily = entry.daily_used
            center_monthly = self.central_monthly(pool.id, tenant.id, day)
            discrepancy = check_discrepancy(center_daily, reported_daily, center_monthly, reported_monthly)

            entry.reported_daily = reported_daily
            entry.reported_monthly = reported_monthly
            entry.sync_type = sync_type
            entry.last_sync_at = utcnow()
            entry.discrepancy_status = discrepancy.status
            entry.discrepancy_details = discrepancy.details
            self._append_event(
                entry,
                SOURCE_UNIT_SYNC,
                None,
                {
                    "sync_type": sync_type,
                    "daily_used": reported_daily,
                    "monthly_used": reported_monthly,
                    "discrepancy_status": discrepancy.status,
                },
            )
            self.db.flush()

            inconsistency = self._capacity_check(pool, day)
            result = SyncResult(
                ledger_entry_id=entry.id,
                discrepancy=discrepancy,
                capacity_inconsistency=inconsistency,
                updated_quota={
                    "daily_used": entry.daily_used,
                    "monthly_used": center_monthly,
                    "daily_remaining": tenant.daily_capacity - entry.daily_used,
                    "monthly_remaining": tenant.cycle_capacity - center_monthly,
                },
            )

        if discrepancy.status == models.DISCREPANCY_WARNING:
            logger.warning("Usage discrepancy for %s on %s: %s", tenant_code, day, discrepancy.details)
        return result

    def _capacity_check(self, pool: models.QuotaPool, day: date) -> Optional[dict]:
        reported_total = (
            self.db.query(func.coalesce(func.sum(models.UsageLedgerEntry.reported_daily), 0))
            .filter(
                models.UsageLedgerEntry.pool_id == pool.id,
                models.UsageLedgerEntry.usage_date == day,
                models.UsageLedgerEntry.tenant_id.isnot(None),
            )
            .scalar()
        )
        implied_available = pool.daily_capacity - int(reported_total or 0)
        computed_available = capacity.pool_available_daily(self.db, pool, day)
        if computed_available <= implied_available:
            return None
        logger.warning(
            "Pool %s reports more usage than reserved on %s: computed %s > implied %s",
            pool.name,
            day,
            computed_available,
            implied_available,
        )
        return {
            "date": day.isoformat(),
            "computed_available": computed_available,
            "implied_available": implied_available,
            "excess": computed_available - implied_available,
        }

    def record_completion(
        self,
        tenant_code: str,
        reservation_id: int,
        actual_sent: int,
        completion_date: Optional[date] = None,
    ) -> CompletionResult:
        with transaction(self.db):
            tenant = get_tenant(self.db, tenant_code)
            reservation = get_owned_reservation(self.db, reservation_id, tenant, lock=True)
            if reservation.status != models.STATUS_APPROVED:
                raise InvalidState(
                    f"Only approved reservations can be completed (status is {reservation.status})",
                    details={"reservation_id": reservation.id, "status": reservation.status},
                )
            usage_date = completion_date or reservation.scheduled_date
            sent_at = utcnow()
            reservation.status = models.STATUS_SENT
            reservation.sent_at = sent_at
            reservation.meta = {
                **(reservation.meta or {}),
                "sent_at": sent_at.isoformat(),
                "actual_emails_sent": actual_sent,
                "completion_date": usage_date.isoformat(),
                "quota_consumed": True,
            }
            entry = self.apply_usage(
                reservation.pool_id,
                tenant.id,
                usage_date,
                actual_sent,
                SOURCE_CAMPAIGN_COMPLETION,
                {"reservation_id": reservation.id, "campaign_type": reservation.campaign_type},
            )
            result = CompletionResult(
                reservation_id=reservation.id,
                status=reservation.status,
                actual_emails_sent=actual_sent,
                usage_date=usage_date,
                daily_used=entry.daily_used,
                monthly_used=entry.monthly_used,
            )
        logger.info("Reservation %s completed with %s emails sent", reservation_id, actual_sent)
        return result

    # Read-only projections

    def _window(self, start: Optional[date], end: Optional[date], reference: date) -> tuple[date, date, bool]:
        period = billing_period(reference)
        window_start = start or period.start
        window_end = end or period.end
        clipped = window_start < period.start
        if clipped:
            window_start = period.start
        return window_start, window_end, clipped

    def discrepancy_report(
        self,
        pool_name: Optional[str] = None,
        tenant_code: Optional[str] = None,
        status: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
        on_date: Optional[date] = None,
    ) -> dict:
        reference = on_date or today()
        window_start, window_end, clipped = self._window(start, end, reference)

        query = (
            self.db.query(models.UsageLedgerEntry)
            .join(models.QuotaPool, models.UsageLedgerEntry.pool_id == models.QuotaPool.id)
            .outerjoin(models.TenantUnit, models.UsageLedgerEntry.tenant_id == models.TenantUnit.id)
            .filter(models.UsageLedgerEntry.usage_date.between(window_start, window_end))
        )
        if pool_name:
            query = query.filter(models.QuotaPool.name == pool_name)
        if tenant_code:
            query = query.filter(models.TenantUnit.code == tenant_code)
        if status:
            query = query.filter(models.UsageLedgerEntry.discrepancy_status == status)

        total = query.count()
        entries = (
            query.order_by(models.UsageLedgerEntry.usage_date.desc(), models.UsageLedgerEntry.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return {
            "billing_period": billing_period(reference).as_dict(),
            "window": {"start_date": window_start.isoformat(), "end_date": window_end.isoformat(), "clipped": clipped},
            "total": total,
            "limit": limit,
            "offset": offset,
            "items": [self._entry_row(entry) for entry in entries],
        }

    def discrepancy_summary(self, window_days: int = 7, on_date: Optional[date] = None) -> dict:
        reference = on_date or today()
        requested_start = reference - timedelta(days=max(window_days, 1) - 1)
        window_start, window_end, clipped = self._window(requested_start, reference, reference)

        entries = (
            self.db.query(models.UsageLedgerEntry)
            .filter(models.UsageLedgerEntry.usage_date.between(window_start, window_end))
            .order_by(models.UsageLedgerEntry.usage_date.desc(), models.UsageLedgerEntry.id.desc())
            .all()
        )
        warnings = [entry for entry in entries if entry.discrepancy_status == models.DISCREPANCY_WARNING]

        by_unit: dict[str, dict] = {}
        for entry in entries:
            code = entry.tenant.code if entry.tenant else None
            row = by_unit.setdefault(
                code or "-", {"unit_code": code, "entries": 0, "warnings": 0, "last_warning_date": None}
            )
            row["entries"] += 1
            if entry.discrepancy_status == models.DISCREPANCY_WARNING:
                row["warnings"] += 1
                if row["last_warning_date"] is None:
                    row["last_warning_date"] = entry.usage_date.isoformat()

        return {
            "window": {
                "start_date": window_start.isoformat(),
                "end_date": window_end.isoformat(),
                "requested_days": window_days,
                "clipped": clipped,
            },
            "total_entries": len(entries),
            "warning_count": len(warnings),
            "normal_count": len(entries) - len(warnings),
            "warning_rate": round(len(warnings) / len(entries) * 100, 2) if entries else 0,
            "by_unit": sorted(by_unit.values(), key=lambda row: (-row["warnings"], row["unit_code"] or "")),
            "latest_warnings": [self._entry_row(entry) for entry in warnings[:10]],
        }

    @staticmethod
    def _entry_row(entry: models.UsageLedgerEntry) -> dict:
        return {
            "id": entry.id,
            "pool": entry.pool.name if entry.pool else None,
            "unit_code": entry.tenant.code if entry.tenant else None,
            "usage_date": entry.usage_date.isoformat(),
            "daily_used": entry.daily_used,
            "monthly_used": entry.monthly_used,
            "reported_daily": entry.reported_daily,
            "reported_monthly": entry.reported_monthly,
            "sync_type": entry.sync_type,
            "last_sync_at": entry.last_sync_at.isoformat() if entry.last_sync_at else None,
            "discrepancy_status": entry.discrepancy_status,
            "discrepancy_details": entry.discrepancy_details or [],
        }
