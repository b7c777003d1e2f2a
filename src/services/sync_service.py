"""Tenant-facing quota status and the rate-limited pull sync."""
from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.core.errors import SyncLimitExceeded
from src.db import models
from src.db.transactions import insert_if_absent, transaction
from src.services import capacity
from src.services.billing_cycle import billing_period
from src.services.lookups import get_tenant
from src.utils.datetime import today, utcnow
from src.utils.logger import get_logger

UPCOMING_DAYS = 7

logger = get_logger("sync")


def syncs_today(db: Session, tenant: models.TenantUnit, day: Optional[date] = None) -> int:
    total = (
        db.query(func.coalesce(func.sum(models.SyncLog.sync_count), 0))
        .filter(models.SyncLog.tenant_id == tenant.id, models.SyncLog.sync_date == (day or today()))
        .scalar()
    )
    return int(total or 0)


def _percentage(part: float, whole: int) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0


class SyncService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _ledger_used(self, pool_id: int, start: date, end: date, tenant_id: Optional[int] = None) -> int:
        query = self.db.query(func.coalesce(func.sum(models.UsageLedgerEntry.daily_used), 0)).filter(
            models.UsageLedgerEntry.pool_id == pool_id,
            models.UsageLedgerEntry.usage_date.between(start, end),
        )
        if tenant_id is not None:
            query = query.filter(models.UsageLedgerEntry.tenant_id == tenant_id)
        return int(query.scalar() or 0)

    def quota_status(self, tenant_code: str, day: Optional[date] = None) -> dict:
        day = day or today()
        tenant = get_tenant(self.db, tenant_code)
        pool = tenant.pool
        period = billing_period(day)
        mandatory = capacity.pool_mandatory(self.db, pool.id)

        group_used_today = self._ledger_used(pool.id, day, day)
        unit_used_today = self._ledger_used(pool.id, day, day, tenant.id)
        daily = {
            "group_quota": pool.daily_capacity,
            "group_used": group_used_today,
            "group_available": pool.daily_capacity - group_used_today - mandatory,
            "unit_quota": tenant.daily_capacity,
            "unit_used": unit_used_today,
            "unit_available": tenant.daily_capacity - unit_used_today,
            "mandatory_reserved": mandatory,
            "usage_percentage": _percentage(group_used_today, pool.daily_capacity),
        }

        group_used_cycle = self._ledger_used(pool.id, period.start, period.end)
        unit_used_cycle = self._ledger_used(pool.id, period.start, period.end, tenant.id)
        monthly = {
            "billing_period": period.as_dict(),
            "group_quota": pool.cycle_capacity,
            "group_used": group_used_cycle,
            "group_available": pool.cycle_capacity - group_used_cycle,
            "unit_quota": tenant.cycle_capacity,
            "unit_used": unit_used_cycle,
            "unit_available": tenant.cycle_capacity - unit_used_cycle,
            "usage_percentage": _percentage(group_used_cycle, pool.cycle_capacity),
        }

        elapsed_days = (day - period.start).days
        remaining_days = (period.end - day).days + 1
        average = group_used_cycle / elapsed_days if elapsed_days > 0 else 0
        projected = group_used_cycle + average * remaining_days
        projection = {
            "average_daily_usage": round(average),
            "projected_monthly_usage": round(projected),
            "projected_percentage": _percentage(projected, pool.cycle_capacity),
            "remaining_days": remaining_days,
        }

        return {
            "date": day.isoformat(),
            "daily": daily,
            "monthly": monthly,
            "projection": projection,
            "recommendations": self._recommendations(daily, monthly),
        }

    @staticmethod
    def _recommendations(daily: dict, monthly: dict) -> list[dict]:
        recommendations = []
        if daily["usage_percentage"] > 80:
            recommendations.append(
                {"type": "warning", "message": "Daily quota usage is above 80%. Consider rescheduling non-urgent campaigns."}
            )
        if monthly["usage_percentage"] > 90:
            recommendations.append(
                {"type": "critical", "message": "Monthly quota usage is above 90%. Immediate action required."}
            )
        if daily["group_available"] < 1000:
            recommendations.append(
                {"type": "info", "message": "Low daily quota remaining. Plan campaigns for tomorrow."}
            )
        return recommendations

    def pull_sync(self, tenant_code: str, sync_type: str = "manual", on_date: Optional[date] = None) -> dict:
        """Hand a tenant its upcoming reservations and quota status, counting against its daily sync limit."""

        day = on_date or today()
        with transaction(self.db):
            tenant = get_tenant(self.db, tenant_code)
            insert_if_absent(
                self.db,
                models.SyncLog,
                tenant_id=tenant.id,
                sync_date=day,
                sync_count=0,
                sync_type=sync_type,
                sync_data={},
            )
            log = (
                self.db.query(models.SyncLog)
                .filter(models.SyncLog.tenant_id == tenant.id, models.SyncLog.sync_date == day)
                .order_by(models.SyncLog.id)
                .with_for_update()
                .first()
            )
            used = syncs_today(self.db, tenant, day)
            if used >= tenant.max_sync_per_day:
                raise SyncLimitExceeded(
                    "Daily sync limit exceeded",
                    details={"tenant_code": tenant_code, "max_sync_per_day": tenant.max_sync_per_day},
                )

            synced_at = utcnow()
            log.sync_count += 1
            log.sync_type = sync_type
            log.sync_data = {**(log.sync_data or {}), "last_sync": synced_at.isoformat(), "type": sync_type}

            upcoming = (
                self.db.query(models.Reservation)
                .filter(
                    models.Reservation.tenant_id == tenant.id,
                    models.Reservation.scheduled_date.between(day, day + timedelta(days=UPCOMING_DAYS)),
                    models.Reservation.status.in_((models.STATUS_PENDING, models.STATUS_APPROVED)),
                )
                .order_by(models.Reservation.scheduled_date, models.Reservation.id)
                .all()
            )
            payload = {
                "unit_info": {
                    "unit_code": tenant.code,
                    "name": tenant.name,
                    "daily_quota": tenant.daily_capacity,
                    "monthly_quota": tenant.cycle_capacity,
                },
                "upcoming_reservations": [
                    {
                        "id": reservation.id,
                        "scheduled_date": reservation.scheduled_date.isoformat(),
                        "email_count": reservation.email_count,
                        "status": reservation.status,
                        "subject": reservation.subject,
                    }
                    for reservation in upcoming
                ],
                "quota_status": self.quota_status(tenant_code, day),
                "sync_timestamp": synced_at.isoformat(),
            }
            remaining = tenant.max_sync_per_day - (used + 1)

        logger.info("Pull sync for %s (%s), %s syncs left today", tenant_code, sync_type, remaining)
        return {"data": payload, "remaining_syncs": remaining}
