"""Capacity queries shared by both allocation strategies."""
from __future__ import annotations

from datetime import date

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.db import models
from src.services.billing_cycle import billing_period


def active_units(db: Session, pool_id: int) -> list[models.TenantUnit]:
    return (
        db.query(models.TenantUnit)
        .filter(models.TenantUnit.pool_id == pool_id, models.TenantUnit.is_active.is_(True))
        .order_by(models.TenantUnit.code)
        .all()
    )


def pool_mandatory(db: Session, pool_id: int) -> int:
    total = (
        db.query(func.coalesce(func.sum(models.TenantUnit.mandatory_daily_quota), 0))
        .filter(models.TenantUnit.pool_id == pool_id, models.TenantUnit.is_active.is_(True))
        .scalar()
    )
    return int(total or 0)


def pool_reserved(db: Session, pool_id: int, day: date) -> int:
    total = (
        db.query(func.coalesce(func.sum(models.Reservation.email_count), 0))
        .filter(
            models.Reservation.pool_id == pool_id,
            models.Reservation.scheduled_date == day,
            models.Reservation.status.in_(models.ACTIVE_STATUSES),
        )
        .scalar()
    )
    return int(total or 0)


def pool_reserved_between(db: Session, pool_id: int, start: date, end: date) -> int:
    total = (
        db.query(func.coalesce(func.sum(models.Reservation.email_count), 0))
        .filter(
            models.Reservation.pool_id == pool_id,
            models.Reservation.scheduled_date.between(start, end),
            models.Reservation.status.in_(models.ACTIVE_STATUSES),
        )
        .scalar()
    )
    return int(total or 0)


def tenant_used(db: Session, tenant_id: int, day: date) -> int:
    total = (
        db.query(func.coalesce(func.sum(models.Reservation.email_count), 0))
        .filter(
            models.Reservation.tenant_id == tenant_id,
            models.Reservation.scheduled_date == day,
            models.Reservation.status.in_(models.ACTIVE_STATUSES),
        )
        .scalar()
    )
    return int(total or 0)


def pool_available_daily(db: Session, pool: models.QuotaPool, day: date) -> int:
    """Daily capacity left for competitive booking; may be negative when overcommitted."""

    return pool.daily_capacity - pool_reserved(db, pool.id, day) - pool_mandatory(db, pool.id)


def pool_available_cycle(db: Session, pool: models.QuotaPool, day: date) -> int:
    period = billing_period(day)
    reserved = pool_reserved_between(db, pool.id, period.start, period.end)
    return pool.cycle_capacity - reserved - pool_mandatory(db, pool.id) * period.days


def base_share(db: Session, pool: models.QuotaPool) -> int:
    """Fixed per-unit share of the pool under equal distribution."""

    units = active_units(db, pool.id)
    if not units:
        return 0
    mandatory = sum(unit.mandatory_daily_quota for unit in units)
    return (pool.daily_capacity - mandatory) // len(units)


def pool_snapshot(db: Session, pool: models.QuotaPool, day: date) -> dict:
    return {
        "pool_name": pool.name,
        "daily_capacity": pool.daily_capacity,
        "cycle_capacity": pool.cycle_capacity,
        "reserved_daily": pool_reserved(db, pool.id, day),
        "mandatory_reserved": pool_mandatory(db, pool.id),
        "available_daily": pool_available_daily(db, pool, day),
        "available_cycle": pool_available_cycle(db, pool, day),
        "billing_period": billing_period(day).as_dict(),
    }
