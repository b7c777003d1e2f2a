"""Entity lookups that raise domain errors instead of returning None."""
from __future__ import annotations

from sqlalchemy.orm import Session

from src.core.errors import Inactive, NotFound
from src.db import models


def get_tenant(db: Session, tenant_code: str, require_active: bool = False) -> models.TenantUnit:
    tenant = db.query(models.TenantUnit).filter(models.TenantUnit.code == tenant_code).first()
    if tenant is None:
        raise NotFound(f"Tenant unit {tenant_code!r} not found")
    if require_active and not tenant.is_active:
        raise Inactive(f"Tenant unit {tenant_code!r} is inactive")
    return tenant


def get_owned_reservation(
    db: Session, reservation_id: int, tenant: models.TenantUnit, lock: bool = False
) -> models.Reservation:
    query = db.query(models.Reservation).filter(models.Reservation.id == reservation_id)
    if lock:
        query = query.with_for_update()
    reservation = query.first()
    if reservation is None or reservation.tenant_id != tenant.id:
        raise NotFound(
            "Reservation not found for this tenant unit",
            details={"reservation_id": reservation_id, "tenant_code": tenant.code},
        )
    return reservation


def get_pool(db: Session, pool_id: int) -> models.QuotaPool:
    pool = db.query(models.QuotaPool).filter(models.QuotaPool.id == pool_id).first()
    if pool is None:
        raise NotFound(f"Quota pool {pool_id} not found")
    return pool
