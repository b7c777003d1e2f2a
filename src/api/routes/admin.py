"""Pool and tenant unit management endpoints."""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from src.core.config import settings
from src.core.errors import InvalidState, NotFound
from src.core.security import verify_api_token
from src.db import models
from src.db.session import get_db
from src.db.transactions import transaction
from src.services.lookups import get_pool

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(verify_api_token)])


class PoolCreate(BaseModel):
    name: str = Field(max_length=255)
    api_key: Optional[str] = None
    daily_capacity: int = Field(ge=0)
    cycle_capacity: int = Field(ge=0)
    is_active: bool = True
    settings: Optional[dict[str, Any]] = None


class PoolUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    api_key: Optional[str] = None
    daily_capacity: Optional[int] = Field(default=None, ge=0)
    cycle_capacity: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    settings: Optional[dict[str, Any]] = None


class PoolResponse(BaseModel):
    id: int
    name: str
    daily_capacity: int
    cycle_capacity: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class UnitCreate(BaseModel):
    code: str = Field(max_length=50)
    name: str = Field(max_length=255)
    pool_id: int
    daily_capacity: int = Field(ge=0)
    cycle_capacity: int = Field(ge=0)
    mandatory_daily_quota: int = Field(default=0, ge=0)
    max_sync_per_day: int = Field(default_factory=lambda: settings.default_max_sync_per_day, ge=1)
    is_active: bool = True
    settings: Optional[dict[str, Any]] = None


class UnitUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    daily_capacity: Optional[int] = Field(default=None, ge=0)
    cycle_capacity: Optional[int] = Field(default=None, ge=0)
    mandatory_daily_quota: Optional[int] = Field(default=None, ge=0)
    max_sync_per_day: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None
    settings: Optional[dict[str, Any]] = None


class UnitResponse(BaseModel):
    id: int
    code: str
    name: str
    pool_id: int
    daily_capacity: int
    cycle_capacity: int
    mandatory_daily_quota: int
    max_sync_per_day: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


def _get_unit(db: Session, unit_id: int) -> models.TenantUnit:
    unit = db.query(models.TenantUnit).filter(models.TenantUnit.id == unit_id).first()
    if unit is None:
        raise NotFound(f"Tenant unit {unit_id} not found")
    return unit


@router.post("/pools", response_model=PoolResponse, status_code=status.HTTP_201_CREATED)
def create_pool(payload: PoolCreate, db: Session = Depends(get_db)) -> PoolResponse:
    pool = models.QuotaPool(**payload.model_dump())
    db.add(pool)
    db.commit()
    db.refresh(pool)
    return PoolResponse.model_validate(pool)


@router.get("/pools", response_model=list[PoolResponse])
def list_pools(db: Session = Depends(get_db)) -> list[PoolResponse]:
    pools = db.query(models.QuotaPool).order_by(models.QuotaPool.name).all()
    return [PoolResponse.model_validate(pool) for pool in pools]


@router.put("/pools/{pool_id}", response_model=PoolResponse)
def update_pool(pool_id: int, payload: PoolUpdate, db: Session = Depends(get_db)) -> PoolResponse:
    pool = get_pool(db, pool_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(pool, key, value)
    db.commit()
    db.refresh(pool)
    return PoolResponse.model_validate(pool)


@router.delete("/pools/{pool_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_pool(pool_id: int, db: Session = Depends(get_db)) -> Response:
    """Delete an unused pool and its units. Pools with reservations or ledger history are kept."""

    with transaction(db):
        pool = get_pool(db, pool_id)
        reservations = (
            db.query(func.count(models.Reservation.id)).filter(models.Reservation.pool_id == pool.id).scalar()
        )
        ledger_entries = (
            db.query(func.count(models.UsageLedgerEntry.id))
            .filter(models.UsageLedgerEntry.pool_id == pool.id)
            .scalar()
        )
        if reservations or ledger_entries:
            raise InvalidState(
                "Pool is still referenced and cannot be deleted",
                details={"pool_id": pool.id, "reservations": reservations, "ledger_entries": ledger_entries},
            )
        db.delete(pool)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/units", response_model=UnitResponse, status_code=status.HTTP_201_CREATED)
def create_unit(payload: UnitCreate, db: Session = Depends(get_db)) -> UnitResponse:
    get_pool(db, payload.pool_id)
    unit = models.TenantUnit(**payload.model_dump())
    db.add(unit)
    db.commit()
    db.refresh(unit)
    return UnitResponse.model_validate(unit)


@router.get("/units", response_model=list[UnitResponse])
def list_units(pool_id: Optional[int] = None, db: Session = Depends(get_db)) -> list[UnitResponse]:
    query = db.query(models.TenantUnit)
    if pool_id is not None:
        query = query.filter(models.TenantUnit.pool_id == pool_id)
    return [UnitResponse.model_validate(unit) for unit in query.order_by(models.TenantUnit.code).all()]


@router.put("/units/{unit_id}", response_model=UnitResponse)
def update_unit(unit_id: int, payload: UnitUpdate, db: Session = Depends(get_db)) -> UnitResponse:
    unit = _get_unit(db, unit_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(unit, key, value)
    db.commit()
    db.refresh(unit)
    return UnitResponse.model_validate(unit)
