"""Usage reporting, reconciliation and sync endpoints."""
from __future__ import annotations

from dataclasses import asdict
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from src.core.security import verify_api_token
from src.db.session import get_db
from src.services.reconciliation_service import ReconciliationService
from src.services.sync_service import SyncService

router = APIRouter(prefix="/quota", tags=["quota"], dependencies=[Depends(verify_api_token)])

SyncType = Literal["scheduled", "manual", "initial"]


class ReportedUsage(BaseModel):
    today_used: int = Field(ge=0)
    monthly_used: int = Field(ge=0)


class UsageSyncRequest(BaseModel):
    unit_code: str
    quota_data: ReportedUsage
    sync_type: SyncType = "manual"
    usage_date: Optional[date] = None


class CompletionRequest(BaseModel):
    unit_code: str
    reservation_id: int
    actual_emails_sent: int = Field(ge=0)
    completion_date: Optional[date] = None


class PullSyncRequest(BaseModel):
    unit_code: str
    sync_type: SyncType = "manual"


@router.post("/sync")
def sync_from_unit(payload: UsageSyncRequest, db: Session = Depends(get_db)) -> dict:
    """Record a unit's self-reported usage and compare it with the central ledger."""

    result = ReconciliationService(db).sync_from_tenant(
        payload.unit_code,
        payload.quota_data.today_used,
        payload.quota_data.monthly_used,
        sync_type=payload.sync_type,
        on_date=payload.usage_date,
    )
    return {"success": True, "message": "Quota synchronized", "data": asdict(result)}


@router.get("/status")
def quota_status(
    unit_code: str,
    on_date: Optional[date] = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
) -> dict:
    return SyncService(db).quota_status(unit_code, on_date)


@router.post("/complete")
def complete_reservation(payload: CompletionRequest, db: Session = Depends(get_db)) -> dict:
    result = ReconciliationService(db).record_completion(
        payload.unit_code,
        payload.reservation_id,
        payload.actual_emails_sent,
        payload.completion_date,
    )
    return {"success": True, "message": "Reservation completed and usage recorded", "data": asdict(result)}


@router.get("/discrepancy")
def discrepancy_report(
    pool: Optional[str] = None,
    unit_code: Optional[str] = None,
    status: Optional[Literal["normal", "warning"]] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> dict:
    return ReconciliationService(db).discrepancy_report(
        pool_name=pool,
        tenant_code=unit_code,
        status=status,
        start=start_date,
        end=end_date,
        limit=limit,
        offset=offset,
    )


@router.get("/discrepancy/summary")
def discrepancy_summary(days: int = Query(default=7, ge=1, le=31), db: Session = Depends(get_db)) -> dict:
    return ReconciliationService(db).discrepancy_summary(window_days=days)


@router.post("/pull")
def pull_sync(payload: PullSyncRequest, db: Session = Depends(get_db)) -> dict:
    """Hand a unit its upcoming reservations and quota status."""

    result = SyncService(db).pull_sync(payload.unit_code, payload.sync_type)
    return {"success": True, "message": "Sync completed", **result}
