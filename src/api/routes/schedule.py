"""Reservation endpoints used by tenant units."""
from __future__ import annotations

from datetime import date
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from src.core.security import verify_api_token
from src.db.session import get_db
from src.services.reservation_service import ReservationService

router = APIRouter(prefix="/schedule", tags=["schedule"], dependencies=[Depends(verify_api_token)])


class ReservationRequest(BaseModel):
    unit_code: str
    scheduled_date: date
    email_count: int = Field(gt=0)
    campaign_type: Literal["regular", "urgent", "promotional"] = "regular"
    subject: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None


class CancelRequest(BaseModel):
    unit_code: str
    reason: Optional[str] = Field(default=None, max_length=500)


class MarkSentRequest(BaseModel):
    unit_code: str
    actual_emails_sent: Optional[int] = Field(default=None, ge=0)


class BookingResponse(BaseModel):
    success: bool
    type: str
    message: str
    total_requested: int
    total_approved: int
    remaining_unbooked: int
    main_reservation: Optional[dict[str, Any]] = None
    auto_booked: list[dict[str, Any]] = []
    suggestions: Optional[dict[str, Any]] = None


@router.get("/overview")
def schedule_overview(
    unit_code: str,
    on_date: Optional[date] = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
) -> dict:
    """Pool and unit quota picture for one date."""

    return ReservationService(db).overview(unit_code, on_date)


@router.get("/overview/range")
def schedule_overview_range(
    unit_code: str,
    start_date: date,
    end_date: date,
    db: Session = Depends(get_db),
) -> dict:
    return ReservationService(db).overview_range(unit_code, start_date, end_date)


@router.post("/request", response_model=BookingResponse)
def request_reservation(payload: ReservationRequest, db: Session = Depends(get_db)) -> BookingResponse:
    """Reserve capacity, spilling any shortfall onto the following days."""

    result = ReservationService(db).request_reservation(
        payload.unit_code,
        payload.scheduled_date,
        payload.email_count,
        campaign_type=payload.campaign_type,
        subject=payload.subject,
        description=payload.description,
    )
    return BookingResponse(**result.as_dict())


@router.post("/{reservation_id}/cancel")
def cancel_reservation(reservation_id: int, payload: CancelRequest, db: Session = Depends(get_db)) -> dict:
    data = ReservationService(db).cancel_reservation(reservation_id, payload.unit_code, payload.reason)
    return {"success": True, "message": "Reservation cancelled; its quota is available again", "data": data}


@router.post("/{reservation_id}/sent")
def mark_sent(reservation_id: int, payload: MarkSentRequest, db: Session = Depends(get_db)) -> dict:
    data = ReservationService(db).mark_sent(reservation_id, payload.unit_code, payload.actual_emails_sent)
    return {"success": True, "message": "Reservation marked as sent", "data": data}


@router.get("/history")
def reservation_history(
    unit_code: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> dict:
    return ReservationService(db).history(unit_code, start_date, end_date, status, limit, offset)
