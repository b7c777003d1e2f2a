"""Domain errors raised by the quota services and their API rendering."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class QuotaError(Exception):
    """Base class for failures the request layer maps onto HTTP responses."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "quota_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": {"code": self.code, "message": self.message}}
        if self.details is not None:
            payload["error"]["details"] = self.details
        return payload


class NotFound(QuotaError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class Inactive(QuotaError):
    status_code = status.HTTP_409_CONFLICT
    code = "inactive"


class InvalidState(QuotaError):
    """Operation not allowed in the current state, such as an illegal reservation transition."""

    status_code = status.HTTP_409_CONFLICT
    code = "invalid_state"


class RangeTooLarge(QuotaError):
    status_code = 422
    code = "range_too_large"


class InvalidDateRange(QuotaError):
    status_code = 422
    code = "invalid_date_range"


class SyncLimitExceeded(QuotaError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "sync_limit_exceeded"


class TransactionFailure(QuotaError):
    """Store-level failure inside a multi-step mutation; the work was rolled back."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "transaction_failure"


async def quota_error_handler(_: Request, exc: QuotaError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
