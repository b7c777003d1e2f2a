"""Shared-token authentication for the central API."""
from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.core.config import settings

bearer_scheme = HTTPBearer(auto_error=False)


def verify_api_token(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> None:
    """Reject requests whose bearer token is not the configured central token."""

    token = credentials.credentials if credentials else ""
    if not secrets.compare_digest(token, settings.central_api_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
