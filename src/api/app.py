"""FastAPI application instance."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import admin, quota, schedule
from src.core.config import settings
from src.core.errors import QuotaError, quota_error_handler
from src.db import models
from src.db.session import engine
from src.services.quota_manager import configure_quota_manager
from src.utils.datetime import utcnow
from src.utils.logger import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - startup hook
    configure_logging()
    configure_quota_manager()
    # Ensure tables exist for local development. Alembic should manage in production.
    models.Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(QuotaError, quota_error_handler)

app.include_router(schedule.router)
app.include_router(quota.router)
app.include_router(admin.router)


@app.get("/ping", tags=["system"])
async def ping() -> dict[str, str]:
    return {"message": "pong", "timestamp": utcnow().isoformat(), "version": settings.api_version}


@app.get("/health", tags=["system"])
async def health() -> dict[str, str]:
    """Simple uptime check."""

    return {"status": "ok"}
