"""SQLAlchemy engine and session handling."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.config import settings


def build_engine(database_url: str) -> Engine:
    """Create an engine with driver-specific connection options.

    Hosted Postgres requires TLS. SQLite connections are shared across the
    request threadpool, and an in-memory database is pinned to one connection
    so every session sees the same data.
    """

    url = make_url(database_url)
    connect_args: dict[str, Any] = {}
    options: dict[str, Any] = {"future": True}
    if url.drivername.startswith("postgresql+psycopg"):
        connect_args["sslmode"] = "require"
        options["pool_pre_ping"] = True
    elif url.drivername.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
    return create_engine(url, connect_args=connect_args, **options)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    """FastAPI dependency that yields a scoped session."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Context manager for scripts such as the demo seeder."""

    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
