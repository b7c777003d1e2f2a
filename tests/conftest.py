"""Shared fixtures: an in-memory SQLite database and small data factories."""
from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from src.db import models  # noqa: E402
from src.db.session import build_engine  # noqa: E402
from src.services.quota_manager import configure_quota_manager  # noqa: E402


def make_engine():
    engine = build_engine("sqlite://")
    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def engine():
    engine = make_engine()
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture()
def file_session_factory(tmp_path):
    """Sessions on a file-backed database, each with its own connection."""

    engine = build_engine(f"sqlite:///{tmp_path}/quota.db")
    models.Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def shared_strategy():
    configure_quota_manager(equal_share=False)
    yield
    configure_quota_manager(equal_share=False)


def make_pool(db, name="Pool 1", daily=1000, cycle=30000, **extra) -> models.QuotaPool:
    pool = models.QuotaPool(name=name, daily_capacity=daily, cycle_capacity=cycle, is_active=True, **extra)
    db.add(pool)
    db.commit()
    return pool


def make_unit(db, pool, code, daily=1000, cycle=30000, mandatory=0, active=True, **extra) -> models.TenantUnit:
    unit = models.TenantUnit(
        code=code,
        name=f"Unit {code}",
        pool_id=pool.id,
        daily_capacity=daily,
        cycle_capacity=cycle,
        mandatory_daily_quota=mandatory,
        is_active=active,
        **extra,
    )
    db.add(unit)
    db.commit()
    return unit


@pytest.fixture()
def pool_factory(db):
    def factory(**kwargs) -> models.QuotaPool:
        return make_pool(db, **kwargs)

    return factory


@pytest.fixture()
def unit_factory(db):
    def factory(pool, code, **kwargs) -> models.TenantUnit:
        return make_unit(db, pool, code, **kwargs)

    return factory
