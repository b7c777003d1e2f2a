"""Seed a development database with demo pools and tenant units."""
from __future__ import annotations

from sqlalchemy.orm import Session

from src.db import models
from src.db.session import engine, session_scope
from src.utils.logger import configure_logging, logger

POOLS = [
    {"name": "Pool 1", "daily_capacity": 3000, "cycle_capacity": 150000},
    {"name": "Pool 2", "daily_capacity": 5000, "cycle_capacity": 150000},
    {"name": "Pool 3", "daily_capacity": 3000, "cycle_capacity": 150000},
]

# (pool index, code, name, daily, cycle, mandatory, priority)
UNITS = [
    (0, "RCD", "Royal City Hotel", 1500, 75000, 200, "high"),
    (0, "RMS", "Royal Mountain Suite", 1500, 75000, 150, "medium"),
    (1, "KSV", "King Suite Villa", 2500, 75000, 300, "high"),
    (1, "RGH", "Royal Garden Hotel", 2500, 75000, 250, "medium"),
    (2, "RRP", "Royal Resort & Pool", 1000, 50000, 100, "medium"),
    (2, "RRPTG", "Royal Resort Pool Tugu", 1000, 50000, 80, "low"),
    (2, "PS", "Premium Suite", 1000, 50000, 120, "medium"),
]


def seed(db: Session) -> int:
    """Insert the demo data unless pools already exist; returns the number of units created."""

    if db.query(models.QuotaPool).count():
        logger.info("Database already seeded; skipping")
        return 0

    pools = [
        models.QuotaPool(is_active=True, settings={"timezone": "Asia/Jakarta"}, **values) for values in POOLS
    ]
    db.add_all(pools)
    db.flush()

    for pool_index, code, name, daily, cycle, mandatory, priority in UNITS:
        db.add(
            models.TenantUnit(
                code=code,
                name=name,
                pool_id=pools[pool_index].id,
                daily_capacity=daily,
                cycle_capacity=cycle,
                mandatory_daily_quota=mandatory,
                max_sync_per_day=5,
                is_active=True,
                settings={"priority": priority},
            )
        )
    logger.info("Seeded %s pools and %s units", len(pools), len(UNITS))
    return len(UNITS)


def run() -> None:
    configure_logging()
    models.Base.metadata.create_all(bind=engine)
    with session_scope() as db:
        seed(db)


if __name__ == "__main__":  # pragma: no cover - manual execution
    run()
