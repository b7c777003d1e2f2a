"""Process-wide selection of the allocation strategy.

The strategy is chosen once from ``settings.enable_equal_quota`` and then held
for the lifetime of the process. ``get_quota_manager()`` returns the cached
instance; ``configure_quota_manager()`` replaces it explicitly and is called
by the application lifespan (and by tests that need the other strategy).
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from src.core.config import settings
from src.db import models
from src.services.quota_strategy import (
    AllocationStrategy,
    EqualShareStrategy,
    SharedPoolStrategy,
    ValidationOutcome,
)
from src.utils.logger import get_logger

logger = get_logger("strategy")


class QuotaManager:
    def __init__(self, strategy: AllocationStrategy) -> None:
        self.strategy = strategy

    def get_available(self, db: Session, tenant: models.TenantUnit, day: date) -> int:
        return self.strategy.get_available(db, tenant, day)

    def validate(self, db: Session, tenant: models.TenantUnit, day: date, count: int) -> ValidationOutcome:
        return self.strategy.validate(db, tenant, day, count)

    def overview(self, db: Session, tenant: models.TenantUnit, day: date) -> dict:
        return self.strategy.overview(db, tenant, day)

    def can_book(self, db: Session, tenant: models.TenantUnit, day: date) -> bool:
        return self.strategy.can_book(db, tenant, day)

    def is_equal_share_enabled(self) -> bool:
        return isinstance(self.strategy, EqualShareStrategy)

    @property
    def mode(self) -> str:
        return self.strategy.label

    @property
    def mode_description(self) -> str:
        return self.strategy.description


_manager: Optional[QuotaManager] = None


def build_strategy(equal_share: bool) -> AllocationStrategy:
    return EqualShareStrategy() if equal_share else SharedPoolStrategy()


def configure_quota_manager(equal_share: bool | None = None) -> QuotaManager:
    """Initialise the process-wide manager, defaulting to the configured flag."""

    global _manager
    if equal_share is None:
        equal_share = settings.enable_equal_quota
    _manager = QuotaManager(build_strategy(equal_share))
    logger.info("Quota allocation strategy: %s", _manager.mode)
    return _manager


def get_quota_manager() -> QuotaManager:
    if _manager is None:
        return configure_quota_manager()
    return _manager
