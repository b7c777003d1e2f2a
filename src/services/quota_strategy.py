"""Interchangeable allocation strategies for a quota pool."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from src.db import models
from src.services import capacity

OUTCOME_VALID = "valid"
OUTCOME_PARTIAL = "partial"
OUTCOME_AUTO_BOOK = "auto_book"
OUTCOME_REJECTED = "rejected"


@dataclass
class ValidationOutcome:
    """Result of checking a booking request against available capacity.

    Shortfalls are expressed here rather than raised: ``partial`` carries the
    approvable part, ``auto_book`` means nothing is available on the date and
    the whole request should cascade onto later dates, ``rejected`` means the
    request cannot be placed on the date at all.
    """

    outcome: str
    available: int
    approved_count: int = 0
    remaining_count: int = 0
    message: str = ""

    @property
    def valid(self) -> bool:
        return self.outcome != OUTCOME_REJECTED


class AllocationStrategy(ABC):
    label: str = ""
    description: str = ""

    @abstractmethod
    def get_available(self, db: Session, tenant: models.TenantUnit, day: date) -> int:
        """Capacity the tenant may reserve on ``day``."""

    @abstractmethod
    def validate(self, db: Session, tenant: models.TenantUnit, day: date, count: int) -> ValidationOutcome:
        ...

    @abstractmethod
    def overview(self, db: Session, tenant: models.TenantUnit, day: date) -> dict:
        ...

    def can_book(self, db: Session, tenant: models.TenantUnit, day: date) -> bool:
        return self.get_available(db, tenant, day) > 0


class SharedPoolStrategy(AllocationStrategy):
    """Every unit competes for the whole pool; the first committed request wins."""

    label = "group_quota"
    description = "First request wins from group quota"

    def get_available(self, db: Session, tenant: models.TenantUnit, day: date) -> int:
        return capacity.pool_available_daily(db, tenant.pool, day)

    def validate(self, db: Session, tenant: models.TenantUnit, day: date, count: int) -> ValidationOutcome:
        available = self.get_available(db, tenant, day)
        if available <= 0:
            return ValidationOutcome(
                outcome=OUTCOME_AUTO_BOOK,
                available=0,
                remaining_count=count,
                message="No group quota available - proceeding with auto-booking",
            )
        if count > available:
            return ValidationOutcome(
                outcome=OUTCOME_PARTIAL,
                available=available,
                approved_count=available,
                remaining_count=count - available,
                message=f"Partial approval: {available} emails can be reserved for {day.isoformat()} (group quota limit)",
            )
        return ValidationOutcome(outcome=OUTCOME_VALID, available=available, approved_count=count)

    def overview(self, db: Session, tenant: models.TenantUnit, day: date) -> dict:
        return {
            "group_quota": capacity.pool_snapshot(db, tenant.pool, day),
            "unit_quota": {
                "unit_name": tenant.name,
                "daily_quota": tenant.daily_capacity,
                "monthly_quota": tenant.cycle_capacity,
                "mandatory_daily": tenant.mandatory_daily_quota,
                # Reporting only; units are bounded by the pool, not by their own figures.
                "available_daily": None,
                "used_today": capacity.tenant_used(db, tenant.id, day),
            },
        }


class EqualShareStrategy(AllocationStrategy):
    """Each active unit receives a fixed share of the pool after mandatory quotas."""

    label = "equal_quota"
    description = "Equal quota distribution among units"

    def get_available(self, db: Session, tenant: models.TenantUnit, day: date) -> int:
        share = capacity.base_share(db, tenant.pool)
        used = capacity.tenant_used(db, tenant.id, day)
        own_remaining = tenant.daily_capacity - tenant.mandatory_daily_quota - used
        return max(0, min(own_remaining, share - used))

    def validate(self, db: Session, tenant: models.TenantUnit, day: date, count: int) -> ValidationOutcome:
        available = self.get_available(db, tenant, day)
        if count <= available:
            return ValidationOutcome(outcome=OUTCOME_VALID, available=available, approved_count=count)
        if available > 0:
            return ValidationOutcome(
                outcome=OUTCOME_PARTIAL,
                available=available,
                approved_count=available,
                remaining_count=count - available,
                message=f"Partial approval: {available} emails can be reserved for {day.isoformat()} (unit equal quota limit)",
            )
        return ValidationOutcome(
            outcome=OUTCOME_REJECTED,
            available=0,
            remaining_count=count,
            message="No quota available for this unit on the requested date",
        )

    def overview(self, db: Session, tenant: models.TenantUnit, day: date) -> dict:
        return {
            "group_quota": capacity.pool_snapshot(db, tenant.pool, day),
            "unit_quota": {
                "unit_name": tenant.name,
                "daily_quota": tenant.daily_capacity,
                "monthly_quota": tenant.cycle_capacity,
                "mandatory_daily": tenant.mandatory_daily_quota,
                "available_daily": self.get_available(db, tenant, day),
                "used_today": capacity.tenant_used(db, tenant.id, day),
                "base_share": capacity.base_share(db, tenant.pool),
                "equal_quota_enabled": True,
            },
            "quota_distribution": self._distribution(db, tenant.pool, day),
        }

    def _distribution(self, db: Session, pool: models.QuotaPool, day: date) -> list[dict]:
        return [
            {
                "unit_code": unit.code,
                "unit_name": unit.name,
                "available_quota": self.get_available(db, unit, day),
                "used_quota": capacity.tenant_used(db, unit.id, day),
                "unit_daily_quota": unit.daily_capacity,
                "mandatory_quota": unit.mandatory_daily_quota,
            }
            for unit in capacity.active_units(db, pool.id)
        ]
