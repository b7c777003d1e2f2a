"""Database models for the shared quota pool scheduler."""
from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

from src.utils.datetime import utcnow

Base = declarative_base()

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_SENT = "sent"
STATUS_CANCELLED = "cancelled"

# Reservations in these states hold capacity.
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_SENT)
CANCELLABLE_STATUSES = (STATUS_PENDING, STATUS_APPROVED)

DISCREPANCY_NORMAL = "normal"
DISCREPANCY_WARNING = "warning"


class QuotaPool(Base):
    __tablename__ = "quota_pools"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    api_key = Column(String(255), nullable=True)
    daily_capacity = Column(Integer, nullable=False, default=0)
    cycle_capacity = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    settings = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    tenants = relationship("TenantUnit", back_populates="pool", cascade="all, delete-orphan")
    reservations = relationship("Reservation", back_populates="pool", cascade="all, delete-orphan")


class TenantUnit(Base):
    __tablename__ = "tenant_units"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    pool_id = Column(Integer, ForeignKey("quota_pools.id", ondelete="CASCADE"), nullable=False, index=True)
    daily_capacity = Column(Integer, nullable=False, default=0)
    cycle_capacity = Column(Integer, nullable=False, default=0)
    mandatory_daily_quota = Column(Integer, nullable=False, default=0)
    max_sync_per_day = Column(Integer, nullable=False, default=5)
    is_active = Column(Boolean, nullable=False, default=True)
    settings = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    pool = relationship("QuotaPool", back_populates="tenants")
    reservations = relationship("Reservation", back_populates="tenant", cascade="all, delete-orphan")
    sync_logs = relationship("SyncLog", back_populates="tenant", cascade="all, delete-orphan")


class Reservation(Base):
    """A dated claim on pool capacity (a campaign)."""

    __tablename__ = "reservations"
    __table_args__ = (
        Index("ix_reservations_pool_date", "pool_id", "scheduled_date"),
        Index("ix_reservations_tenant_date", "tenant_id", "scheduled_date"),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenant_units.id", ondelete="CASCADE"), nullable=False)
    pool_id = Column(Integer, ForeignKey("quota_pools.id", ondelete="CASCADE"), nullable=False)
    scheduled_date = Column(Date, nullable=False)
    email_count = Column(Integer, nullable=False)
    campaign_type = Column(String(50), nullable=False, default="regular")
    status = Column(String(50), nullable=False, default=STATUS_PENDING)
    subject = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes.
    meta = Column("metadata", JSON, nullable=True)
    requested_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    tenant = relationship("TenantUnit", back_populates="reservations")
    pool = relationship("QuotaPool", back_populates="reservations")


class CapacitySlot(Base):
    """Lock row for one (pool, date); booking and cancellation serialize on it."""

    __tablename__ = "capacity_slots"
    __table_args__ = (UniqueConstraint("pool_id", "slot_date", name="uq_capacity_slot"),)

    id = Column(Integer, primary_key=True)
    pool_id = Column(Integer, ForeignKey("quota_pools.id", ondelete="CASCADE"), nullable=False)
    slot_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class UsageLedgerEntry(Base):
    __tablename__ = "usage_ledger"
    __table_args__ = (
        UniqueConstraint("pool_id", "tenant_id", "usage_date", name="uq_usage_ledger_key"),
        # NULL tenants are distinct under the constraint above; pool-level rows need their own key.
        Index(
            "uq_usage_ledger_pool_day",
            "pool_id",
            "usage_date",
            unique=True,
            postgresql_where=text("tenant_id IS NULL"),
            sqlite_where=text("tenant_id IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True)
    pool_id = Column(Integer, ForeignKey("quota_pools.id"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenant_units.id"), nullable=True, index=True)
    usage_date = Column(Date, nullable=False, index=True)
    daily_used = Column(Integer, nullable=False, default=0)
    monthly_used = Column(Integer, nullable=False, default=0)
    mandatory_used = Column(Integer, nullable=False, default=0)
    reported_daily = Column(Integer, nullable=True)
    reported_monthly = Column(Integer, nullable=True)
    sync_type = Column(String(50), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    discrepancy_status = Column(String(20), nullable=False, default=DISCREPANCY_NORMAL)
    discrepancy_details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    pool = relationship("QuotaPool")
    tenant = relationship("TenantUnit")
    events = relationship(
        "UsageLedgerEvent",
        back_populates="entry",
        order_by="UsageLedgerEvent.id",
        cascade="save-update, merge",
    )

    @property
    def breakdown(self) -> list[dict]:
        return [event.as_dict() for event in self.events]


class UsageLedgerEvent(Base):
    """Append-only history row of a ledger entry. Rows are never updated."""

    __tablename__ = "usage_ledger_events"

    id = Column(Integer, primary_key=True)
    entry_id = Column(Integer, ForeignKey("usage_ledger.id"), nullable=False, index=True)
    source = Column(String(50), nullable=False)
    delta = Column(Integer, nullable=True)
    payload = Column(JSON, nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    entry = relationship("UsageLedgerEntry", back_populates="events")

    def as_dict(self) -> dict:
        data = {
            "timestamp": self.recorded_at.isoformat() if self.recorded_at else None,
            "type": self.source,
            "count": self.delta,
        }
        data.update(self.payload or {})
        return data


class SyncLog(Base):
    __tablename__ = "sync_logs"
    __table_args__ = (UniqueConstraint("tenant_id", "sync_date", name="uq_sync_log_day"),)

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenant_units.id", ondelete="CASCADE"), nullable=False)
    sync_date = Column(Date, nullable=False)
    sync_count = Column(Integer, nullable=False, default=0)
    sync_type = Column(String(50), nullable=False, default="manual")
    sync_data = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    tenant = relationship("TenantUnit", back_populates="sync_logs")
