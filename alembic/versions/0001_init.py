"""init

Revision ID: 0001_init
Revises:
Create Date: 2025-01-01 00:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "quota_pools",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("api_key", sa.String(length=255), nullable=True),
        sa.Column("daily_capacity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cycle_capacity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_quota_pools_id", "quota_pools", ["id"], unique=False)

    op.create_table(
        "tenant_units",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("pool_id", sa.Integer(), nullable=False),
        sa.Column("daily_capacity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cycle_capacity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mandatory_daily_quota", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_sync_per_day", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["pool_id"], ["quota_pools.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tenant_units_id", "tenant_units", ["id"], unique=False)
    op.create_index("ix_tenant_units_code", "tenant_units", ["code"], unique=True)
    op.create_index("ix_tenant_units_pool_id", "tenant_units", ["pool_id"], unique=False)

    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("pool_id", sa.Integer(), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("email_count", sa.Integer(), nullable=False),
        sa.Column("campaign_type", sa.String(length=50), nullable=False, server_default="regular"),
        sa.Column("status", sa.String(length=50), nullable=False, server_default="pending"),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenant_units.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["pool_id"], ["quota_pools.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reservations_pool_date", "reservations", ["pool_id", "scheduled_date"], unique=False)
    op.create_index("ix_reservations_tenant_date", "reservations", ["tenant_id", "scheduled_date"], unique=False)

    op.create_table(
        "capacity_slots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("pool_id", sa.Integer(), nullable=False),
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["pool_id"], ["quota_pools.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pool_id", "slot_date", name="uq_capacity_slot"),
    )

    op.create_table(
        "usage_ledger",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("pool_id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=True),
        sa.Column("usage_date", sa.Date(), nullable=False),
        sa.Column("daily_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("monthly_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mandatory_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reported_daily", sa.Integer(), nullable=True),
        sa.Column("reported_monthly", sa.Integer(), nullable=True),
        sa.Column("sync_type", sa.String(length=50), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("discrepancy_status", sa.String(length=20), nullable=False, server_default="normal"),
        sa.Column("discrepancy_details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["pool_id"], ["quota_pools.id"]),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenant_units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pool_id", "tenant_id", "usage_date", name="uq_usage_ledger_key"),
    )
    op.create_index("ix_usage_ledger_pool_id", "usage_ledger", ["pool_id"], unique=False)
    op.create_index("ix_usage_ledger_tenant_id", "usage_ledger", ["tenant_id"], unique=False)
    op.create_index("ix_usage_ledger_usage_date", "usage_ledger", ["usage_date"], unique=False)
    op.create_index(
        "uq_usage_ledger_pool_day",
        "usage_ledger",
        ["pool_id", "usage_date"],
        unique=True,
        postgresql_where=sa.text("tenant_id IS NULL"),
        sqlite_where=sa.text("tenant_id IS NULL"),
    )

    op.create_table(
        "usage_ledger_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entry_id", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(length=50), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["usage_ledger.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_usage_ledger_events_entry_id", "usage_ledger_events", ["entry_id"], unique=False)

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("sync_date", sa.Date(), nullable=False),
        sa.Column("sync_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sync_type", sa.String(length=50), nullable=False, server_default="manual"),
        sa.Column("sync_data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenant_units.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "sync_date", name="uq_sync_log_day"),
    )


def downgrade():
    op.drop_table("sync_logs")
    op.drop_index("ix_usage_ledger_events_entry_id", table_name="usage_ledger_events")
    op.drop_table("usage_ledger_events")
    op.drop_index("uq_usage_ledger_pool_day", table_name="usage_ledger")
    op.drop_index("ix_usage_ledger_usage_date", table_name="usage_ledger")
    op.drop_index("ix_usage_ledger_tenant_id", table_name="usage_ledger")
    op.drop_index("ix_usage_ledger_pool_id", table_name="usage_ledger")
    op.drop_table("usage_ledger")
    op.drop_table("capacity_slots")
    op.drop_index("ix_reservations_tenant_date", table_name="reservations")
    op.drop_index("ix_reservations_pool_date", table_name="reservations")
    op.drop_table("reservations")
    op.drop_index("ix_tenant_units_pool_id", table_name="tenant_units")
    op.drop_index("ix_tenant_units_code", table_name="tenant_units")
    op.drop_index("ix_tenant_units_id", table_name="tenant_units")
    op.drop_table("tenant_units")
    op.drop_index("ix_quota_pools_id", table_name="quota_pools")
    op.drop_table("quota_pools")
