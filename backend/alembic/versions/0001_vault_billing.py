"""vault billing reconciliation tables

Revision ID: 0001_vault_billing
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_vault_billing"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "vault_subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("original_transaction_id", sa.Text(), nullable=False),
        sa.Column("product_id", sa.Text(), nullable=False),
        sa.Column("tier", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        sa.Column("is_trial_period", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("auto_renew_status", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("grace_period_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deletion_scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("tier IN ('lite','standard','pro','addon')", name="ck_vault_subscriptions_tier"),
        sa.CheckConstraint(
            "status IN ('trial','active','grace','expired','cancelled','revoked')",
            name="ck_vault_subscriptions_status",
        ),
        sa.CheckConstraint(
            "status <> 'grace' OR grace_period_ends_at IS NOT NULL",
            name="ck_vault_subscriptions_grace_has_end",
        ),
        sa.UniqueConstraint("original_transaction_id", name="uq_vault_subscriptions_original_tx"),
    )
    op.create_index(
        "uq_vault_subscriptions_live_account",
        "vault_subscriptions",
        ["account_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('trial','active','grace')"),
    )
    op.create_index("ix_vault_subscriptions_account_status", "vault_subscriptions", ["account_id", "status"])

    op.create_table(
        "account_entitlements",
        sa.Column("account_id", sa.Uuid(), primary_key=True),
        sa.Column("tier", sa.Text(), nullable=False, server_default="free"),
        sa.Column("storage_quota_bytes", sa.BigInteger(), nullable=False),
        sa.Column("last_entitlement_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("tier IN ('free','lite','standard','pro','addon')", name="ck_account_entitlements_tier"),
    )
    op.create_index("ix_account_entitlements_tier", "account_entitlements", ["tier"])

    op.create_table(
        "app_store_notifications",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("notification_uuid", sa.Text(), nullable=False),
        sa.Column("notification_type", sa.Text(), nullable=True),
        sa.Column("subtype", sa.Text(), nullable=True),
        sa.Column("original_transaction_id", sa.Text(), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("processing_status", sa.Text(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "processing_status IN ('success','failed')",
            name="ck_app_store_notifications_processing_status",
        ),
        sa.UniqueConstraint("notification_uuid", name="uq_app_store_notifications_uuid"),
    )
    op.create_index("ix_app_store_notifications_received", "app_store_notifications", [sa.text("received_at DESC")])
    op.create_index("ix_app_store_notifications_original_tx", "app_store_notifications", ["original_transaction_id"])

    op.create_table(
        "deletion_schedules",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deletion_type", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="scheduled"),
        sa.Column("original_transaction_id", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "deletion_type IN ('grace_expire','revoke','refund')",
            name="ck_deletion_schedules_type",
        ),
        sa.CheckConstraint(
            "status IN ('scheduled','executed','cancelled')",
            name="ck_deletion_schedules_status",
        ),
    )
    op.create_index(
        "uq_deletion_schedules_active_account",
        "deletion_schedules",
        ["account_id"],
        unique=True,
        postgresql_where=sa.text("status = 'scheduled'"),
    )
    op.create_index("ix_deletion_schedules_scheduled", "deletion_schedules", ["scheduled_for"])


def downgrade():
    op.drop_index("ix_deletion_schedules_scheduled", table_name="deletion_schedules")
    op.drop_index("uq_deletion_schedules_active_account", table_name="deletion_schedules")
    op.drop_table("deletion_schedules")

    op.drop_index("ix_app_store_notifications_original_tx", table_name="app_store_notifications")
    op.drop_index("ix_app_store_notifications_received", table_name="app_store_notifications")
    op.drop_table("app_store_notifications")

    op.drop_index("ix_account_entitlements_tier", table_name="account_entitlements")
    op.drop_table("account_entitlements")

    op.drop_index("ix_vault_subscriptions_account_status", table_name="vault_subscriptions")
    op.drop_index("uq_vault_subscriptions_live_account", table_name="vault_subscriptions")
    op.drop_table("vault_subscriptions")
