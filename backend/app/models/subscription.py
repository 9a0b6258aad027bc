import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class VaultSubscription(Base):
    __tablename__ = "vault_subscriptions"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()"))
    account_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, nullable=False)
    original_transaction_id: Mapped[str] = mapped_column(sa.Text, nullable=False)
    product_id: Mapped[str] = mapped_column(sa.Text, nullable=False)
    tier: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default="active")
    is_trial_period: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.text("false"))
    auto_renew_status: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.text("true"))
    started_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    expires_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    grace_period_ends_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    canceled_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    deletion_scheduled_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default=sa.text("1"))
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))
    updated_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))

    __table_args__ = (
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
        sa.Index(
            "uq_vault_subscriptions_live_account",
            "account_id",
            unique=True,
            postgresql_where=sa.text("status IN ('trial','active','grace')"),
        ),
        sa.Index("ix_vault_subscriptions_account_status", "account_id", "status"),
    )
