import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class AccountEntitlement(Base):
    __tablename__ = "account_entitlements"

    account_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True)
    tier: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default="free")
    storage_quota_bytes: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    last_entitlement_sync_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))
    updated_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))

    __table_args__ = (
        sa.CheckConstraint("tier IN ('free','lite','standard','pro','addon')", name="ck_account_entitlements_tier"),
        sa.Index("ix_account_entitlements_tier", "tier"),
    )
