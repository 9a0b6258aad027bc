import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class DeletionSchedule(Base):
    __tablename__ = "deletion_schedules"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()"))
    account_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, nullable=False)
    scheduled_for: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    deletion_type: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default="scheduled")
    original_transaction_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))
    executed_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        sa.CheckConstraint(
            "deletion_type IN ('grace_expire','revoke','refund')",
            name="ck_deletion_schedules_type",
        ),
        sa.CheckConstraint(
            "status IN ('scheduled','executed','cancelled')",
            name="ck_deletion_schedules_status",
        ),
        sa.Index(
            "uq_deletion_schedules_active_account",
            "account_id",
            unique=True,
            postgresql_where=sa.text("status = 'scheduled'"),
        ),
        sa.Index("ix_deletion_schedules_scheduled", "scheduled_for"),
    )
