import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class AppStoreNotification(Base):
    __tablename__ = "app_store_notifications"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()"))
    notification_uuid: Mapped[str] = mapped_column(sa.Text, nullable=False)
    notification_type: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    subtype: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    original_transaction_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    raw_payload: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default=sa.text("'{}'::jsonb"))
    processing_status: Mapped[str] = mapped_column(sa.Text, nullable=False)
    error_message: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    received_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))

    __table_args__ = (
        sa.CheckConstraint(
            "processing_status IN ('success','failed')",
            name="ck_app_store_notifications_processing_status",
        ),
        sa.UniqueConstraint("notification_uuid", name="uq_app_store_notifications_uuid"),
        sa.Index("ix_app_store_notifications_received", sa.text("received_at DESC")),
        sa.Index("ix_app_store_notifications_original_tx", "original_transaction_id"),
    )
