from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from app.core.logging import get_logger

logger = get_logger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class NotificationAudit:
    notification_uuid: str
    notification_type: str | None
    subtype: str | None
    original_transaction_id: str | None
    processing_status: str
    error_message: str | None
    received_at: datetime
    raw_payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class HealthReport:
    status: str
    total_notifications: int
    failed_notifications: int
    success_rate: float
    last_notification_at: datetime | None = None


def record_notification(
    store,
    *,
    notification_uuid: str,
    notification_type: str | None,
    subtype: str | None,
    original_transaction_id: str | None,
    raw_payload: dict | None,
    status: str,
    received_at: datetime,
    error: str | None = None,
) -> NotificationAudit:
    if status not in (STATUS_SUCCESS, STATUS_FAILED):
        raise ValueError(f"processing_status invalido: {status!r}")
    row = NotificationAudit(
        notification_uuid=notification_uuid,
        notification_type=notification_type,
        subtype=subtype,
        original_transaction_id=original_transaction_id,
        processing_status=status,
        error_message=(error[:1000] if error else None),
        received_at=received_at,
        raw_payload=raw_payload or {},
    )
    store.append_notification_audit(row)
    return row


def health_status(store, *, now: datetime, window_hours: int = 24, threshold: float = 95.0) -> HealthReport:
    """Rolling success rate over the trailing window.

    No notifications in the window counts as 100%. Any failure reading the
    audit table is reported as ``unhealthy`` instead of raising.
    """
    try:
        stats = store.notification_stats(now - timedelta(hours=window_hours))
    except Exception:
        logger.exception("appstore health query failed")
        return HealthReport(status="unhealthy", total_notifications=0, failed_notifications=0, success_rate=0.0)

    total = int(stats.get("total") or 0)
    failed = int(stats.get("failed") or 0)
    rate = round((total - failed) / total * 100, 2) if total else 100.0
    return HealthReport(
        status="healthy" if rate >= threshold else "degraded",
        total_notifications=total,
        failed_notifications=failed,
        success_rate=rate,
        last_notification_at=stats.get("last_notification_at"),
    )
