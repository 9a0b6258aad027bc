from __future__ import annotations

from datetime import datetime

from app.core.logging import get_logger

logger = get_logger(__name__)

DELETION_TYPES = {"grace_expire", "revoke", "refund"}


def schedule_deletion(
    store,
    *,
    account_id: str,
    when: datetime,
    deletion_type: str,
    original_transaction_id: str | None = None,
) -> bool:
    """Insert the account's pending deletion; False when one is already scheduled.

    The first schedule wins: a later request never moves an existing one, even
    when it is sooner (a REVOKE after a REFUND keeps the 90 day horizon).
    """
    if deletion_type not in DELETION_TYPES:
        raise ValueError(f"deletion_type invalido: {deletion_type!r}")
    created = store.insert_deletion_schedule(
        account_id,
        when,
        deletion_type,
        original_transaction_id=original_transaction_id,
    )
    logger.info(
        "deletion scheduled" if created else "deletion already scheduled",
        extra={
            "extra_data": {
                "account_id": account_id,
                "scheduled_for": when,
                "deletion_type": deletion_type,
                "created": created,
            }
        },
    )
    return created


def cancel_scheduled_deletion(store, *, account_id: str, now: datetime) -> bool:
    cancelled = store.cancel_deletion_schedule(account_id, now=now)
    if cancelled:
        logger.info("deletion schedule cancelled", extra={"extra_data": {"account_id": account_id}})
    return cancelled
