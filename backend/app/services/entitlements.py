from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from app.core.config import Settings, settings
from app.core.logging import get_logger
from app.services.subscription_machine import LIVE_STATUSES, SubscriptionRecord

logger = get_logger(__name__)

FREE_TIER = "free"


@dataclass(frozen=True)
class EntitlementSync:
    account_id: str
    tier: str
    storage_quota_bytes: int


def quota_table(cfg: Settings = settings) -> dict[str, int]:
    return {
        FREE_TIER: cfg.STORAGE_QUOTA_FREE_BYTES,
        "lite": cfg.STORAGE_QUOTA_LITE_BYTES,
        "standard": cfg.STORAGE_QUOTA_STANDARD_BYTES,
        "pro": cfg.STORAGE_QUOTA_PRO_BYTES,
        "addon": cfg.STORAGE_QUOTA_ADDON_BYTES,
    }


def effective_tier(tier: str, status: str) -> str:
    if status in LIVE_STATUSES:
        return tier
    return FREE_TIER


def sync_entitlement(
    store,
    *,
    account_id: str,
    tier: str,
    status: str,
    now: datetime,
    quotas: dict[str, int] | None = None,
) -> EntitlementSync:
    """Write the account's tier label and storage ceiling.

    Only the ceiling is written; shrinking it below current usage is allowed
    here, uploads are refused at write time by the storage accounting service.
    """
    table = quotas or quota_table()
    resolved = effective_tier(tier, status)
    quota = table[resolved]
    store.update_account_entitlement(account_id, resolved, quota, now=now)
    logger.info(
        "entitlement synced",
        extra={"extra_data": {"account_id": account_id, "tier": resolved, "storage_quota_bytes": quota}},
    )
    return EntitlementSync(account_id=account_id, tier=resolved, storage_quota_bytes=quota)


def project_account(
    store,
    *,
    record: SubscriptionRecord,
    now: datetime,
    quotas: dict[str, int] | None = None,
) -> EntitlementSync:
    # A terminal subscription does not downgrade an account that still has another live one
    source = record
    if not record.is_live:
        live = store.get_live_subscription(record.account_id, exclude_transaction_id=record.original_transaction_id)
        if live is not None:
            source = live
    return sync_entitlement(
        store,
        account_id=record.account_id,
        tier=source.tier,
        status=source.status,
        now=now,
        quotas=quotas,
    )
