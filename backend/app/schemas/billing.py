from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SubscriptionTier = Literal["lite", "standard", "pro", "addon"]
SubscriptionStatus = Literal["trial", "active", "grace", "expired", "cancelled", "revoked"]
AccountTier = Literal["free", "lite", "standard", "pro", "addon"]
WebhookOutcome = Literal["processed", "unchanged", "ignored", "duplicate", "rejected"]


class WebhookAckOut(BaseModel):
    success: bool = True
    outcome: WebhookOutcome
    duplicate: bool = False
    notification_uuid: str | None = None
    error_code: str | None = None


class HealthOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["healthy", "degraded", "unhealthy"]
    total_notifications: int = Field(alias="totalNotifications")
    failed_notifications: int = Field(alias="failedNotifications")
    success_rate: float = Field(alias="successRate")
    last_notification_at: datetime | None = Field(default=None, alias="lastNotificationAt")
    window_hours: int = Field(alias="windowHours")


class AccountEntitlementOut(BaseModel):
    account_id: str
    tier: AccountTier
    storage_quota_bytes: int
    last_entitlement_sync_at: datetime | None = None


class PendingDeletionOut(BaseModel):
    scheduled_for: datetime
    deletion_type: Literal["grace_expire", "revoke", "refund"]
    original_transaction_id: str | None = None


class SubscriptionOut(BaseModel):
    account_id: str
    original_transaction_id: str
    product_id: str
    tier: SubscriptionTier
    status: SubscriptionStatus
    is_trial_period: bool
    auto_renew_status: bool
    started_at: datetime | None = None
    expires_at: datetime | None = None
    grace_period_ends_at: datetime | None = None
    canceled_at: datetime | None = None
    deletion_scheduled_at: datetime | None = None
    updated_at: datetime | None = None
    version: int


class SubscriptionDetailOut(BaseModel):
    subscription: SubscriptionOut
    entitlement: AccountEntitlementOut | None = None
    pending_deletion: PendingDeletionOut | None = None


class MetricOut(BaseModel):
    name: str
    labels: dict[str, str]
    value: int


class SubscriptionStatsOut(BaseModel):
    by_status: dict[str, int]
    live_by_tier: dict[str, int]
    notifications: list[MetricOut] = Field(default_factory=list)
