"""Subscription lifecycle transitions for App Store notifications.

Each transition is a pure function ``(current, notification, ctx)`` returning
either a :class:`Transition` (the full new record, plus an optional deletion
request) or a :class:`Rejection`. Transitions compute absolute values from the
notification, never relative mutations, so re-applying a redelivered
notification converges to the same record.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable

from app.services.catalog import ProductCatalog
from app.services.notification_decoder import Notification

LIVE_STATUSES = frozenset({"trial", "active", "grace"})
TERMINAL_STATUSES = frozenset({"expired", "cancelled", "revoked"})
# Only a new SUBSCRIBED brings these back
STICKY_STATUSES = frozenset({"cancelled", "revoked"})

DELETION_GRACE_EXPIRE = "grace_expire"
DELETION_REFUND = "refund"
DELETION_REVOKE = "revoke"


@dataclass(frozen=True)
class SubscriptionRecord:
    account_id: str
    original_transaction_id: str
    product_id: str
    tier: str
    status: str
    is_trial_period: bool = False
    auto_renew_status: bool = True
    started_at: datetime | None = None
    expires_at: datetime | None = None
    grace_period_ends_at: datetime | None = None
    canceled_at: datetime | None = None
    deletion_scheduled_at: datetime | None = None
    updated_at: datetime | None = None
    # 0 = not persisted yet
    version: int = 0

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    def same_state(self, other: "SubscriptionRecord | None") -> bool:
        if other is None:
            return False
        return replace(self, updated_at=None, version=0) == replace(other, updated_at=None, version=0)


@dataclass(frozen=True)
class DeletionRequest:
    when: datetime
    deletion_type: str


@dataclass(frozen=True)
class TransitionContext:
    now: datetime
    catalog: ProductCatalog
    grace_period: timedelta = timedelta(days=30)
    deletion_horizon: timedelta = timedelta(days=90)


@dataclass(frozen=True)
class Transition:
    record: SubscriptionRecord
    deletion: DeletionRequest | None = None
    changed: bool = True


@dataclass(frozen=True)
class Rejection:
    code: str
    message: str


TransitionResult = Transition | Rejection
TransitionFn = Callable[[SubscriptionRecord | None, Notification, TransitionContext], TransitionResult]


def _not_found(notification: Notification) -> Rejection:
    tx_id = notification.transaction.original_transaction_id if notification.transaction else None
    return Rejection(
        "SUBSCRIPTION_NOT_FOUND",
        f"{notification.notification_type} para transaccion sin suscripcion: {tx_id}",
    )


def _result(current: SubscriptionRecord, new: SubscriptionRecord, deletion: DeletionRequest | None = None) -> Transition:
    return Transition(record=new, deletion=deletion, changed=not new.same_state(current))


def _unchanged(current: SubscriptionRecord, deletion: DeletionRequest | None = None) -> Transition:
    return Transition(record=current, deletion=deletion, changed=False)


def _latest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def subscribed(current, notification, ctx):
    tx = notification.transaction
    tier = ctx.catalog.resolve_tier(tx.product_id)
    if tier is None:
        return Rejection("UNKNOWN_PRODUCT", f"product_id '{tx.product_id}' no mapeado")

    account_id = tx.app_account_token or (current.account_id if current else None)
    if not account_id:
        return Rejection("ACCOUNT_NOT_RESOLVED", "appAccountToken ausente y sin suscripcion previa")

    new = SubscriptionRecord(
        account_id=account_id,
        original_transaction_id=tx.original_transaction_id,
        product_id=tx.product_id,
        tier=tier,
        status="active",
        is_trial_period=tx.is_trial_period,
        auto_renew_status=True,
        started_at=tx.purchase_date,
        expires_at=tx.expires_date,
        grace_period_ends_at=None,
        canceled_at=None,
        deletion_scheduled_at=None,
        updated_at=current.updated_at if current else None,
        version=current.version if current else 0,
    )
    if current is None:
        return Transition(record=new)
    return _result(current, new)


def did_renew(current, notification, ctx):
    if current is None:
        return _not_found(notification)
    if current.status in STICKY_STATUSES:
        return _unchanged(current)
    new = replace(
        current,
        status="active",
        expires_at=_latest(current.expires_at, notification.transaction.expires_date),
        grace_period_ends_at=None,
    )
    return _result(current, new)


def did_fail_to_renew(current, notification, ctx):
    if current is None:
        return _not_found(notification)
    if current.status in TERMINAL_STATUSES:
        return _unchanged(current)
    base = current.expires_at or notification.transaction.expires_date or ctx.now
    grace_ends = base + ctx.grace_period
    if grace_ends <= ctx.now:
        # Grace window already over by the time the notification arrived
        new = replace(current, status="expired", grace_period_ends_at=None)
    else:
        new = replace(current, status="grace", grace_period_ends_at=grace_ends)
    return _result(current, new)


def expired(current, notification, ctx):
    if current is None:
        return _not_found(notification)
    if current.status in STICKY_STATUSES:
        return _unchanged(current)
    return _result(current, replace(current, status="expired", grace_period_ends_at=None))


def grace_period_expired(current, notification, ctx):
    if current is None:
        return _not_found(notification)
    deletion = DeletionRequest(ctx.now + ctx.deletion_horizon, DELETION_GRACE_EXPIRE)
    status = current.status if current.status in STICKY_STATUSES else "cancelled"
    new = replace(
        current,
        status=status,
        grace_period_ends_at=None,
        deletion_scheduled_at=current.deletion_scheduled_at or deletion.when,
    )
    return _result(current, new, deletion)


def did_change_renewal_status(current, notification, ctx):
    if current is None:
        return _not_found(notification)
    auto_renew = notification.transaction.auto_renew_status
    if auto_renew is None:
        return _unchanged(current)
    return _result(current, replace(current, auto_renew_status=auto_renew))


def _cancel_with_deletion(current, ctx, deletion):
    status = current.status if current.status in STICKY_STATUSES else "cancelled"
    new = replace(
        current,
        status=status,
        grace_period_ends_at=None,
        canceled_at=current.canceled_at or ctx.now,
        deletion_scheduled_at=current.deletion_scheduled_at or deletion.when,
    )
    return _result(current, new, deletion)


def refund(current, notification, ctx):
    if current is None:
        return _not_found(notification)
    return _cancel_with_deletion(current, ctx, DeletionRequest(ctx.now + ctx.deletion_horizon, DELETION_REFUND))


def revoke(current, notification, ctx):
    if current is None:
        return _not_found(notification)
    # Involuntary revocation: data goes right away, not after the horizon
    return _cancel_with_deletion(current, ctx, DeletionRequest(ctx.now, DELETION_REVOKE))


TRANSITIONS: dict[str, TransitionFn] = {
    "SUBSCRIBED": subscribed,
    "DID_RENEW": did_renew,
    "DID_RECOVER": did_renew,
    "DID_FAIL_TO_RENEW": did_fail_to_renew,
    "EXPIRED": expired,
    "GRACE_PERIOD_EXPIRED": grace_period_expired,
    "DID_CHANGE_RENEWAL_STATUS": did_change_renewal_status,
    "REFUND": refund,
    "REVOKE": revoke,
}


def transition_for(notification_type: str) -> TransitionFn | None:
    return TRANSITIONS.get((notification_type or "").upper())
