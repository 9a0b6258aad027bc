from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

import pytest

from app.services.subscription_machine import (
    TRANSITIONS,
    Rejection,
    SubscriptionRecord,
    Transition,
    TransitionContext,
    transition_for,
)
from tests.testkit import NOW, STANDARD_PRODUCT, make_notification

ACCOUNT = str(uuid4())


@pytest.fixture
def ctx(catalog) -> TransitionContext:
    return TransitionContext(now=NOW, catalog=catalog)


def _record(**overrides) -> SubscriptionRecord:
    base = SubscriptionRecord(
        account_id=ACCOUNT,
        original_transaction_id="1000000001",
        product_id=STANDARD_PRODUCT,
        tier="standard",
        status="active",
        started_at=NOW - timedelta(days=30),
        expires_at=NOW + timedelta(days=5),
        version=3,
    )
    return replace(base, **overrides)


def _apply(notification_type: str, current, ctx, **tx):
    return TRANSITIONS[notification_type](current, make_notification(notification_type, **tx), ctx)


def test_registry_covers_handled_types():
    assert set(TRANSITIONS) == {
        "SUBSCRIBED",
        "DID_RENEW",
        "DID_RECOVER",
        "DID_FAIL_TO_RENEW",
        "EXPIRED",
        "GRACE_PERIOD_EXPIRED",
        "DID_CHANGE_RENEWAL_STATUS",
        "REFUND",
        "REVOKE",
    }
    assert transition_for("did_renew") is TRANSITIONS["DID_RENEW"]
    assert transition_for("PRICE_INCREASE") is None


def test_subscribed_creates_active_record(ctx):
    result = _apply("SUBSCRIBED", None, ctx, app_account_token=ACCOUNT, is_trial_period=True)
    assert isinstance(result, Transition)
    record = result.record
    assert record.status == "active"
    assert record.tier == "standard"
    assert record.account_id == ACCOUNT
    assert record.auto_renew_status is True
    assert record.is_trial_period is True
    assert record.started_at == NOW
    assert record.expires_at == NOW + timedelta(days=30)
    assert record.version == 0
    assert result.deletion is None


def test_subscribed_unknown_product_is_rejected(ctx):
    result = _apply("SUBSCRIBED", None, ctx, app_account_token=ACCOUNT, product_id="com.example.vault.gold")
    assert result == Rejection("UNKNOWN_PRODUCT", result.message)


def test_subscribed_without_account_is_rejected(ctx):
    result = _apply("SUBSCRIBED", None, ctx)
    assert isinstance(result, Rejection)
    assert result.code == "ACCOUNT_NOT_RESOLVED"


def test_subscribed_falls_back_to_existing_account(ctx):
    current = _record(status="expired")
    result = _apply("SUBSCRIBED", current, ctx)
    assert result.record.account_id == ACCOUNT
    assert result.record.status == "active"
    assert result.record.version == current.version


def test_subscribed_is_idempotent(ctx):
    first = _apply("SUBSCRIBED", None, ctx, app_account_token=ACCOUNT).record
    persisted = replace(first, version=1, updated_at=NOW)
    again = _apply("SUBSCRIBED", persisted, ctx, app_account_token=ACCOUNT)
    assert again.changed is False
    assert again.record.same_state(persisted)


def test_subscribed_reactivates_cancelled_subscription(ctx):
    current = _record(status="cancelled", canceled_at=NOW - timedelta(days=1), deletion_scheduled_at=NOW + timedelta(days=89))
    result = _apply("SUBSCRIBED", current, ctx, app_account_token=ACCOUNT)
    assert result.record.status == "active"
    assert result.record.canceled_at is None
    assert result.record.deletion_scheduled_at is None


@pytest.mark.parametrize("notification_type", ["DID_RENEW", "DID_RECOVER"])
def test_renew_advances_expiry_and_clears_grace(ctx, notification_type):
    current = _record(status="grace", grace_period_ends_at=NOW + timedelta(days=20))
    result = _apply(notification_type, current, ctx, expires_date=NOW + timedelta(days=35))
    assert result.record.status == "active"
    assert result.record.expires_at == NOW + timedelta(days=35)
    assert result.record.grace_period_ends_at is None


def test_renew_never_moves_expiry_backwards(ctx):
    current = _record(expires_at=NOW + timedelta(days=40))
    result = _apply("DID_RENEW", current, ctx, expires_date=NOW + timedelta(days=10))
    assert result.record.expires_at == NOW + timedelta(days=40)


@pytest.mark.parametrize(
    "notification_type",
    ["DID_RENEW", "DID_RECOVER", "DID_FAIL_TO_RENEW", "EXPIRED", "GRACE_PERIOD_EXPIRED", "DID_CHANGE_RENEWAL_STATUS", "REFUND", "REVOKE"],
)
def test_transitions_require_existing_subscription(ctx, notification_type):
    result = _apply(notification_type, None, ctx)
    assert isinstance(result, Rejection)
    assert result.code == "SUBSCRIPTION_NOT_FOUND"


@pytest.mark.parametrize("status", ["cancelled", "revoked"])
@pytest.mark.parametrize("notification_type", ["DID_RENEW", "DID_FAIL_TO_RENEW", "EXPIRED"])
def test_cancelled_and_revoked_are_sticky(ctx, status, notification_type):
    current = _record(status=status)
    result = _apply(notification_type, current, ctx, expires_date=NOW + timedelta(days=60))
    assert result.changed is False
    assert result.record.status == status


def test_fail_to_renew_enters_grace_from_previous_expiry(ctx):
    current = _record(expires_at=NOW - timedelta(days=1))
    result = _apply("DID_FAIL_TO_RENEW", current, ctx)
    assert result.record.status == "grace"
    assert result.record.grace_period_ends_at == NOW - timedelta(days=1) + timedelta(days=30)


def test_fail_to_renew_past_grace_window_expires(ctx):
    current = _record(expires_at=NOW - timedelta(days=31))
    result = _apply("DID_FAIL_TO_RENEW", current, ctx)
    assert result.record.status == "expired"
    assert result.record.grace_period_ends_at is None


def test_fail_to_renew_does_not_revive_expired(ctx):
    current = _record(status="expired")
    assert _apply("DID_FAIL_TO_RENEW", current, ctx).changed is False


def test_expired_is_terminal(ctx):
    current = _record(status="grace", grace_period_ends_at=NOW + timedelta(days=3))
    result = _apply("EXPIRED", current, ctx)
    assert result.record.status == "expired"
    assert result.record.grace_period_ends_at is None


def test_grace_period_expired_cancels_and_schedules_deletion(ctx):
    current = _record(status="grace", grace_period_ends_at=NOW)
    result = _apply("GRACE_PERIOD_EXPIRED", current, ctx)
    assert result.record.status == "cancelled"
    assert result.deletion.deletion_type == "grace_expire"
    assert result.deletion.when == NOW + timedelta(days=90)
    assert result.record.deletion_scheduled_at == NOW + timedelta(days=90)


def test_change_renewal_status_keeps_status(ctx):
    current = _record(status="grace", grace_period_ends_at=NOW + timedelta(days=3))
    result = _apply("DID_CHANGE_RENEWAL_STATUS", current, ctx, auto_renew_status=False)
    assert result.record.status == "grace"
    assert result.record.auto_renew_status is False


def test_change_renewal_status_without_value_is_noop(ctx):
    current = _record()
    assert _apply("DID_CHANGE_RENEWAL_STATUS", current, ctx).changed is False


def test_refund_schedules_deletion_after_horizon(ctx):
    result = _apply("REFUND", _record(), ctx)
    assert result.record.status == "cancelled"
    assert result.record.canceled_at == NOW
    assert result.deletion.deletion_type == "refund"
    assert result.deletion.when == NOW + timedelta(days=90)


def test_revoke_schedules_immediate_deletion(ctx):
    result = _apply("REVOKE", _record(), ctx)
    assert result.record.status == "cancelled"
    assert result.deletion.deletion_type == "revoke"
    assert result.deletion.when == NOW


def test_refund_keeps_original_cancellation_time(ctx):
    earlier = NOW - timedelta(days=2)
    result = _apply("REFUND", _record(status="cancelled", canceled_at=earlier), ctx)
    assert result.record.canceled_at == earlier


def test_custom_grace_and_horizon(catalog):
    ctx = TransitionContext(now=NOW, catalog=catalog, grace_period=timedelta(days=3), deletion_horizon=timedelta(days=7))
    grace = _apply("DID_FAIL_TO_RENEW", _record(expires_at=NOW), ctx)
    assert grace.record.grace_period_ends_at == NOW + timedelta(days=3)
    refund = _apply("REFUND", _record(), ctx)
    assert refund.deletion.when == NOW + timedelta(days=7)
