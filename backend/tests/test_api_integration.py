from __future__ import annotations

import os

import pytest

from tests.testkit import ApiError


def test_liveness(api):
    assert api.call("GET", "/health") == {"ok": True}


def test_webhook_rejects_garbage_payload(api):
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/webhooks/app-store", body={"signedPayload": "garbage"})
    assert exc.value.status_code == 400


def test_webhook_requires_payload(api):
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/webhooks/app-store", body={})
    assert exc.value.status_code == 400


def test_admin_health_requires_token(api):
    with pytest.raises(ApiError) as exc:
        api.call("GET", "/admin/billing/health", headers={"X-Admin-Token": "definitely-wrong"})
    assert exc.value.status_code in (401, 503)


def test_admin_health_with_token(api):
    token = os.getenv("TEST_ADMIN_TOKEN")
    if not token:
        pytest.skip("Define TEST_ADMIN_TOKEN para consultar el health admin.")
    out = api.call("GET", "/admin/billing/health", headers={"X-Admin-Token": token})
    assert out["status"] in ("healthy", "degraded", "unhealthy")
    assert set(out) >= {"totalNotifications", "failedNotifications", "successRate", "lastNotificationAt"}


def test_admin_unknown_subscription(api, identity_factory):
    token = os.getenv("TEST_ADMIN_TOKEN")
    if not token:
        pytest.skip("Define TEST_ADMIN_TOKEN para consultar suscripciones.")
    with pytest.raises(ApiError) as exc:
        api.call(
            "GET",
            f"/admin/billing/subscriptions/{identity_factory.next_transaction_id()}",
            headers={"X-Admin-Token": token},
        )
    assert exc.value.status_code == 404
