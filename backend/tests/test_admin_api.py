from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest

from app.core.config import settings
from tests.testkit import NOW

ADMIN = {"X-Admin-Token": "admin-secret"}


@pytest.fixture
def admin_token(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_TOKEN", "admin-secret")


def _subscribe(client, signer, *, tx_id="T1", account=None) -> str:
    account = account or str(uuid4())
    tx = signer.transaction(
        original_transaction_id=tx_id,
        app_account_token=account,
        expires_date=NOW + timedelta(days=30),
    )
    r = client.post("/webhooks/app-store", json={"signedPayload": signer.notification("SUBSCRIBED", transaction=tx)})
    assert r.status_code == 200
    return account


def test_missing_admin_token_fails_closed_outside_dev(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_TOKEN", None)
    r = client.get("/admin/billing/health")
    assert r.status_code == 503


def test_missing_admin_token_is_allowed_in_dev(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_TOKEN", None)
    monkeypatch.setattr(settings, "ENV", "dev")
    r = client.get("/admin/billing/health")
    assert r.status_code == 200


def test_wrong_admin_token(client, admin_token):
    r = client.get("/admin/billing/health", headers={"X-Admin-Token": "nope"})
    assert r.status_code == 401
    r = client.get("/admin/billing/health")
    assert r.status_code == 401


def test_admin_ip_allowlist(client, admin_token, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_IP_ALLOWLIST", "10.0.0.0/8")
    r = client.get("/admin/billing/health", headers=ADMIN)
    assert r.status_code == 403
    r = client.get("/admin/billing/health", headers={**ADMIN, "x-forwarded-for": "10.9.9.9"})
    assert r.status_code == 403


def test_admin_allowlist_cannot_be_spoofed_when_token_is_unset(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_TOKEN", None)
    monkeypatch.setattr(settings, "ENV", "dev")
    monkeypatch.setattr(settings, "ADMIN_IP_ALLOWLIST", "10.0.0.0/8")
    r = client.get("/admin/billing/health", headers={"x-forwarded-for": "10.9.9.9"})
    assert r.status_code == 403


def test_health_payload(client, signer, admin_token):
    _subscribe(client, signer)
    tx = signer.transaction(original_transaction_id="T404")
    client.post("/webhooks/app-store", json={"signedPayload": signer.notification("DID_RENEW", transaction=tx)})

    r = client.get("/admin/billing/health", headers=ADMIN)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "degraded"
    assert body["totalNotifications"] == 2
    assert body["failedNotifications"] == 1
    assert body["successRate"] == 50.0
    assert body["lastNotificationAt"] is not None
    assert body["windowHours"] == 24


def test_health_unhealthy_when_store_fails(client, store, admin_token):
    store.fail_on.add("notification_stats")
    r = client.get("/admin/billing/health", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["status"] == "unhealthy"


def test_subscription_detail(client, signer, admin_token):
    account = _subscribe(client, signer)
    r = client.get("/admin/billing/subscriptions/T1", headers=ADMIN)
    assert r.status_code == 200
    body = r.json()
    assert body["subscription"]["status"] == "active"
    assert body["subscription"]["tier"] == "standard"
    assert body["entitlement"]["account_id"] == account
    assert body["entitlement"]["tier"] == "standard"
    assert body["pending_deletion"] is None


def test_subscription_detail_not_found(client, admin_token):
    r = client.get("/admin/billing/subscriptions/nope", headers=ADMIN)
    assert r.status_code == 404


def test_subscription_stats(client, signer, admin_token):
    _subscribe(client, signer, tx_id="T1")
    _subscribe(client, signer, tx_id="T2")
    tx = signer.transaction(original_transaction_id="T2")
    client.post("/webhooks/app-store", json={"signedPayload": signer.notification("EXPIRED", transaction=tx)})

    r = client.get("/admin/billing/subscriptions/stats", headers=ADMIN)
    assert r.status_code == 200
    body = r.json()
    assert body["by_status"] == {"active": 1, "expired": 1}
    assert body["live_by_tier"] == {"standard": 1}
    processed = [m for m in body["notifications"] if m["labels"] == {"outcome": "processed", "type": "SUBSCRIBED"}]
    assert processed[0]["value"] == 2
