from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest

from app.services.deletion_scheduler import cancel_scheduled_deletion, schedule_deletion
from tests.testkit import NOW


def test_schedule_is_single_flight(store):
    account = str(uuid4())
    assert schedule_deletion(store, account_id=account, when=NOW + timedelta(days=90), deletion_type="grace_expire") is True
    assert schedule_deletion(store, account_id=account, when=NOW + timedelta(days=90), deletion_type="grace_expire") is False
    assert len(store.deletions) == 1


def test_later_revoke_does_not_shorten_pending_refund(store):
    account = str(uuid4())
    schedule_deletion(store, account_id=account, when=NOW + timedelta(days=90), deletion_type="refund")
    assert schedule_deletion(store, account_id=account, when=NOW, deletion_type="revoke") is False
    pending = store.get_pending_deletion(account)
    assert pending["deletion_type"] == "refund"
    assert pending["scheduled_for"] == NOW + timedelta(days=90)


def test_schedules_are_per_account(store):
    assert schedule_deletion(store, account_id=str(uuid4()), when=NOW, deletion_type="revoke") is True
    assert schedule_deletion(store, account_id=str(uuid4()), when=NOW, deletion_type="revoke") is True
    assert len(store.deletions) == 2


def test_unknown_deletion_type(store):
    with pytest.raises(ValueError):
        schedule_deletion(store, account_id=str(uuid4()), when=NOW, deletion_type="manual")


def test_cancel_allows_a_new_schedule(store):
    account = str(uuid4())
    schedule_deletion(store, account_id=account, when=NOW, deletion_type="revoke")
    assert cancel_scheduled_deletion(store, account_id=account, now=NOW) is True
    assert cancel_scheduled_deletion(store, account_id=account, now=NOW) is False
    assert schedule_deletion(store, account_id=account, when=NOW, deletion_type="refund") is True
