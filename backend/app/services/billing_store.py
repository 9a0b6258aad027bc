from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Protocol

import sqlalchemy as sa
from sqlalchemy.orm import Session

from app.services.audit import NotificationAudit
from app.services.subscription_machine import SubscriptionRecord


class BillingStore(Protocol):
    def get_subscription(self, original_transaction_id: str) -> SubscriptionRecord | None:
        ...

    def get_account_by_transaction_id(self, original_transaction_id: str) -> str | None:
        ...

    def get_live_subscription(self, account_id: str, *, exclude_transaction_id: str | None = None) -> SubscriptionRecord | None:
        ...

    def upsert_subscription(self, record: SubscriptionRecord, *, expected_version: int, now: datetime) -> SubscriptionRecord | None:
        """Compare-and-set write. None when the row moved past ``expected_version``."""
        ...

    def expire_other_live_subscriptions(self, account_id: str, *, keep_transaction_id: str, now: datetime) -> int:
        ...

    def update_account_entitlement(self, account_id: str, tier: str, quota_bytes: int, *, now: datetime) -> None:
        ...

    def get_account_entitlement(self, account_id: str) -> dict | None:
        ...

    def insert_deletion_schedule(
        self,
        account_id: str,
        when: datetime,
        deletion_type: str,
        *,
        original_transaction_id: str | None = None,
    ) -> bool:
        ...

    def cancel_deletion_schedule(self, account_id: str, *, now: datetime) -> bool:
        ...

    def get_pending_deletion(self, account_id: str) -> dict | None:
        ...

    def append_notification_audit(self, row: NotificationAudit) -> None:
        ...

    def notification_stats(self, since: datetime) -> dict:
        ...

    def subscription_counts(self) -> dict:
        ...

    def savepoint(self):
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


_SUBSCRIPTION_COLUMNS = """
    account_id::text AS account_id,
    original_transaction_id,
    product_id,
    tier,
    status,
    is_trial_period,
    auto_renew_status,
    started_at,
    expires_at,
    grace_period_ends_at,
    canceled_at,
    deletion_scheduled_at,
    updated_at,
    version
"""


def _to_record(row) -> SubscriptionRecord | None:
    if not row:
        return None
    return SubscriptionRecord(**dict(row))


def _record_params(record: SubscriptionRecord) -> dict:
    return {
        "a": record.account_id,
        "tx": record.original_transaction_id,
        "product_id": record.product_id,
        "tier": record.tier,
        "status": record.status,
        "is_trial": record.is_trial_period,
        "auto_renew": record.auto_renew_status,
        "started_at": record.started_at,
        "expires_at": record.expires_at,
        "grace_ends": record.grace_period_ends_at,
        "canceled_at": record.canceled_at,
        "deletion_at": record.deletion_scheduled_at,
    }


class SqlBillingStore:
    """PostgreSQL implementation over a request-scoped Session."""

    def __init__(self, db: Session):
        self.db = db

    def get_subscription(self, original_transaction_id: str) -> SubscriptionRecord | None:
        row = self.db.execute(
            sa.text(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM vault_subscriptions
                WHERE original_transaction_id=:tx
                """
            ),
            {"tx": original_transaction_id},
        ).mappings().first()
        return _to_record(row)

    def get_account_by_transaction_id(self, original_transaction_id: str) -> str | None:
        return self.db.execute(
            sa.text(
                """
                SELECT account_id::text
                FROM vault_subscriptions
                WHERE original_transaction_id=:tx
                """
            ),
            {"tx": original_transaction_id},
        ).scalar()

    def get_live_subscription(self, account_id: str, *, exclude_transaction_id: str | None = None) -> SubscriptionRecord | None:
        row = self.db.execute(
            sa.text(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM vault_subscriptions
                WHERE account_id=:a
                  AND status IN ('trial','active','grace')
                  AND (CAST(:exclude AS text) IS NULL OR original_transaction_id <> :exclude)
                ORDER BY updated_at DESC
                LIMIT 1
                """
            ),
            {"a": account_id, "exclude": exclude_transaction_id},
        ).mappings().first()
        return _to_record(row)

    def upsert_subscription(self, record: SubscriptionRecord, *, expected_version: int, now: datetime) -> SubscriptionRecord | None:
        params = _record_params(record) | {"now": now}
        if expected_version == 0:
            row = self.db.execute(
                sa.text(
                    f"""
                    INSERT INTO vault_subscriptions (
                        account_id,
                        original_transaction_id,
                        product_id,
                        tier,
                        status,
                        is_trial_period,
                        auto_renew_status,
                        started_at,
                        expires_at,
                        grace_period_ends_at,
                        canceled_at,
                        deletion_scheduled_at,
                        version,
                        created_at,
                        updated_at
                    )
                    VALUES (
                        :a,
                        :tx,
                        :product_id,
                        :tier,
                        :status,
                        :is_trial,
                        :auto_renew,
                        :started_at,
                        :expires_at,
                        :grace_ends,
                        :canceled_at,
                        :deletion_at,
                        1,
                        :now,
                        :now
                    )
                    ON CONFLICT (original_transaction_id) DO NOTHING
                    RETURNING {_SUBSCRIPTION_COLUMNS}
                    """
                ),
                params,
            ).mappings().first()
            return _to_record(row)

        row = self.db.execute(
            sa.text(
                f"""
                UPDATE vault_subscriptions
                SET account_id=:a,
                    product_id=:product_id,
                    tier=:tier,
                    status=:status,
                    is_trial_period=:is_trial,
                    auto_renew_status=:auto_renew,
                    started_at=:started_at,
                    expires_at=:expires_at,
                    grace_period_ends_at=:grace_ends,
                    canceled_at=:canceled_at,
                    deletion_scheduled_at=:deletion_at,
                    version=version + 1,
                    updated_at=:now
                WHERE original_transaction_id=:tx
                  AND version=:v
                RETURNING {_SUBSCRIPTION_COLUMNS}
                """
            ),
            params | {"v": expected_version},
        ).mappings().first()
        return _to_record(row)

    def expire_other_live_subscriptions(self, account_id: str, *, keep_transaction_id: str, now: datetime) -> int:
        result = self.db.execute(
            sa.text(
                """
                UPDATE vault_subscriptions
                SET status='expired',
                    grace_period_ends_at=NULL,
                    version=version + 1,
                    updated_at=:now
                WHERE account_id=:a
                  AND original_transaction_id <> :tx
                  AND status IN ('trial','active','grace')
                """
            ),
            {"a": account_id, "tx": keep_transaction_id, "now": now},
        )
        return int(result.rowcount or 0)

    def update_account_entitlement(self, account_id: str, tier: str, quota_bytes: int, *, now: datetime) -> None:
        self.db.execute(
            sa.text(
                """
                INSERT INTO account_entitlements (account_id, tier, storage_quota_bytes, last_entitlement_sync_at)
                VALUES (:a, :tier, :quota, :now)
                ON CONFLICT (account_id) DO UPDATE
                SET tier=:tier,
                    storage_quota_bytes=:quota,
                    last_entitlement_sync_at=:now,
                    updated_at=now()
                """
            ),
            {"a": account_id, "tier": tier, "quota": quota_bytes, "now": now},
        )

    def get_account_entitlement(self, account_id: str) -> dict | None:
        row = self.db.execute(
            sa.text(
                """
                SELECT
                    account_id::text AS account_id,
                    tier,
                    storage_quota_bytes,
                    last_entitlement_sync_at
                FROM account_entitlements
                WHERE account_id=:a
                """
            ),
            {"a": account_id},
        ).mappings().first()
        return dict(row) if row else None

    def insert_deletion_schedule(
        self,
        account_id: str,
        when: datetime,
        deletion_type: str,
        *,
        original_transaction_id: str | None = None,
    ) -> bool:
        row = self.db.execute(
            sa.text(
                """
                INSERT INTO deletion_schedules (account_id, scheduled_for, deletion_type, status, original_transaction_id)
                VALUES (:a, :when, :deletion_type, 'scheduled', :tx)
                ON CONFLICT (account_id) WHERE status = 'scheduled' DO NOTHING
                RETURNING id
                """
            ),
            {"a": account_id, "when": when, "deletion_type": deletion_type, "tx": original_transaction_id},
        ).first()
        return row is not None

    def cancel_deletion_schedule(self, account_id: str, *, now: datetime) -> bool:
        result = self.db.execute(
            sa.text(
                """
                UPDATE deletion_schedules
                SET status='cancelled', cancelled_at=:now
                WHERE account_id=:a AND status='scheduled'
                """
            ),
            {"a": account_id, "now": now},
        )
        return bool(result.rowcount)

    def get_pending_deletion(self, account_id: str) -> dict | None:
        row = self.db.execute(
            sa.text(
                """
                SELECT scheduled_for, deletion_type, original_transaction_id
                FROM deletion_schedules
                WHERE account_id=:a AND status='scheduled'
                """
            ),
            {"a": account_id},
        ).mappings().first()
        return dict(row) if row else None

    def append_notification_audit(self, row: NotificationAudit) -> None:
        # A redelivered envelope corrects the outcome of its earlier attempt
        self.db.execute(
            sa.text(
                """
                INSERT INTO app_store_notifications (
                    notification_uuid,
                    notification_type,
                    subtype,
                    original_transaction_id,
                    raw_payload,
                    processing_status,
                    error_message,
                    received_at
                )
                VALUES (
                    :uuid,
                    :notification_type,
                    :subtype,
                    :tx,
                    CAST(:payload AS jsonb),
                    :status,
                    :error_message,
                    :received_at
                )
                ON CONFLICT (notification_uuid) DO UPDATE
                SET processing_status=:status,
                    error_message=:error_message
                """
            ),
            {
                "uuid": row.notification_uuid,
                "notification_type": row.notification_type,
                "subtype": row.subtype,
                "tx": row.original_transaction_id,
                "payload": json.dumps(row.raw_payload or {}, default=str),
                "status": row.processing_status,
                "error_message": row.error_message,
                "received_at": row.received_at,
            },
        )

    def notification_stats(self, since: datetime) -> dict:
        row = self.db.execute(
            sa.text(
                """
                SELECT
                    COUNT(*) AS total,
                    COUNT(*) FILTER (WHERE processing_status='failed') AS failed,
                    MAX(received_at) AS last_notification_at
                FROM app_store_notifications
                WHERE received_at >= :since
                """
            ),
            {"since": since},
        ).mappings().one()
        return dict(row)

    def subscription_counts(self) -> dict:
        by_status = self.db.execute(
            sa.text(
                """
                SELECT status, COUNT(*) AS n
                FROM vault_subscriptions
                GROUP BY status
                """
            )
        ).mappings().all()
        by_tier = self.db.execute(
            sa.text(
                """
                SELECT tier, COUNT(*) AS n
                FROM vault_subscriptions
                WHERE status IN ('trial','active','grace')
                GROUP BY tier
                """
            )
        ).mappings().all()
        return {
            "by_status": {r["status"]: int(r["n"]) for r in by_status},
            "live_by_tier": {r["tier"]: int(r["n"]) for r in by_tier},
        }

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        with self.db.begin_nested():
            yield

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
