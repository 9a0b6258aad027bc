from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable

from app.core.config import Settings
from app.core.logging import get_logger
from app.core.security import now_utc
from app.services.audit import STATUS_FAILED, STATUS_SUCCESS, record_notification
from app.services.catalog import ProductCatalog
from app.services.deletion_scheduler import cancel_scheduled_deletion, schedule_deletion
from app.services.entitlements import EntitlementSync, project_account, quota_table
from app.services.errors import BusinessRejection, ConcurrentUpdateError, DecodeError
from app.services.metrics import NOTIFICATIONS_TOTAL, PrometheusMetrics, MetricsSink
from app.services.notification_decoder import Notification, decode_notification, peek_claims
from app.services.replay_guard import ReplayGuard
from app.services.signature import SignatureVerifier
from app.services.subscription_machine import (
    Rejection,
    SubscriptionRecord,
    TransitionContext,
    transition_for,
)

logger = get_logger(__name__)


class _LostRace(Exception):
    """The compare-and-set write found a newer version."""


@dataclass(frozen=True)
class DispatchOutcome:
    outcome: str
    record: SubscriptionRecord | None = None
    entitlement: EntitlementSync | None = None
    deletion_created: bool = False


@dataclass(frozen=True)
class ProcessingResult:
    http_status: int
    outcome: str
    notification_uuid: str | None = None
    notification_type: str | None = None
    error_code: str | None = None
    detail: str | None = None

    @property
    def acknowledged(self) -> bool:
        return self.http_status == 200

    def body(self) -> dict:
        return {
            "success": self.acknowledged,
            "outcome": self.outcome,
            "duplicate": self.outcome == "duplicate",
            "notification_uuid": self.notification_uuid,
            "error_code": self.error_code,
        }


def _uuid_from(claims: dict | None) -> str | None:
    if not claims:
        return None
    value = str(claims.get("notificationUUID") or "").strip()
    return value or None


def _tx_id_from(notification: Notification) -> str | None:
    return notification.transaction.original_transaction_id if notification.transaction else None


class NotificationProcessor:
    """Ingest pipeline for one signed App Store notification.

    replay guard -> signature -> decode -> transition -> entitlement ->
    deletion schedule -> audit. The processor owns the unit of work: it
    commits after the audit row is written and rolls back on unexpected
    errors.
    """

    def __init__(
        self,
        *,
        store,
        verifier: SignatureVerifier,
        replay_guard: ReplayGuard,
        catalog: ProductCatalog,
        metrics: MetricsSink | None = None,
        quotas: dict[str, int] | None = None,
        grace_period_days: int = 30,
        deletion_horizon_days: int = 90,
        cas_retries: int = 3,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.store = store
        self.verifier = verifier
        self.replay_guard = replay_guard
        self.catalog = catalog
        self.metrics = metrics or PrometheusMetrics()
        self.quotas = quotas or quota_table()
        self.grace_period = timedelta(days=grace_period_days)
        self.deletion_horizon = timedelta(days=deletion_horizon_days)
        self.cas_retries = max(1, cas_retries)
        self.clock = clock

    @classmethod
    def from_settings(cls, cfg: Settings, **deps) -> "NotificationProcessor":
        return cls(
            quotas=quota_table(cfg),
            grace_period_days=cfg.APPSTORE_GRACE_PERIOD_DAYS,
            deletion_horizon_days=cfg.DELETION_HORIZON_DAYS,
            cas_retries=cfg.SUBSCRIPTION_CAS_RETRIES,
            **deps,
        )

    def _count(self, notification_type: str | None, outcome: str):
        self.metrics.increment(NOTIFICATIONS_TOTAL, type=notification_type or "unknown", outcome=outcome)

    def ingest(self, token: str) -> ProcessingResult:
        claims = peek_claims(token)
        notification_uuid = _uuid_from(claims)
        peeked_type = str((claims or {}).get("notificationType") or "").upper() or None

        if notification_uuid and self.replay_guard.check_and_record(notification_uuid):
            logger.info("appstore notification duplicate", extra={"extra_data": {"notification_uuid": notification_uuid}})
            self._count(peeked_type, "duplicate")
            return ProcessingResult(200, "duplicate", notification_uuid, peeked_type)

        verification = self.verifier.verify(token)
        if not verification.valid:
            if notification_uuid:
                self.replay_guard.forget(notification_uuid)
            logger.warning(
                "appstore notification rejected",
                extra={"extra_data": {"notification_uuid": notification_uuid, "reason": verification.reason}},
            )
            self._count(peeked_type, "unauthorized")
            if verification.reason == "MALFORMED_TOKEN":
                return ProcessingResult(400, "invalid", notification_uuid, peeked_type, "INVALID_PAYLOAD", "signedPayload invalido")
            return ProcessingResult(401, "unauthorized", notification_uuid, peeked_type, verification.reason, "Firma invalida")

        now = self.clock()
        notification: Notification | None = None
        try:
            try:
                notification = decode_notification(token, load_claims=self.verifier.load_claims)
                outcome = self.dispatch(notification, now=now)
            except DecodeError as exc:
                return self._decode_failed(exc, claims, notification_uuid, peeked_type, now)
            except BusinessRejection as exc:
                logger.warning(
                    "appstore notification rejected by state machine",
                    extra={
                        "extra_data": {
                            "notification_uuid": notification.notification_uuid,
                            "notification_type": notification.notification_type,
                            "code": exc.code,
                            "error": str(exc),
                        }
                    },
                )
                self._audit(notification, STATUS_FAILED, now, error=exc.audit_message())
                self.store.commit()
                self._count(notification.notification_type, "rejected")
                return ProcessingResult(200, "rejected", notification.notification_uuid, notification.notification_type, exc.code, str(exc))

            self._audit(notification, STATUS_SUCCESS, now)
            self.store.commit()
        except Exception as exc:
            return self._unexpected(exc, notification, claims, notification_uuid, peeked_type, now)

        self._count(notification.notification_type, outcome.outcome)
        return ProcessingResult(200, outcome.outcome, notification.notification_uuid, notification.notification_type)

    def dispatch(self, notification: Notification, *, now: datetime) -> DispatchOutcome:
        handler = transition_for(notification.notification_type)
        if handler is None:
            logger.warning(
                "appstore notification type not handled",
                extra={
                    "extra_data": {
                        "notification_uuid": notification.notification_uuid,
                        "notification_type": notification.notification_type,
                        "subtype": notification.subtype,
                    }
                },
            )
            return DispatchOutcome("ignored")
        if notification.transaction is None:
            raise DecodeError(f"signedTransactionInfo ausente para {notification.notification_type}")

        with self.store.savepoint():
            return self._apply(handler, notification, now)

    def _apply(self, handler, notification: Notification, now: datetime) -> DispatchOutcome:
        tx_id = notification.transaction.original_transaction_id
        ctx = TransitionContext(
            now=now,
            catalog=self.catalog,
            grace_period=self.grace_period,
            deletion_horizon=self.deletion_horizon,
        )

        for attempt in range(1, self.cas_retries + 1):
            try:
                with self.store.savepoint():
                    return self._attempt(handler, notification, ctx, now)
            except _LostRace:
                logger.info(
                    "subscription changed concurrently, recomputing",
                    extra={"extra_data": {"original_transaction_id": tx_id, "attempt": attempt}},
                )

        raise ConcurrentUpdateError(f"suscripcion {tx_id} modificada concurrentemente")

    def _attempt(self, handler, notification: Notification, ctx: TransitionContext, now: datetime) -> DispatchOutcome:
        tx_id = notification.transaction.original_transaction_id
        current = self.store.get_subscription(tx_id)
        result = handler(current, notification, ctx)
        if isinstance(result, Rejection):
            raise BusinessRejection(result.message, code=result.code)

        record = result.record
        changed = result.changed
        deletion = result.deletion
        if deletion is not None:
            live = self.store.get_live_subscription(record.account_id, exclude_transaction_id=tx_id)
            if live is not None:
                logger.info(
                    "deletion skipped, account has another live subscription",
                    extra={
                        "extra_data": {
                            "account_id": record.account_id,
                            "original_transaction_id": tx_id,
                            "live_transaction_id": live.original_transaction_id,
                            "deletion_type": deletion.deletion_type,
                        }
                    },
                )
                deletion = None
                record = replace(record, deletion_scheduled_at=current.deletion_scheduled_at)
                changed = not record.same_state(current)

        if changed:
            if record.is_live:
                expired = self.store.expire_other_live_subscriptions(record.account_id, keep_transaction_id=tx_id, now=now)
                if expired:
                    logger.info(
                        "previous live subscriptions expired",
                        extra={"extra_data": {"account_id": record.account_id, "count": expired}},
                    )
            saved = self.store.upsert_subscription(record, expected_version=(current.version if current else 0), now=now)
            if saved is None:
                # Undoes this attempt's expirations via the savepoint
                raise _LostRace(tx_id)
            record = saved

        if notification.notification_type == "SUBSCRIBED":
            cancel_scheduled_deletion(self.store, account_id=record.account_id, now=now)

        deletion_created = False
        if deletion is not None:
            deletion_created = schedule_deletion(
                self.store,
                account_id=record.account_id,
                when=deletion.when,
                deletion_type=deletion.deletion_type,
                original_transaction_id=tx_id,
            )

        entitlement = project_account(self.store, record=record, now=now, quotas=self.quotas)
        logger.info(
            "appstore notification applied",
            extra={
                "extra_data": {
                    "notification_uuid": notification.notification_uuid,
                    "notification_type": notification.notification_type,
                    "original_transaction_id": tx_id,
                    "status": record.status,
                    "changed": changed,
                }
            },
        )
        return DispatchOutcome(
            "processed" if changed else "unchanged",
            record=record,
            entitlement=entitlement,
            deletion_created=deletion_created,
        )

    def _audit(self, notification: Notification, status: str, now: datetime, *, error: str | None = None):
        record_notification(
            self.store,
            notification_uuid=notification.notification_uuid,
            notification_type=notification.notification_type,
            subtype=notification.subtype,
            original_transaction_id=_tx_id_from(notification),
            raw_payload=notification.raw,
            status=status,
            received_at=now,
            error=error,
        )

    def _decode_failed(self, exc: DecodeError, claims, notification_uuid, notification_type, now) -> ProcessingResult:
        logger.warning(
            "appstore notification decode failed",
            extra={"extra_data": {"notification_uuid": notification_uuid, "error": str(exc)}},
        )
        self.store.rollback()
        if notification_uuid:
            record_notification(
                self.store,
                notification_uuid=notification_uuid,
                notification_type=notification_type,
                subtype=(str((claims or {}).get("subtype") or "") or None),
                original_transaction_id=None,
                raw_payload=claims,
                status=STATUS_FAILED,
                received_at=now,
                error=exc.audit_message(),
            )
            self.store.commit()
        self._count(notification_type, "invalid")
        return ProcessingResult(400, "invalid", notification_uuid, notification_type, exc.code, str(exc))

    def _unexpected(self, exc: Exception, notification, claims, notification_uuid, notification_type, now) -> ProcessingResult:
        logger.exception(
            "appstore notification processing failed",
            extra={"extra_data": {"notification_uuid": notification_uuid, "notification_type": notification_type}},
        )
        self.store.rollback()
        if notification_uuid:
            # Lets the provider's redelivery reprocess it
            self.replay_guard.forget(notification_uuid)
            try:
                record_notification(
                    self.store,
                    notification_uuid=notification_uuid,
                    notification_type=notification_type,
                    subtype=notification.subtype if notification else None,
                    original_transaction_id=_tx_id_from(notification) if notification else None,
                    raw_payload=notification.raw if notification else claims,
                    status=STATUS_FAILED,
                    received_at=now,
                    error=f"{type(exc).__name__}: {exc}",
                )
                self.store.commit()
            except Exception:
                logger.exception("appstore audit write failed", extra={"extra_data": {"notification_uuid": notification_uuid}})
                self.store.rollback()
        self._count(notification_type, "error")
        return ProcessingResult(500, "error", notification_uuid, notification_type, "INTERNAL_ERROR", "Error interno")
