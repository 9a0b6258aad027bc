from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_billing_store, get_clock, get_metrics_sink, require_admin
from app.core.config import settings
from app.schemas.billing import (
    AccountEntitlementOut,
    HealthOut,
    MetricOut,
    PendingDeletionOut,
    SubscriptionDetailOut,
    SubscriptionOut,
    SubscriptionStatsOut,
)
from app.services.audit import health_status
from app.services.billing_store import SqlBillingStore
from app.services.metrics import PrometheusMetrics

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/health", response_model=HealthOut)
def billing_health(store: SqlBillingStore = Depends(get_billing_store), clock=Depends(get_clock)):
    report = health_status(
        store,
        now=clock(),
        window_hours=settings.HEALTH_WINDOW_HOURS,
        threshold=settings.HEALTH_DEGRADED_THRESHOLD,
    )
    return HealthOut(
        status=report.status,
        total_notifications=report.total_notifications,
        failed_notifications=report.failed_notifications,
        success_rate=report.success_rate,
        last_notification_at=report.last_notification_at,
        window_hours=settings.HEALTH_WINDOW_HOURS,
    )


@router.get("/subscriptions/stats", response_model=SubscriptionStatsOut)
def subscription_stats(
    store: SqlBillingStore = Depends(get_billing_store),
    metrics: PrometheusMetrics = Depends(get_metrics_sink),
):
    counts = store.subscription_counts()
    return SubscriptionStatsOut(
        by_status=counts["by_status"],
        live_by_tier=counts["live_by_tier"],
        notifications=[MetricOut(**m) for m in metrics.snapshot()],
    )


@router.get("/subscriptions/{original_transaction_id}", response_model=SubscriptionDetailOut)
def subscription_detail(original_transaction_id: str, store: SqlBillingStore = Depends(get_billing_store)):
    record = store.get_subscription(original_transaction_id)
    if record is None:
        raise HTTPException(404, "Suscripcion no encontrada")
    entitlement = store.get_account_entitlement(record.account_id)
    pending = store.get_pending_deletion(record.account_id)
    return SubscriptionDetailOut(
        subscription=SubscriptionOut(**asdict(record)),
        entitlement=(AccountEntitlementOut(**entitlement) if entitlement else None),
        pending_deletion=(PendingDeletionOut(**pending) if pending else None),
    )
