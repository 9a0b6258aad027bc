from functools import lru_cache

from fastapi import Depends, Header, HTTPException, Request
from prometheus_client import REGISTRY
from sqlalchemy.orm import Session

from app.core.config import settings, split_csv
from app.core.logging import get_logger
from app.core.security import client_ip, ip_allowed, now_utc, tokens_match
from app.db.session import get_db
from app.services.billing import NotificationProcessor
from app.services.billing_store import SqlBillingStore
from app.services.catalog import ProductCatalog
from app.services.metrics import PrometheusMetrics
from app.services.replay_guard import ReplayGuard, build_replay_guard
from app.services.signature import SignatureVerifier

logger = get_logger(__name__)


def get_clock():
    return now_utc


@lru_cache
def get_signature_verifier() -> SignatureVerifier:
    return SignatureVerifier.from_settings(settings)


@lru_cache
def get_replay_guard() -> ReplayGuard:
    return build_replay_guard(
        ttl_seconds=settings.REPLAY_GUARD_TTL_SECONDS,
        max_entries=settings.REPLAY_GUARD_MAX_ENTRIES,
        redis_url=settings.REPLAY_GUARD_REDIS_URL,
    )


@lru_cache
def get_product_catalog() -> ProductCatalog:
    return ProductCatalog.from_config(settings.APPSTORE_PRODUCT_TIER_MAP)


@lru_cache
def get_metrics_sink() -> PrometheusMetrics:
    return PrometheusMetrics(REGISTRY)


def get_billing_store(db: Session = Depends(get_db)) -> SqlBillingStore:
    return SqlBillingStore(db)


def get_notification_processor(
    store: SqlBillingStore = Depends(get_billing_store),
    verifier: SignatureVerifier = Depends(get_signature_verifier),
    replay_guard: ReplayGuard = Depends(get_replay_guard),
    catalog: ProductCatalog = Depends(get_product_catalog),
    metrics: PrometheusMetrics = Depends(get_metrics_sink),
) -> NotificationProcessor:
    return NotificationProcessor.from_settings(
        settings,
        store=store,
        verifier=verifier,
        replay_guard=replay_guard,
        catalog=catalog,
        metrics=metrics,
    )


def require_webhook_source(request: Request) -> None:
    ip = client_ip(request)
    if not ip_allowed(ip, split_csv(settings.WEBHOOK_IP_ALLOWLIST)):
        logger.warning("webhook source not allowed", extra={"extra_data": {"ip": ip}})
        raise HTTPException(status_code=403, detail="Origen no permitido")


def require_admin(request: Request, x_admin_token: str | None = Header(default=None)) -> None:
    ip = client_ip(request)
    if not ip_allowed(ip, split_csv(settings.ADMIN_IP_ALLOWLIST)):
        raise HTTPException(status_code=403, detail="Origen no permitido")

    if not settings.ADMIN_TOKEN:
        if settings.ENV == "dev":
            logger.warning("ADMIN_TOKEN no configurado; acceso admin abierto en dev")
            return
        raise HTTPException(status_code=503, detail="Admin no configurado")

    if not tokens_match(x_admin_token, settings.ADMIN_TOKEN):
        raise HTTPException(status_code=401, detail="Token admin invalido")
