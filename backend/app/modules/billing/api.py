import json

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_notification_processor, require_webhook_source
from app.core.config import settings
from app.core.rate_limit import limiter
from app.schemas.billing import WebhookAckOut
from app.services.billing import NotificationProcessor
from app.services.notification_decoder import extract_signed_payload

router = APIRouter()


@router.post("/app-store", response_model=WebhookAckOut, dependencies=[Depends(require_webhook_source)])
@limiter.limit(settings.WEBHOOK_RATE_LIMIT)
async def app_store_webhook(
    request: Request,
    processor: NotificationProcessor = Depends(get_notification_processor),
):
    raw = await request.body()
    body = None
    if raw:
        try:
            body = json.loads(raw)
        except ValueError:
            body = None

    token = extract_signed_payload(body, request.headers.get(settings.APPSTORE_SIGNED_PAYLOAD_HEADER))
    if not token:
        raise HTTPException(400, "signedPayload ausente")

    result = await run_in_threadpool(processor.ingest, token)
    if not result.acknowledged:
        raise HTTPException(result.http_status, result.detail or "Notificacion rechazada")
    return WebhookAckOut(**result.body())
