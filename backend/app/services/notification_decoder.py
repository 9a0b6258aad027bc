from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from jose import jwt
from jose.exceptions import JOSEError

from app.services.errors import DecodeError

ClaimsLoader = Callable[[str], dict]


@dataclass(frozen=True)
class TransactionInfo:
    original_transaction_id: str
    transaction_id: str | None
    product_id: str
    app_account_token: str | None
    purchase_date: datetime | None
    expires_date: datetime | None
    is_trial_period: bool
    auto_renew_status: bool | None
    raw: dict = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Notification:
    notification_uuid: str
    notification_type: str
    subtype: str | None
    bundle_id: str | None
    environment: str | None
    transaction: TransactionInfo | None
    raw: dict = field(default_factory=dict, compare=False)


def _epoch_ms_to_datetime(value) -> datetime | None:
    if value in (None, "", 0):
        return None
    try:
        ms = int(value)
    except (TypeError, ValueError):
        raise DecodeError(f"fecha invalida: {value!r}")
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def _try_uuid(value: object | None) -> str | None:
    if value is None:
        return None
    try:
        return str(UUID(str(value)))
    except ValueError:
        return None


def _auto_renew_from(renewal: dict, tx: dict, subtype: str | None) -> bool | None:
    for source in (renewal, tx):
        raw = source.get("autoRenewStatus")
        if raw is None:
            continue
        if isinstance(raw, bool):
            return raw
        try:
            return int(raw) == 1
        except (TypeError, ValueError):
            raise DecodeError(f"autoRenewStatus invalido: {raw!r}")
    if subtype == "AUTO_RENEW_ENABLED":
        return True
    if subtype == "AUTO_RENEW_DISABLED":
        return False
    return None


def extract_signed_payload(body: object, header_value: str | None) -> str | None:
    """Signed token from a ``{"signedPayload": ...}`` body, else from the request header."""
    if isinstance(body, dict):
        token = body.get("signedPayload")
        if isinstance(token, str) and token.strip():
            return token.strip()
    if header_value and header_value.strip():
        return header_value.strip()
    return None


def peek_claims(token: str) -> dict | None:
    """Unverified claims; used only for replay keys and audit context."""
    try:
        claims = jwt.get_unverified_claims(token)
    except JOSEError:
        return None
    return claims if isinstance(claims, dict) else None


def decode_transaction(token: str, *, load_claims: ClaimsLoader, subtype: str | None = None, renewal: dict | None = None) -> TransactionInfo:
    tx = load_claims(token)
    original_tx_id = str(tx.get("originalTransactionId") or "").strip()
    if not original_tx_id:
        raise DecodeError("originalTransactionId ausente en signedTransactionInfo")
    product_id = str(tx.get("productId") or "").strip()
    if not product_id:
        raise DecodeError("productId ausente en signedTransactionInfo")

    # offerType 1 = introductory offer (free trial)
    is_trial = bool(tx.get("isTrialPeriod")) or str(tx.get("offerType") or "") == "1"

    return TransactionInfo(
        original_transaction_id=original_tx_id,
        transaction_id=(str(tx["transactionId"]) if tx.get("transactionId") else None),
        product_id=product_id,
        app_account_token=_try_uuid(tx.get("appAccountToken")),
        purchase_date=_epoch_ms_to_datetime(tx.get("purchaseDate")),
        expires_date=_epoch_ms_to_datetime(tx.get("expiresDate")),
        is_trial_period=is_trial,
        auto_renew_status=_auto_renew_from(renewal or {}, tx, subtype),
        raw=tx,
    )


def decode_notification(token: str, *, load_claims: ClaimsLoader) -> Notification:
    """Decode the outer envelope and its nested transaction/renewal tokens.

    Any failure at either level is a DecodeError (INVALID_PAYLOAD); it is
    terminal for the notification and never retried.
    """
    claims = load_claims(token)

    notification_uuid = str(claims.get("notificationUUID") or "").strip()
    if not notification_uuid:
        raise DecodeError("notificationUUID ausente")
    notification_type = str(claims.get("notificationType") or "").strip().upper()
    if not notification_type:
        raise DecodeError("notificationType ausente")
    subtype = str(claims.get("subtype") or "").strip().upper() or None

    data = claims.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise DecodeError("data debe ser un objeto")

    renewal: dict = {}
    signed_renewal = data.get("signedRenewalInfo")
    if isinstance(signed_renewal, str) and signed_renewal:
        renewal = load_claims(signed_renewal)

    transaction = None
    signed_tx = data.get("signedTransactionInfo")
    if signed_tx is not None:
        if not isinstance(signed_tx, str) or not signed_tx:
            raise DecodeError("signedTransactionInfo invalido")
        transaction = decode_transaction(signed_tx, load_claims=load_claims, subtype=subtype, renewal=renewal)

    return Notification(
        notification_uuid=notification_uuid,
        notification_type=notification_type,
        subtype=subtype,
        bundle_id=data.get("bundleId"),
        environment=data.get("environment"),
        transaction=transaction,
        raw=claims,
    )
