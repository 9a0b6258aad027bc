import hmac
import ipaddress
from datetime import datetime, timezone

from starlette.requests import Request

from app.core.config import settings


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def tokens_match(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def client_ip(request: Request) -> str:
    peer = request.client.host if request.client else ""
    hops = settings.TRUSTED_PROXY_HOPS
    if hops <= 0:
        return peer
    # Each trusted proxy appends the address it saw, so the client is the Nth from the right
    forwarded = [part.strip() for part in request.headers.get("x-forwarded-for", "").split(",") if part.strip()]
    if len(forwarded) < hops:
        return peer
    return forwarded[-hops]


def ip_allowed(ip: str, allowlist: list[str]) -> bool:
    if not allowlist:
        return True
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if addr in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False
