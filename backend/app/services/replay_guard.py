from __future__ import annotations

import threading
import time
from typing import Callable, Protocol

import redis

from app.core.logging import get_logger

logger = get_logger(__name__)


class TTLStore(Protocol):
    def add_if_absent(self, key: str, ttl_seconds: int) -> bool:
        """Store ``key`` for ``ttl_seconds``; False when an unexpired entry exists."""
        ...

    def discard(self, key: str) -> None:
        ...


class InMemoryTTLStore:
    """Process-local map of key -> expiry, swept once it outgrows ``max_entries``."""

    def __init__(self, *, max_entries: int = 1000, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def add_if_absent(self, key: str, ttl_seconds: int) -> bool:
        now = self._clock()
        with self._lock:
            expires_at = self._entries.get(key)
            if expires_at is not None and expires_at > now:
                return False
            self._entries[key] = now + ttl_seconds
            if len(self._entries) > self.max_entries:
                self._sweep(now)
            return True

    def discard(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def _sweep(self, now: float):
        expired = [k for k, exp in self._entries.items() if exp <= now]
        for k in expired:
            del self._entries[k]
        logger.debug("replay cache sweep", extra={"extra_data": {"removed": len(expired), "size": len(self._entries)}})


class RedisTTLStore:
    """Shared variant for multi-process deployments (SET NX EX)."""

    def __init__(self, client, *, prefix: str = "appstore:notification:"):
        self.client = client
        self.prefix = prefix

    def add_if_absent(self, key: str, ttl_seconds: int) -> bool:
        return bool(self.client.set(f"{self.prefix}{key}", "1", nx=True, ex=ttl_seconds))

    def discard(self, key: str) -> None:
        self.client.delete(f"{self.prefix}{key}")


class ReplayGuard:
    def __init__(self, store: TTLStore, *, ttl_seconds: int = 300):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def check_and_record(self, notification_uuid: str) -> bool:
        """True when the notification was already seen inside the TTL window."""
        return not self.store.add_if_absent(notification_uuid, self.ttl_seconds)

    def forget(self, notification_uuid: str) -> None:
        # Lets the provider's redelivery through after a failed attempt
        self.store.discard(notification_uuid)


def build_replay_guard(*, ttl_seconds: int, max_entries: int, redis_url: str | None = None) -> ReplayGuard:
    if redis_url:
        client = redis.Redis.from_url(redis_url, decode_responses=True)
        return ReplayGuard(RedisTTLStore(client), ttl_seconds=ttl_seconds)
    return ReplayGuard(InMemoryTTLStore(max_entries=max_entries), ttl_seconds=ttl_seconds)
