"""
De-duplication of HubSpot webhook deliveries.

HubSpot retries batches it did not get a 2xx for, and may deliver the same
event more than once anyway. Every handler is idempotent, so this store is an
optimisation: an event is marked only after its transaction committed, and a
Redis outage just means the event is applied again.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

import redis.asyncio as redis

from config import get_redis_connection_kwargs, settings

logger = logging.getLogger(__name__)


class EventDedupStore(Protocol):
    async def was_applied(self, key: str) -> bool:
        ...

    async def mark_applied(self, key: str) -> None:
        ...


class RedisEventDedupStore:
    """EventDedupStore keeping one expiring Redis key per applied event."""

    def __init__(self, client: redis.Redis, ttl_seconds: int, prefix: str = "client_sync:hubspot_events") -> None:
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def was_applied(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(self._key(key)))
        except Exception as e:
            logger.error("[hubspot_events] Redis error during dedup lookup: %s", e)
            # If Redis is down, process anyway (handlers are idempotent)
            return False

    async def mark_applied(self, key: str) -> None:
        try:
            await self._client.set(self._key(key), "1", ex=self._ttl_seconds)
        except Exception as e:
            logger.error("[hubspot_events] Redis error while marking %s applied: %s", key, e)


_redis_store: Optional[RedisEventDedupStore] = None


def get_event_dedup_store() -> Optional[EventDedupStore]:
    """Return the shared Redis-backed store, or None when REDIS_URL is unset."""
    global _redis_store
    if not settings.REDIS_URL:
        return None
    if _redis_store is None:
        client = redis.from_url(settings.REDIS_URL, **get_redis_connection_kwargs())
        _redis_store = RedisEventDedupStore(client, settings.HUBSPOT_EVENT_DEDUP_TTL_SECONDS)
    return _redis_store
