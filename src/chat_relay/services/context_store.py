"""Key-value store backing the context.set / context.get tool actions.

The store is injected into the tools route as a FastAPI dependency rather
than held as a bare module-level dict. Two backends are provided:

1. InMemoryContextStore: process-local dict guarded by an asyncio.Lock
2. RedisContextStore: redis.asyncio client, values expire after a TTL

Keys are namespaced by the caller (see ``context_key``) so separate chat
sessions never read each other's values.

Environment Variables:
    CONTEXT_STORE_BACKEND: "memory" (default) or "redis"
    REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
    CONTEXT_TTL_SECONDS: Expiry for Redis-stored values (default: 86400)

Last Grunted: 10/19/2026 09:40:00 AM UTC
"""
from __future__ import annotations

import asyncio
from typing import Dict, Optional, Protocol

import redis.asyncio as aioredis
import structlog

from chat_relay.config import RelaySettings, get_settings

logger = structlog.get_logger(__name__)

# Key prefix for all context keys
CONTEXT_KEY_PREFIX: str = "context:"


def context_key(session_id: str, key: str) -> str:
    """Build the namespaced storage key for one session's context entry."""
    return f"{CONTEXT_KEY_PREFIX}{session_id}:{key}"


class ContextStore(Protocol):
    """Capability required by the tools route: get and set by key."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...


class InMemoryContextStore:
    """Process-lifetime store. Writers are serialized by an asyncio.Lock."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self._data[key] = value


class RedisContextStore:
    """Redis-backed store shared by every relay worker.

    Attributes:
        client: redis.asyncio client with decode_responses=True
        ttl_seconds: Expiry applied on every write

    A Redis failure propagates to the caller as an error.

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """

    def __init__(self, client: aioredis.Redis, ttl_seconds: int) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, redis_url: str, ttl_seconds: int) -> "RedisContextStore":
        client = aioredis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        logger.info("context_store.redis.init", ttl_seconds=ttl_seconds)
        return cls(client, ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str) -> None:
        await self.client.set(key, value, ex=self.ttl_seconds)

    async def close(self) -> None:
        await self.client.aclose()


def create_context_store(settings: RelaySettings) -> ContextStore:
    """Build the store selected by CONTEXT_STORE_BACKEND.

    Raises:
        ValueError: If the backend name is not supported
    """
    backend = settings.context_store_backend
    if backend == "memory":
        return InMemoryContextStore()
    if backend == "redis":
        return RedisContextStore.from_url(settings.redis_url, settings.context_ttl_seconds)
    raise ValueError(f"Unsupported CONTEXT_STORE_BACKEND: {backend}")


# Store instance - initialized lazily from settings
_store: Optional[ContextStore] = None


def get_context_store() -> ContextStore:
    """FastAPI dependency returning the process-wide configured store."""
    global _store

    if _store is None:
        _store = create_context_store(get_settings())
    return _store


async def close_context_store() -> None:
    global _store

    if isinstance(_store, RedisContextStore):
        await _store.close()
    _store = None
