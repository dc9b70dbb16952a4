"""Ephemeral key-value storage with per-key expiry.

Holds password-reset challenges, verification markers, revoked token ids and
rate-limit counters. Values must be JSON-compatible so every backend can hold
them. Two backends are provided:

- ``InMemoryStateStore``: single-process dict with lazy expiry; suitable for
  local development and tests.
- ``RedisStateStore``: shared store for multi-instance deployments; Redis
  enforces the TTL.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from core.config import settings

logger = logging.getLogger(__name__)


class EphemeralStateStore:
    """Capability set the reset flow and token issuer depend on."""

    async def put(self, key: str, value: Any, ttl_seconds: float) -> None:
        raise NotImplementedError

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def incr(self, key: str, ttl_seconds: float) -> int:
        """Increment a counter; the TTL starts with the first increment."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class InMemoryStateStore(EphemeralStateStore):
    """Dict-backed store. Expired keys are dropped when read."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[Any, float]] = {}

    def _live(self, key: str) -> Optional[Tuple[Any, float]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if self._clock() >= entry[1]:
            self._data.pop(key, None)
            return None
        return entry

    async def put(self, key: str, value: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            self._data.pop(key, None)
            return
        self._data[key] = (value, self._clock() + ttl_seconds)

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live(key)
        return None if entry is None else entry[0]

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def incr(self, key: str, ttl_seconds: float) -> int:
        entry = self._live(key)
        if entry is None:
            self._data[key] = (1, self._clock() + ttl_seconds)
            return 1
        count = int(entry[0]) + 1
        self._data[key] = (count, entry[1])
        return count

    def purge_expired(self) -> int:
        """Remove every expired entry; returns how many were dropped."""
        now = self._clock()
        expired = [k for k, (_, deadline) in self._data.items() if deadline <= now]
        for k in expired:
            self._data.pop(k, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)


class RedisStateStore(EphemeralStateStore):
    """Redis-backed store; values are JSON-encoded and expire server-side."""

    def __init__(self, client: "redis.Redis", prefix: str = ""):
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "") -> "RedisStateStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def put(self, key: str, value: Any, ttl_seconds: float) -> None:
        ttl_ms = int(ttl_seconds * 1000)
        if ttl_ms <= 0:
            await self._redis.delete(self._key(key))
            return
        await self._redis.set(self._key(key), json.dumps(value), px=ttl_ms)

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            logger.warning(f"Discarding undecodable state entry {key}: {exc}")
            return None

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def incr(self, key: str, ttl_seconds: float) -> int:
        full_key = self._key(key)
        pipeline = self._redis.pipeline()
        pipeline.incr(full_key)
        pipeline.ttl(full_key)
        count, ttl = await pipeline.execute()
        if ttl is None or ttl < 0:
            await self._redis.expire(full_key, max(int(ttl_seconds), 1))
        return int(count)

    async def close(self) -> None:
        await self._redis.aclose()


def build_state_store() -> EphemeralStateStore:
    """Create the store selected by STATE_STORE_BACKEND."""
    backend = (settings.STATE_STORE_BACKEND or "memory").lower()
    if backend == "redis":
        logger.info("Using Redis state store")
        return RedisStateStore.from_url(settings.REDIS_URL, prefix=settings.STATE_STORE_PREFIX)
    if backend != "memory":
        raise ValueError(f"Unknown STATE_STORE_BACKEND: {settings.STATE_STORE_BACKEND}")
    logger.info("Using in-memory state store")
    return InMemoryStateStore()
