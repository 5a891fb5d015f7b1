import json
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from forum.config import settings
from forum.errors import StoreFailure

logger = logging.getLogger(__name__)


class KeyValueStore:
    """
    Redis-backed key-value store for sessions and password-reset tokens.

    Unlike a cache, this data cannot be recomputed: a missing connection
    or a Redis error raises ``StoreFailure`` instead of degrading to a
    miss, so a broken store never looks like "not logged in".
    """

    def __init__(self) -> None:
        self._redis: redis.Redis | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        # Ping to surface mis-configuration early (non-fatal).
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", settings.REDIS_URL)
        except RedisError as exc:  # pragma: no cover
            logger.warning("Redis ping failed: %s", exc)

    async def disconnect(self) -> None:
        """Close the connection pool.  Called once at application shutdown."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _client(self) -> redis.Redis:
        if self._redis is None:
            raise StoreFailure("Key-value store is not connected")
        return self._redis

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get(self, key: str):
        """Return the decoded value stored under *key*, or None when absent."""
        client = self._client()
        try:
            data = await client.get(key)
        except RedisError as exc:
            logger.error("KV GET error for key=%r: %s", key, exc)
            raise StoreFailure("Key-value read failed") from exc
        return json.loads(data) if data is not None else None

    async def set(self, key: str, value, ttl: int | None = None) -> None:
        """Store *value* (JSON encoded) under *key* with an optional TTL in seconds."""
        client = self._client()
        try:
            await client.set(key, json.dumps(value), ex=ttl)
        except RedisError as exc:
            logger.error("KV SET error for key=%r: %s", key, exc)
            raise StoreFailure("Key-value write failed") from exc

    async def delete(self, key: str) -> None:
        client = self._client()
        try:
            await client.delete(key)
        except RedisError as exc:
            logger.error("KV DEL error for key=%r: %s", key, exc)
            raise StoreFailure("Key-value delete failed") from exc


# Module-level store; the connection pool is shared, the data is keyed per session.
kv = KeyValueStore()
