"""
Redis-backed key-value store.

Why: Redis gives us native per-key TTLs and an atomic GETDEL, which is exactly
what single-use pending authorizations need. Entries expire on their own, so no
reaper is required for this backend.

Security: Values hold token material. Point `REDIS_URL` at an instance that is
not shared with untrusted tenants and prefer `rediss://` outside development.
"""
from __future__ import annotations

from typing import Optional
import json
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from .errors import StoreUnavailableError


logger = logging.getLogger("kv_oauth.kv.redis")


def _loads(raw: Optional[str]) -> Optional[dict]:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise StoreUnavailableError("redis value is not valid JSON") from exc


class RedisKeyValueStore:
    """`KeyValueStore` over `redis.asyncio`.

    Parameters
    ----------
    client:
        An async Redis client created with `decode_responses=True`.
    prefix:
        Namespace prepended to every key so the store can share a database.
    """

    def __init__(self, client: redis.Redis, *, prefix: str = "kv_oauth:") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "kv_oauth:", max_connections: int = 20) -> "RedisKeyValueStore":
        client = redis.from_url(url, decode_responses=True, max_connections=max_connections)
        return cls(client, prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[dict]:
        try:
            raw = await self._client.get(self._key(key))
        except RedisError as exc:
            raise StoreUnavailableError("redis get failed") from exc
        return _loads(raw)

    async def set(self, key: str, value: dict, *, ttl_seconds: Optional[int] = None) -> None:
        try:
            await self._client.set(self._key(key), json.dumps(value), ex=ttl_seconds)
        except RedisError as exc:
            raise StoreUnavailableError("redis set failed") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as exc:
            raise StoreUnavailableError("redis delete failed") from exc

    async def take(self, key: str) -> Optional[dict]:
        try:
            raw = await self._client.getdel(self._key(key))
        except RedisError as exc:
            raise StoreUnavailableError("redis getdel failed") from exc
        return _loads(raw)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            logger.warning("Redis ping failed: %s", exc.__class__.__name__)
            return False

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["RedisKeyValueStore"]
