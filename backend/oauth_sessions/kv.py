"""
Key-value store port and the in-memory adapter.

Why: The record store only needs single-key get/set/delete with a TTL plus an
atomic read-and-delete. Keeping this port tiny lets Redis, Postgres or a plain
dict back the same contract.

Values are JSON-compatible dicts so every adapter can persist them.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Protocol
import copy
import time


def _now() -> float:
    return time.time()


class KeyValueStore(Protocol):
    """Minimal async key-value interface.

    Contract:
        - Each operation is atomic for its single key.
        - `get`/`take` return `None` for absent or expired keys.
        - Backend failures raise `StoreUnavailableError`, never `None`.
    """

    async def get(self, key: str) -> Optional[dict]: ...

    async def set(self, key: str, value: dict, *, ttl_seconds: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def take(self, key: str) -> Optional[dict]: ...


@dataclass
class _Entry:
    value: dict
    expires_at: Optional[float]

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class MemoryKeyValueStore:
    """Process-local store for development and tests.

    Entries are deep-copied on the way in and out so callers cannot mutate
    stored state. Expired entries are evicted lazily on access or through
    `purge_expired()`.
    """

    def __init__(self) -> None:
        self._data: Dict[str, _Entry] = {}

    async def get(self, key: str) -> Optional[dict]:
        entry = self._live_entry(key)
        return copy.deepcopy(entry.value) if entry else None

    async def set(self, key: str, value: dict, *, ttl_seconds: Optional[int] = None) -> None:
        expires_at = _now() + ttl_seconds if ttl_seconds is not None else None
        self._data[key] = _Entry(value=copy.deepcopy(value), expires_at=expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def take(self, key: str) -> Optional[dict]:
        entry = self._data.pop(key, None)
        if entry is None or entry.expired(_now()):
            return None
        return entry.value

    async def purge_expired(self) -> int:
        now = _now()
        stale = [key for key, entry in self._data.items() if entry.expired(now)]
        for key in stale:
            del self._data[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._data)

    def _live_entry(self, key: str) -> Optional[_Entry]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expired(_now()):
            self._data.pop(key, None)
            return None
        return entry


__all__ = ["KeyValueStore", "MemoryKeyValueStore"]
