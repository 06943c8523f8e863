"""
Record store for pending authorizations and token sessions.

Why: Keep server-side state (state parameter, PKCE code_verifier, provider
tokens) opaque to the client. Cookies carry only random identifiers; the
records they point to live in a key-value store behind this module.

Key space: two disjoint namespaces, `oauth_sessions:<id>` and
`token_sessions:<id>`, so an identifier of one kind can never resolve a record
of the other.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional
import logging
import time

from .kv import KeyValueStore


logger = logging.getLogger("kv_oauth.records")

PENDING_TTL_SECONDS = 10 * 60
SESSION_TTL_SECONDS = 90 * 24 * 60 * 60

_PENDING_PREFIX = "oauth_sessions:"
_SESSION_PREFIX = "token_sessions:"


@dataclass(frozen=True)
class PendingAuthorization:
    state: str
    code_verifier: str
    success_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "PendingAuthorization":
        return cls(
            state=data["state"],
            code_verifier=data["code_verifier"],
            success_url=data.get("success_url"),
        )


@dataclass(frozen=True)
class TokenSession:
    access_token: str
    token_type: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    scope: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TokenSession":
        return cls(
            access_token=data["access_token"],
            token_type=data["token_type"],
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
            scope=data.get("scope"),
        )

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return self.expires_at <= current


def _decode(record_type, data):
    """Build a record from stored data; malformed data counts as absent."""
    if not data:
        return None
    try:
        return record_type.from_dict(data)
    except (KeyError, TypeError, AttributeError) as exc:
        logger.warning("Discarding malformed %s record: %s", record_type.__name__, exc.__class__.__name__)
        return None


class RecordStore:
    """Typed accessors over a `KeyValueStore`.

    Every call is a fresh round-trip; nothing is cached here. Backend failures
    propagate as `StoreUnavailableError` so callers can tell them apart from
    the `None` that signals an absent or expired record.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        pending_ttl_seconds: int = PENDING_TTL_SECONDS,
        session_ttl_seconds: Optional[int] = SESSION_TTL_SECONDS,
    ) -> None:
        if pending_ttl_seconds <= 0:
            raise ValueError("pending_ttl_seconds must be positive")
        self.kv = kv
        self.pending_ttl_seconds = pending_ttl_seconds
        # Non-positive lifetimes mean "browser session": no cookie Max-Age, no record TTL.
        self.session_ttl_seconds = session_ttl_seconds if session_ttl_seconds and session_ttl_seconds > 0 else None

    async def put_pending_authorization(self, pending_id: str, record: PendingAuthorization) -> None:
        await self.kv.set(_PENDING_PREFIX + pending_id, asdict(record), ttl_seconds=self.pending_ttl_seconds)

    async def take_pending_authorization(self, pending_id: str) -> Optional[PendingAuthorization]:
        """Read and delete in one step; a pending record is redeemable once."""
        data = await self.kv.take(_PENDING_PREFIX + pending_id)
        return _decode(PendingAuthorization, data)

    async def put_token_session(self, session_id: str, record: TokenSession) -> None:
        await self.kv.set(_SESSION_PREFIX + session_id, asdict(record), ttl_seconds=self.session_ttl_seconds)

    async def get_token_session(self, session_id: str) -> Optional[TokenSession]:
        data = await self.kv.get(_SESSION_PREFIX + session_id)
        return _decode(TokenSession, data)

    async def delete_token_session(self, session_id: str) -> None:
        await self.kv.delete(_SESSION_PREFIX + session_id)


__all__ = [
    "PENDING_TTL_SECONDS",
    "SESSION_TTL_SECONDS",
    "PendingAuthorization",
    "TokenSession",
    "RecordStore",
]
