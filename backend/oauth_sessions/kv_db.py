"""
Postgres-backed key-value store (psycopg3, async).

Why: Deployments that already run Postgres can keep pending authorizations and
token sessions durable across instances without another moving part.

Security:
- Use a dedicated login role with access to the entries table only. Token
  material lives in `value`; never expose the table to anon clients.
- Postgres has no native TTL. Expired rows are invisible to reads and are
  removed by `purge_expired()`, which the web app schedules periodically.

Table layout::

    key text primary key, value jsonb not null, expires_at timestamptz
"""
from __future__ import annotations

from typing import Any, Optional
import logging
import os
import re

import psycopg
from psycopg.types.json import Jsonb

from .errors import StoreUnavailableError


logger = logging.getLogger("kv_oauth.kv.db")

_TABLE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


class PostgresKeyValueStore:
    """`KeyValueStore` over a Postgres table.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Falls back to `DATABASE_URL`.
    table:
        Optionally schema-qualified table name. Validated against a strict
        identifier pattern because it is interpolated into statements.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.kv_oauth_entries") -> None:
        self._dsn = dsn or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for PostgresKeyValueStore")
        if not _TABLE_PATTERN.match(table or ""):
            raise ValueError("Invalid table name")
        self._table = table

    async def _run(self, query: str, params: tuple, *, fetch: bool = False) -> Any:
        try:
            async with await psycopg.AsyncConnection.connect(self._dsn, autocommit=True) as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    if fetch:
                        return await cur.fetchone()
                    return cur.rowcount
        except psycopg.Error as exc:
            logger.warning("Postgres statement failed: %s", exc.__class__.__name__)
            raise StoreUnavailableError("postgres statement failed") from exc

    async def ensure_schema(self) -> None:
        await self._run(
            f"create table if not exists {self._table} ("
            "key text primary key, value jsonb not null, expires_at timestamptz)",
            (),
        )

    async def get(self, key: str) -> Optional[dict]:
        row = await self._run(
            f"select value from {self._table} "
            "where key = %s and (expires_at is null or expires_at > now())",
            (key,),
            fetch=True,
        )
        return row[0] if row else None

    async def set(self, key: str, value: dict, *, ttl_seconds: Optional[int] = None) -> None:
        await self._run(
            f"insert into {self._table} (key, value, expires_at) "
            "values (%s, %s, now() + (%s::integer * interval '1 second')) "
            "on conflict (key) do update set value = excluded.value, expires_at = excluded.expires_at",
            (key, Jsonb(value), ttl_seconds),
        )

    async def delete(self, key: str) -> None:
        await self._run(f"delete from {self._table} where key = %s", (key,))

    async def take(self, key: str) -> Optional[dict]:
        # Single statement: the row is gone for every other caller once this returns.
        row = await self._run(
            f"delete from {self._table} where key = %s "
            "returning value, (expires_at is null or expires_at > now())",
            (key,),
            fetch=True,
        )
        if not row or not row[1]:
            return None
        return row[0]

    async def purge_expired(self) -> int:
        deleted = await self._run(
            f"delete from {self._table} where expires_at is not null and expires_at <= now()",
            (),
        )
        return int(deleted or 0)


__all__ = ["PostgresKeyValueStore"]
