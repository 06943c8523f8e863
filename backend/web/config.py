"""
Configuration loading and startup security checks.

Why: Settings come from environment variables so the same image runs in dev
and prod. A single guard prevents obviously insecure production deployments
without burdening local development.

Permissions: The caller needs no special privileges. Functions only read
environment variables; the guard raises `SystemExit` on fatal
misconfiguration.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple
import os

from oauth_sessions.kv import KeyValueStore, MemoryKeyValueStore
from oauth_sessions.oauth2 import OAuth2Client, OAuth2ClientConfig
from oauth_sessions.providers import create_provider_oauth2_client
from oauth_sessions.records import PENDING_TTL_SECONDS, SESSION_TTL_SECONDS


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise SystemExit(f"Refusing to start: {name} must be an integer (got {raw!r}).") from None


@dataclass(frozen=True)
class Settings:
    environment: str = "dev"
    sessions_backend: str = "memory"  # memory | redis | db
    redis_url: str = "redis://localhost:6379/0"
    database_url: str = ""
    kv_table: str = "public.kv_oauth_entries"
    pending_ttl_seconds: int = PENDING_TTL_SECONDS
    session_ttl_seconds: Optional[int] = SESSION_TTL_SECONDS
    purge_interval_seconds: int = 900
    trust_proxy: bool = False
    success_url: str = "/"
    oauth_provider: str = "generic"
    oauth_client_id: str = ""
    oauth_client_secret: Optional[str] = None
    oauth_authorization_endpoint: str = ""
    oauth_token_endpoint: str = ""
    oauth_redirect_uri: Optional[str] = None
    oauth_scope: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_prod_like(self) -> bool:
        return _is_prod_like(self.environment)


def load_settings() -> Settings:
    session_ttl = _env_int("SESSION_TTL_SECONDS", SESSION_TTL_SECONDS)
    scope = tuple(part for part in (os.getenv("OAUTH_SCOPE") or "").replace(",", " ").split() if part)
    return Settings(
        environment=(os.getenv("KV_OAUTH_ENV", "dev") or "dev").strip().lower(),
        sessions_backend=(os.getenv("SESSIONS_BACKEND", "memory") or "memory").strip().lower(),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        database_url=os.getenv("DATABASE_URL", ""),
        kv_table=os.getenv("KV_TABLE", "public.kv_oauth_entries"),
        pending_ttl_seconds=_env_int("PENDING_TTL_SECONDS", PENDING_TTL_SECONDS),
        session_ttl_seconds=session_ttl if session_ttl > 0 else None,
        purge_interval_seconds=_env_int("PURGE_INTERVAL_SECONDS", 900),
        trust_proxy=_env_bool("TRUST_PROXY"),
        success_url=os.getenv("SUCCESS_URL", "/") or "/",
        oauth_provider=(os.getenv("OAUTH_PROVIDER", "generic") or "generic").strip().lower(),
        oauth_client_id=(os.getenv("OAUTH_CLIENT_ID") or "").strip(),
        oauth_client_secret=(os.getenv("OAUTH_CLIENT_SECRET") or "").strip() or None,
        oauth_authorization_endpoint=(os.getenv("OAUTH_AUTHORIZATION_ENDPOINT") or "").strip(),
        oauth_token_endpoint=(os.getenv("OAUTH_TOKEN_ENDPOINT") or "").strip(),
        oauth_redirect_uri=(os.getenv("OAUTH_REDIRECT_URI") or "").strip() or None,
        oauth_scope=scope,
    )


def build_oauth_client(settings: Settings) -> OAuth2Client:
    """Create the OAuth client for the configured provider.

    `generic` uses the explicit OAUTH_* endpoints; any other value selects a
    preset from `oauth_sessions.providers` (credentials from
    `<PROVIDER>_CLIENT_ID` / `<PROVIDER>_CLIENT_SECRET`).
    """
    if settings.oauth_provider != "generic":
        return create_provider_oauth2_client(
            settings.oauth_provider,
            redirect_uri=settings.oauth_redirect_uri,
            scope=settings.oauth_scope or None,
        )
    cfg = OAuth2ClientConfig(
        client_id=settings.oauth_client_id,
        client_secret=settings.oauth_client_secret,
        authorization_endpoint=settings.oauth_authorization_endpoint,
        token_endpoint=settings.oauth_token_endpoint,
        redirect_uri=settings.oauth_redirect_uri,
        scope=settings.oauth_scope,
    )
    return OAuth2Client(cfg)


def build_key_value_store(settings: Settings) -> KeyValueStore:
    backend = settings.sessions_backend
    if backend == "memory":
        return MemoryKeyValueStore()
    if backend == "redis":
        from oauth_sessions.kv_redis import RedisKeyValueStore

        return RedisKeyValueStore.from_url(settings.redis_url)
    if backend == "db":
        from oauth_sessions.kv_db import PostgresKeyValueStore

        return PostgresKeyValueStore(dsn=settings.database_url or None, table=settings.kv_table)
    raise SystemExit(f"Refusing to start: unknown SESSIONS_BACKEND {backend!r} (use memory, redis or db).")


def ensure_secure_config_on_startup(settings: Settings | None = None) -> None:
    """Fail fast on insecure production configuration.

    Checks (prod/stage only):
    - Sessions must not live in process memory (lost on restart, not shared
      across instances).
    - DATABASE_URL must not explicitly disable TLS.
    - OAuth endpoints and the redirect URI must use https.
    - The client secret must not be a CHANGE_ME placeholder.
    """
    settings = settings or load_settings()
    if not settings.is_prod_like:
        return  # dev/test remain permissive

    if settings.sessions_backend == "memory":
        raise SystemExit(
            "Refusing to start: SESSIONS_BACKEND=memory is not allowed in production/staging. Use redis or db."
        )

    if settings.sessions_backend == "db" and "sslmode=disable" in (settings.database_url or ""):
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    def _must_be_https(url_value: Optional[str], var_name: str) -> None:
        if url_value and url_value.strip().lower().startswith("http://"):
            raise SystemExit(f"Refusing to start: {var_name} must use https in production (got http).")

    _must_be_https(settings.oauth_authorization_endpoint, "OAUTH_AUTHORIZATION_ENDPOINT")
    _must_be_https(settings.oauth_token_endpoint, "OAUTH_TOKEN_ENDPOINT")
    _must_be_https(settings.oauth_redirect_uri, "OAUTH_REDIRECT_URI")

    secret = (settings.oauth_client_secret or "").strip()
    if secret.upper().startswith("CHANGE_ME"):
        raise SystemExit("Refusing to start: OAUTH_CLIENT_SECRET is a placeholder in production.")
