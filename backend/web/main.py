"""
Web entrypoint: app factory, middleware and lifespan.

Why: Wire the record store, OAuth client and settings onto `app.state` in one
place so routes and dependencies never reach for module-level singletons.
Stores without native TTLs get a background reaper for abandoned flows.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional
import asyncio
import logging
import os
import sys

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from oauth_sessions.errors import StoreUnavailableError
from oauth_sessions.kv import KeyValueStore
from oauth_sessions.oauth2 import OAuth2Capability
from oauth_sessions.records import RecordStore

from web.auth_utils import current_session_id, forwarded_scheme
from web.config import (
    Settings,
    build_key_value_store,
    build_oauth_client,
    ensure_secure_config_on_startup,
    load_settings,
)
from web.routes.auth import auth_router


logger = logging.getLogger("kv_oauth.web")


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via KV_OAUTH_ENABLE_DOTENV (default true outside
      pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("KV_OAUTH_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


async def _purge_periodically(kv: KeyValueStore, interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            deleted = await kv.purge_expired()  # type: ignore[attr-defined]
        except StoreUnavailableError as exc:
            logger.warning("Periodic purge failed: %s", exc.__class__.__name__)
            continue
        except Exception:
            logger.exception("Periodic purge crashed; retrying next interval")
            continue
        if deleted:
            logger.info("Purged %s expired entries", deleted)


@asynccontextmanager
async def lifespan(app: FastAPI):
    kv = app.state.kv
    reaper: Optional[asyncio.Task] = None
    # Redis expires keys itself; other backends need a reaper for abandoned flows.
    if hasattr(kv, "purge_expired"):
        reaper = asyncio.create_task(_purge_periodically(kv, app.state.settings.purge_interval_seconds))
    try:
        yield
    finally:
        try:
            if reaper is not None:
                reaper.cancel()
                try:
                    await reaper
                except asyncio.CancelledError:
                    pass
        finally:
            if hasattr(kv, "aclose"):
                await kv.aclose()


def create_app(
    settings: Optional[Settings] = None,
    *,
    kv: Optional[KeyValueStore] = None,
    oauth_client: Optional[OAuth2Capability] = None,
) -> FastAPI:
    """Build the web app with explicitly wired collaborators.

    Run with `uvicorn web.main:create_app --factory`. Tests pass their own
    settings, store and OAuth client so instances never share state.
    """
    if settings is None:
        if _should_load_dotenv():
            from dotenv import load_dotenv

            load_dotenv()
        settings = load_settings()
    ensure_secure_config_on_startup(settings)

    kv = kv if kv is not None else build_key_value_store(settings)
    app = FastAPI(title="kv-oauth-sessions", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.kv = kv
    app.state.records = RecordStore(
        kv,
        pending_ttl_seconds=settings.pending_ttl_seconds,
        session_ttl_seconds=settings.session_ttl_seconds,
    )
    app.state.oauth_client = oauth_client if oauth_client is not None else build_oauth_client(settings)
    app.include_router(auth_router)

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        return response

    if settings.trust_proxy:
        # Registered last so it runs first: downstream handlers see the
        # browser-facing scheme when deciding on secure cookie names.
        @app.middleware("http")
        async def trusted_proxy_scheme(request: Request, call_next):
            request.scope["scheme"] = forwarded_scheme(request.headers, request.scope.get("scheme", "http"))
            return await call_next(request)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/me")
    async def get_me(session_id: Optional[str] = Depends(current_session_id)):
        headers = {"Cache-Control": "private, no-store"}
        if not session_id:
            return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)
        return JSONResponse({"authenticated": True}, headers=headers)

    return app
