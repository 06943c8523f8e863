"""
Authentication routes (router-only module).

Why:
    Keep the sign-in/callback/sign-out endpoints in one router and translate
    flow errors into HTTP responses here, so `oauth_sessions.flow` stays free
    of status-code decisions.

Notes:
    - Collaborators (record store, OAuth client, settings) come from
      `request.app.state`, populated by `web.main.create_app`.
    - Every response carries `Cache-Control: private, no-store`.
    - Error bodies never reveal whether a session or pending record existed.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from oauth_sessions.errors import CallbackError, ProviderError, StoreUnavailableError
from oauth_sessions.flow import NO_STORE_HEADERS, handle_callback, sign_in, sign_out

from web.auth_utils import is_inapp_path


auth_router = APIRouter(tags=["Auth"])
logger = logging.getLogger("kv_oauth.web.auth")


def _error(status_code: int, code: str) -> JSONResponse:
    return JSONResponse({"error": code}, status_code=status_code, headers=dict(NO_STORE_HEADERS))


@auth_router.get("/auth/signin")
async def auth_signin(request: Request, redirect: str | None = None):
    """
    Start the OAuth flow: store the pending authorization, set the OAuth
    cookie and redirect (302) to the provider.

    Behavior:
        - `redirect` is kept only if it is an absolute in-app path; external
          URLs are ignored to prevent open redirects.
        - Provider misconfiguration → 502, store outage → 503. Neither sets a
          cookie.
    Permissions:
        Public.
    """
    state = request.app.state
    safe_redirect = redirect if is_inapp_path(redirect) else None
    try:
        return await sign_in(request, state.oauth_client, state.records, success_url=safe_redirect)
    except ProviderError as exc:
        logger.warning("Sign-in aborted, provider error: %s", exc.code)
        return _error(502, "provider_error")
    except StoreUnavailableError as exc:
        logger.warning("Sign-in aborted, store unavailable: %s", exc.__class__.__name__)
        return _error(503, "store_unavailable")


@auth_router.get("/auth/callback")
async def auth_callback(request: Request):
    """
    Finish the OAuth flow: redeem the pending authorization, exchange the code
    and set the site session cookie.

    Errors:
        400 with a machine-readable code for invalid callbacks and failed
        token exchanges; 503 when the store is unavailable.
    """
    state = request.app.state
    try:
        result = await handle_callback(
            request,
            state.oauth_client,
            state.records,
            success_url=state.settings.success_url,
        )
    except CallbackError as exc:
        logger.info("Callback rejected: %s", exc.code)
        return _error(400, exc.code)
    except ProviderError as exc:
        logger.warning("Token exchange failed: %s", exc.code)
        return _error(400, "token_exchange_failed")
    except StoreUnavailableError as exc:
        logger.warning("Callback aborted, store unavailable: %s", exc.__class__.__name__)
        return _error(503, "store_unavailable")
    return result.response


@auth_router.get("/auth/signout")
async def auth_signout(request: Request, redirect: str | None = None):
    """
    Delete the server-side session (best effort), expire the site cookie and
    redirect to `redirect` (in-app paths only) or "/".
    """
    dest = redirect if is_inapp_path(redirect) else "/"
    return await sign_out(request, request.app.state.records, redirect_url=dest)
