"""
Sign-in, callback, session resolution and sign-out.

Why: Keep the OAuth session flow framework independent apart from Starlette's
request/response types, and pass every collaborator in explicitly (record
store, OAuth client, identifier source) so isolated instances can coexist.

Failure semantics:
    - Sign-in never emits a redirect or cookie unless the pending record was
      written. Provider and store failures propagate to the caller.
    - Session resolution fails closed: a missing, unknown or unreadable
      session cookie yields `None`. Store outages are logged so operations can
      alert on them, but callers cannot distinguish them from "no session".
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Optional
import logging
import re
import secrets

from starlette.requests import Request
from starlette.responses import RedirectResponse

from .cookies import (
    OAUTH_COOKIE_NAME,
    SITE_COOKIE_NAME,
    build_cookie,
    clear_cookie,
    cookie_name,
    is_secure,
    read_cookie,
)
from .errors import CallbackError, StoreUnavailableError
from .oauth2 import OAuth2Capability
from .records import PendingAuthorization, RecordStore, TokenSession


logger = logging.getLogger("kv_oauth.flow")

IdSource = Callable[[], str]

NO_STORE_HEADERS = {"Cache-Control": "private, no-store"}

_PROVIDER_ERROR_CODE = re.compile(r"^[a-z_]{1,64}$")


def new_identifier() -> str:
    return secrets.token_urlsafe(32)


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=302, headers=dict(NO_STORE_HEADERS))


async def sign_in(
    request: Request,
    oauth_client: OAuth2Capability,
    records: RecordStore,
    *,
    success_url: Optional[str] = None,
    new_id: IdSource = new_identifier,
) -> RedirectResponse:
    """Start the authorization-code flow and redirect to the provider.

    Behavior:
        - Generates a fresh state and asks the OAuth client for the
          authorization URL and PKCE verifier bound to it.
        - Stores `{state, code_verifier, success_url}` under a fresh pending
          identifier and awaits the write before building the response.
        - Returns a 302 to the provider carrying the OAuth cookie, whose
          max-age equals the pending record's validity window.
    Raises:
        ProviderError: the authorization URL could not be built; nothing was
            written.
        StoreUnavailableError: the pending record could not be stored.
    """
    state = new_id()
    authorization = await oauth_client.get_authorization_uri(state=state)

    pending_id = new_id()
    await records.put_pending_authorization(
        pending_id,
        PendingAuthorization(state=state, code_verifier=authorization.code_verifier, success_url=success_url),
    )

    secure = is_secure(str(request.url))
    response = _redirect(authorization.uri)
    build_cookie(
        cookie_name(OAUTH_COOKIE_NAME, secure),
        pending_id,
        records.pending_ttl_seconds,
        secure,
    ).apply(response)
    return response


async def get_session_id(request: Request, records: RecordStore) -> Optional[str]:
    """Return the site session identifier of the request, or `None`.

    Only session presence is checked here; token material is fetched
    separately through `get_session_access_token`.
    """
    session_id = read_cookie(request, SITE_COOKIE_NAME)
    if not session_id:
        return None
    try:
        record = await records.get_token_session(session_id)
    except StoreUnavailableError as exc:
        logger.warning("Session lookup failed: %s", exc.__class__.__name__)
        return None
    return session_id if record is not None else None


@dataclass
class CallbackResult:
    response: RedirectResponse
    session_id: str
    tokens: TokenSession


async def handle_callback(
    request: Request,
    oauth_client: OAuth2Capability,
    records: RecordStore,
    *,
    success_url: str = "/",
    new_id: IdSource = new_identifier,
) -> CallbackResult:
    """Complete the flow started by `sign_in`.

    The pending record is consumed before any other check, so a callback URL
    can be redeemed at most once even when it fails validation.

    Raises:
        CallbackError: missing OAuth cookie, unknown/consumed pending record,
            provider error response, state mismatch or missing code.
        ProviderError: token exchange failed.
        StoreUnavailableError: a record could not be read or written.
    """
    pending_id = read_cookie(request, OAUTH_COOKIE_NAME)
    if not pending_id:
        raise CallbackError("missing_oauth_cookie")
    pending = await records.take_pending_authorization(pending_id)
    if pending is None:
        raise CallbackError("invalid_oauth_session")

    params = request.query_params
    provider_error = params.get("error")
    if provider_error:
        raise CallbackError(provider_error if _PROVIDER_ERROR_CODE.match(provider_error) else "access_denied")
    if not secrets.compare_digest((params.get("state") or "").encode(), pending.state.encode()):
        raise CallbackError("invalid_state")
    code = params.get("code")
    if not code:
        raise CallbackError("missing_code")

    tokens = await oauth_client.exchange_code(code=code, code_verifier=pending.code_verifier)

    session_id = new_id()
    await records.put_token_session(session_id, tokens)

    secure = is_secure(str(request.url))
    response = _redirect(pending.success_url or success_url)
    clear_cookie(response, cookie_name(OAUTH_COOKIE_NAME, secure), secure)
    build_cookie(
        cookie_name(SITE_COOKIE_NAME, secure),
        session_id,
        records.session_ttl_seconds,
        secure,
    ).apply(response)
    return CallbackResult(response=response, session_id=session_id, tokens=tokens)


async def sign_out(request: Request, records: RecordStore, *, redirect_url: str = "/") -> RedirectResponse:
    """Delete the server-side session (best effort) and expire the site cookie."""
    session_id = read_cookie(request, SITE_COOKIE_NAME)
    if session_id:
        try:
            await records.delete_token_session(session_id)
        except StoreUnavailableError as exc:
            logger.warning("Session delete failed during sign-out: %s", exc.__class__.__name__)

    secure = is_secure(str(request.url))
    response = _redirect(redirect_url)
    clear_cookie(response, cookie_name(SITE_COOKIE_NAME, secure), secure)
    return response


async def get_session_access_token(
    oauth_client: OAuth2Capability,
    records: RecordStore,
    session_id: str,
) -> Optional[str]:
    """Return a usable access token for `session_id`, refreshing it if needed.

    Returns `None` for unknown sessions and for expired tokens that cannot be
    refreshed. A refresh keeps the previous refresh token when the provider
    does not rotate it.
    """
    tokens = await records.get_token_session(session_id)
    if tokens is None:
        return None
    if not tokens.is_expired():
        return tokens.access_token
    if not tokens.refresh_token:
        return None

    refreshed = await oauth_client.refresh_access_token(refresh_token=tokens.refresh_token)
    if refreshed.refresh_token is None:
        refreshed = replace(refreshed, refresh_token=tokens.refresh_token)
    await records.put_token_session(session_id, refreshed)
    return refreshed.access_token


__all__ = [
    "IdSource",
    "new_identifier",
    "sign_in",
    "get_session_id",
    "CallbackResult",
    "handle_callback",
    "sign_out",
    "get_session_access_token",
]
