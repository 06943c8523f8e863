"""
OAuth 2.0 authorization-code client with PKCE (S256).

Why: The flow controller only needs two things from a provider: an
authorization URL bound to a state value, and a token exchange. This module
implements that capability for standard providers; callers may substitute any
object that satisfies `OAuth2Capability` (e.g., fakes in tests).

Security: The code_verifier never leaves the server except in the token
request. Persisting it between sign-in and callback is the record store's job.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple
from urllib.parse import urlencode, urlsplit
import base64
import hashlib
import logging
import os
import time

import httpx

from .errors import ProviderError
from .records import TokenSession


logger = logging.getLogger("kv_oauth.oauth2")

HTTP_TIMEOUT_SECONDS = 5


async def http_post(
    url: str,
    data: Dict[str, str],
    headers: Dict[str, str],
    *,
    auth: Optional[Tuple[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS, transport=transport) as client:
        return await client.post(url, data=data, headers=headers, auth=auth)


@dataclass(frozen=True)
class AuthorizationUri:
    uri: str
    code_verifier: str


class OAuth2Capability(Protocol):
    async def get_authorization_uri(self, *, state: str) -> AuthorizationUri: ...

    async def exchange_code(self, *, code: str, code_verifier: str) -> TokenSession: ...

    async def refresh_access_token(self, *, refresh_token: str) -> TokenSession: ...


@dataclass(frozen=True)
class OAuth2ClientConfig:
    client_id: str
    authorization_endpoint: str
    token_endpoint: str
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None  # e.g., https://app.example.com/auth/callback
    scope: Tuple[str, ...] = field(default_factory=tuple)


def _is_http_url(value: str) -> bool:
    parts = urlsplit(value or "")
    return parts.scheme in ("http", "https") and bool(parts.netloc)


class OAuth2Client:
    def __init__(self, config: OAuth2ClientConfig, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cfg = config
        self._transport = transport

    @staticmethod
    def generate_code_verifier(length: int = 64) -> str:
        """Generate a high-entropy URL-safe code_verifier.

        Note: RFC 7636 requires between 43 and 128 characters.
        """
        return base64.urlsafe_b64encode(os.urandom(length)).decode("ascii").rstrip("=")

    @staticmethod
    def code_challenge_s256(code_verifier: str) -> str:
        """Derive S256 code challenge from verifier."""
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

    def _check_config(self) -> None:
        if not self.cfg.client_id:
            raise ProviderError("invalid_client_config")
        if not _is_http_url(self.cfg.authorization_endpoint) or not _is_http_url(self.cfg.token_endpoint):
            raise ProviderError("invalid_client_config")

    async def get_authorization_uri(self, *, state: str) -> AuthorizationUri:
        """Return the provider authorization URL and the verifier bound to it.

        Raises `ProviderError("invalid_client_config")` before any I/O when the
        client is misconfigured, so sign-in can abort without side effects.
        """
        self._check_config()
        code_verifier = self.generate_code_verifier()
        params = {
            "response_type": "code",
            "client_id": self.cfg.client_id,
            "state": state,
            "code_challenge": self.code_challenge_s256(code_verifier),
            "code_challenge_method": "S256",
        }
        if self.cfg.redirect_uri:
            params["redirect_uri"] = self.cfg.redirect_uri
        if self.cfg.scope:
            params["scope"] = " ".join(self.cfg.scope)
        sep = "&" if "?" in self.cfg.authorization_endpoint else "?"
        return AuthorizationUri(uri=f"{self.cfg.authorization_endpoint}{sep}{urlencode(params)}", code_verifier=code_verifier)

    async def exchange_code(self, *, code: str, code_verifier: str) -> TokenSession:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "code_verifier": code_verifier,
        }
        if self.cfg.redirect_uri:
            data["redirect_uri"] = self.cfg.redirect_uri
        return await self._token_request(data, failure_code="token_exchange_failed")

    async def refresh_access_token(self, *, refresh_token: str) -> TokenSession:
        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        return await self._token_request(data, failure_code="token_refresh_failed")

    async def _token_request(self, data: Dict[str, str], *, failure_code: str) -> TokenSession:
        self._check_config()
        auth = None
        if self.cfg.client_secret:
            auth = (self.cfg.client_id, self.cfg.client_secret)
        else:
            data = {**data, "client_id": self.cfg.client_id}
        headers = {"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"}
        try:
            resp = await http_post(self.cfg.token_endpoint, data=data, headers=headers, auth=auth, transport=self._transport)
        except httpx.HTTPError as exc:
            logger.warning("Token endpoint unreachable: %s", exc.__class__.__name__)
            raise ProviderError("provider_unreachable") from exc
        if resp.status_code != 200:
            logger.warning("Token endpoint returned status %s", resp.status_code)
            raise ProviderError(failure_code)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ProviderError("invalid_token_response") from exc
        return parse_token_response(payload)


def parse_token_response(payload: Any, *, now: Optional[float] = None) -> TokenSession:
    """Map a token endpoint JSON body to a `TokenSession`.

    `expires_in` (seconds) is converted to an absolute `expires_at` so stored
    records stay meaningful regardless of when they are read.
    """
    if not isinstance(payload, dict):
        raise ProviderError("invalid_token_response")
    access_token = payload.get("access_token")
    token_type = payload.get("token_type")
    if not isinstance(access_token, str) or not access_token or not isinstance(token_type, str) or not token_type:
        raise ProviderError("invalid_token_response")
    expires_at = None
    expires_in = payload.get("expires_in")
    if expires_in is not None:
        try:
            expires_at = int((time.time() if now is None else now) + int(expires_in))
        except (TypeError, ValueError) as exc:
            raise ProviderError("invalid_token_response") from exc
    return TokenSession(
        access_token=access_token,
        token_type=token_type,
        refresh_token=payload.get("refresh_token"),
        expires_at=expires_at,
        scope=payload.get("scope"),
    )


__all__ = [
    "HTTP_TIMEOUT_SECONDS",
    "http_post",
    "AuthorizationUri",
    "OAuth2Capability",
    "OAuth2ClientConfig",
    "OAuth2Client",
    "parse_token_response",
]
