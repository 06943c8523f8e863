"""
Preconfigured OAuth 2.0 clients for common providers.

Each factory reads `<PROVIDER>_CLIENT_ID` and `<PROVIDER>_CLIENT_SECRET` from
the environment and fails fast when either is missing.
"""
from __future__ import annotations

from typing import Optional, Sequence
import os

from .oauth2 import OAuth2Client, OAuth2ClientConfig


# name -> (authorization endpoint, token endpoint, default scope)
PROVIDERS = {
    "github": (
        "https://github.com/login/oauth/authorize",
        "https://github.com/login/oauth/access_token",
        (),
    ),
    "gitlab": (
        "https://gitlab.com/oauth/authorize",
        "https://gitlab.com/oauth/token",
        ("profile",),
    ),
    "google": (
        "https://accounts.google.com/o/oauth2/v2/auth",
        "https://oauth2.googleapis.com/token",
        ("openid", "email", "profile"),
    ),
    "discord": (
        "https://discord.com/oauth2/authorize",
        "https://discord.com/api/oauth2/token",
        ("identify",),
    ),
}


def _required_env(name: str) -> str:
    value = (os.getenv(name) or "").strip()
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def create_provider_oauth2_client(
    provider: str,
    *,
    redirect_uri: Optional[str] = None,
    scope: Optional[Sequence[str]] = None,
) -> OAuth2Client:
    try:
        auth_endpoint, token_endpoint, default_scope = PROVIDERS[provider]
    except KeyError:
        raise ValueError(f"Unknown OAuth provider: {provider}") from None
    prefix = provider.upper()
    cfg = OAuth2ClientConfig(
        client_id=_required_env(f"{prefix}_CLIENT_ID"),
        client_secret=_required_env(f"{prefix}_CLIENT_SECRET"),
        authorization_endpoint=auth_endpoint,
        token_endpoint=token_endpoint,
        redirect_uri=redirect_uri,
        scope=tuple(scope) if scope is not None else default_scope,
    )
    return OAuth2Client(cfg)


def create_github_oauth2_client(*, redirect_uri: Optional[str] = None, scope: Optional[Sequence[str]] = None) -> OAuth2Client:
    return create_provider_oauth2_client("github", redirect_uri=redirect_uri, scope=scope)


def create_gitlab_oauth2_client(*, redirect_uri: str, scope: Optional[Sequence[str]] = None) -> OAuth2Client:
    # GitLab rejects authorization requests without a redirect_uri.
    return create_provider_oauth2_client("gitlab", redirect_uri=redirect_uri, scope=scope)


def create_google_oauth2_client(*, redirect_uri: str, scope: Optional[Sequence[str]] = None) -> OAuth2Client:
    return create_provider_oauth2_client("google", redirect_uri=redirect_uri, scope=scope)


def create_discord_oauth2_client(*, redirect_uri: str, scope: Optional[Sequence[str]] = None) -> OAuth2Client:
    return create_provider_oauth2_client("discord", redirect_uri=redirect_uri, scope=scope)


__all__ = [
    "PROVIDERS",
    "create_provider_oauth2_client",
    "create_github_oauth2_client",
    "create_gitlab_oauth2_client",
    "create_google_oauth2_client",
    "create_discord_oauth2_client",
]
