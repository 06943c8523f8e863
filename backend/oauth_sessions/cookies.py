"""
Cookie binding for opaque session identifiers.

Why: The cookie name encodes the transport security of the request that set
it. Cookies issued over https use the `__Host-` prefix, which browsers only
accept with `Secure`, `Path=/` and no `Domain`. A cookie set over plaintext
therefore never shadows or leaks into the secure context.

Design: Pure helpers plus a small descriptor. Serialization is Starlette's
job (`Response.set_cookie` / `Request.cookies`); this module only decides
names and flags.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from starlette.requests import Request
from starlette.responses import Response


OAUTH_COOKIE_NAME = "oauth-session"
SITE_COOKIE_NAME = "site-session"
SECURE_COOKIE_PREFIX = "__Host-"


def is_secure(url: str) -> bool:
    return urlsplit(str(url)).scheme.lower() == "https"


def cookie_name(base: str, secure: bool) -> str:
    return f"{SECURE_COOKIE_PREFIX}{base}" if secure else base


@dataclass(frozen=True)
class CookieSpec:
    """Set-Cookie descriptor with the shared baseline flags.

    SameSite=lax is required: the provider's redirect back to the callback is a
    cross-site top-level navigation, and "strict" would drop the OAuth cookie
    on exactly that request.
    """

    name: str
    value: str
    max_age: Optional[int]
    secure: bool
    httponly: bool = True
    path: str = "/"
    samesite: str = "lax"

    def apply(self, response: Response) -> None:
        response.set_cookie(
            key=self.name,
            value=self.value,
            max_age=self.max_age,
            path=self.path,
            secure=self.secure,
            httponly=self.httponly,
            samesite=self.samesite,
        )


def build_cookie(name: str, value: str, max_age: Optional[int], secure: bool) -> CookieSpec:
    return CookieSpec(name=name, value=value, max_age=max_age, secure=secure)


def clear_cookie(response: Response, name: str, secure: bool) -> None:
    response.delete_cookie(key=name, path="/", secure=secure, httponly=True, samesite="lax")


def read_cookie(request: Request, base: str) -> Optional[str]:
    """Return the value of the transport-appropriate cookie for `base`, if any."""
    value = request.cookies.get(cookie_name(base, is_secure(str(request.url))))
    return value or None


__all__ = [
    "OAUTH_COOKIE_NAME",
    "SITE_COOKIE_NAME",
    "SECURE_COOKIE_PREFIX",
    "is_secure",
    "cookie_name",
    "CookieSpec",
    "build_cookie",
    "clear_cookie",
    "read_cookie",
]
