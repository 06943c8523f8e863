"""
Shared authentication utilities for request handlers.

Why:
    Any route can ask "who is this?" through one dependency instead of
    re-reading cookies. Resolution stays fail-closed: callers only ever see a
    session id or `None`.

Design:
    Dependencies read their collaborators from `request.app.state`, which the
    app factory populates. No module-level singletons.
"""

from __future__ import annotations

from typing import Optional
import re

from fastapi import Depends, HTTPException, Request

from oauth_sessions.flow import get_session_id


# Absolute in-app paths only: no scheme/host, no "//", no "..", no query/fragment.
INAPP_PATH_PATTERN = re.compile(r"^(?!.*//)(?!.*\.\.)/[A-Za-z0-9._\-/]*$")
MAX_INAPP_REDIRECT_LEN = 256


def is_inapp_path(value: object) -> bool:
    """Return True if value is an absolute in-app path, e.g., "/", "/courses/1".

    Examples (rejected):
        "courses" (not absolute), "https://evil.com", "//evil.com", "/a?b", "/.."
    """
    if not isinstance(value, str) or not value:
        return False
    if len(value) > MAX_INAPP_REDIRECT_LEN:
        return False
    return bool(INAPP_PATH_PATTERN.match(value))


def forwarded_scheme(headers, default: str) -> str:
    """Return the first X-Forwarded-Proto value if it is http/https, else default."""
    raw = (headers.get("x-forwarded-proto") or "").split(",")[0].strip().lower()
    return raw if raw in ("http", "https") else default


async def current_session_id(request: Request) -> Optional[str]:
    return await get_session_id(request, request.app.state.records)


async def require_session(session_id: Optional[str] = Depends(current_session_id)) -> str:
    if not session_id:
        raise HTTPException(
            status_code=401,
            detail="unauthenticated",
            headers={"Cache-Control": "private, no-store"},
        )
    return session_id
