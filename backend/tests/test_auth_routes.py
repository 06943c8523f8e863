"""
HTTP-level tests for the auth router and the session dependencies.

Walks the full flow (signin → callback → /api/me → signout) through the ASGI
app with a fake OAuth client, then checks error mapping, cache headers and the
trusted-proxy scheme handling.
"""
from __future__ import annotations

from http.cookies import SimpleCookie
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from fastapi import Depends
from httpx import ASGITransport

from oauth_sessions.records import TokenSession
from utils.fakes import FailingKeyValueStore, FakeOAuth2Client
from web.auth_utils import is_inapp_path, require_session
from web.config import Settings


pytestmark = pytest.mark.anyio("asyncio")


async def _get(
    app,
    url: str,
    *,
    params: dict | None = None,
    cookie: str | None = None,
    headers: dict | None = None,
    base_url: str = "http://test",
):
    hdrs = dict(headers or {})
    if cookie:
        hdrs["cookie"] = cookie
    async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url=base_url) as client:
        return await client.get(url, params=params, headers=hdrs)


def _cookies(resp: httpx.Response) -> SimpleCookie:
    jar = SimpleCookie()
    for header in resp.headers.get_list("set-cookie"):
        jar.load(header)
    return jar


def _state_of(resp: httpx.Response) -> str:
    return parse_qs(urlsplit(resp.headers["location"]).query)["state"][0]


@pytest.mark.anyio
async def test_full_flow(make_app):
    app = make_app()

    r = await _get(app, "/auth/signin?redirect=/courses")
    assert r.status_code == 302
    assert r.headers["cache-control"] == "private, no-store"
    pending_id = _cookies(r)["oauth-session"].value
    state = _state_of(r)

    r = await _get(app, f"/auth/callback?code=abc&state={state}", cookie=f"oauth-session={pending_id}")
    assert r.status_code == 302
    assert r.headers["location"] == "/courses"
    session_id = _cookies(r)["site-session"].value

    r = await _get(app, "/api/me", cookie=f"site-session={session_id}")
    assert r.status_code == 200
    assert r.json() == {"authenticated": True}
    assert r.headers["cache-control"] == "private, no-store"

    r = await _get(app, "/auth/signout", cookie=f"site-session={session_id}")
    assert r.status_code == 302
    assert r.headers["location"] == "/"

    r = await _get(app, "/api/me", cookie=f"site-session={session_id}")
    assert r.status_code == 401
    assert r.json() == {"error": "unauthenticated"}


@pytest.mark.anyio
@pytest.mark.parametrize("target", ["https://evil.example/", "//evil.example", "/a/../b", "/a?b=1", "courses"])
async def test_signin_ignores_external_redirects(make_app, target):
    app = make_app()
    r = await _get(app, "/auth/signin", params={"redirect": target})
    assert r.status_code == 302
    pending_id = _cookies(r)["oauth-session"].value
    pending = await app.state.records.take_pending_authorization(pending_id)
    assert pending.success_url is None


def test_inapp_path_examples():
    assert is_inapp_path("/")
    assert is_inapp_path("/courses/1")
    for bad in (None, "", "courses", "https://evil.com", "//evil.com", "/a?b", "/..", "/" + "a" * 300):
        assert not is_inapp_path(bad)


@pytest.mark.anyio
async def test_signin_provider_error_maps_to_502(make_app):
    app = make_app(oauth_client=FakeOAuth2Client(fail_authorization=True))
    r = await _get(app, "/auth/signin")
    assert r.status_code == 502
    assert r.json() == {"error": "provider_error"}
    assert r.headers["cache-control"] == "private, no-store"
    assert "set-cookie" not in r.headers


@pytest.mark.anyio
async def test_signin_store_outage_maps_to_503(make_app):
    app = make_app(kv=FailingKeyValueStore())
    r = await _get(app, "/auth/signin")
    assert r.status_code == 503
    assert r.json() == {"error": "store_unavailable"}
    assert "set-cookie" not in r.headers


@pytest.mark.anyio
async def test_callback_errors_map_to_400(make_app):
    app = make_app()
    r = await _get(app, "/auth/callback?code=abc&state=x")
    assert r.status_code == 400
    assert r.json() == {"error": "missing_oauth_cookie"}
    assert r.headers["cache-control"] == "private, no-store"

    r = await _get(app, "/auth/callback?code=abc&state=x", cookie="oauth-session=unknown")
    assert r.json() == {"error": "invalid_oauth_session"}


@pytest.mark.anyio
async def test_callback_exchange_failure_maps_to_400(make_app):
    app = make_app(oauth_client=FakeOAuth2Client(fail_exchange=True))
    r = await _get(app, "/auth/signin")
    pending_id = _cookies(r)["oauth-session"].value

    r = await _get(app, f"/auth/callback?code=abc&state={_state_of(r)}", cookie=f"oauth-session={pending_id}")
    assert r.status_code == 400
    assert r.json() == {"error": "token_exchange_failed"}


@pytest.mark.anyio
async def test_callback_store_outage_maps_to_503(make_app):
    app = make_app(kv=FailingKeyValueStore())
    r = await _get(app, "/auth/callback?code=abc&state=x", cookie="oauth-session=pid")
    assert r.status_code == 503
    assert r.json() == {"error": "store_unavailable"}


@pytest.mark.anyio
async def test_callback_uses_configured_success_url(make_app):
    app = make_app(Settings(success_url="/home"))
    r = await _get(app, "/auth/signin")
    pending_id = _cookies(r)["oauth-session"].value
    r = await _get(app, f"/auth/callback?code=abc&state={_state_of(r)}", cookie=f"oauth-session={pending_id}")
    assert r.headers["location"] == "/home"


@pytest.mark.anyio
async def test_me_fails_closed_when_store_is_down(make_app):
    app = make_app(kv=FailingKeyValueStore())
    r = await _get(app, "/api/me", cookie="site-session=sid")
    assert r.status_code == 401


@pytest.mark.anyio
async def test_require_session_dependency(make_app):
    app = make_app()

    @app.get("/private")
    async def private(session_id: str = Depends(require_session)):
        return {"session": session_id}

    r = await _get(app, "/private")
    assert r.status_code == 401
    assert r.headers["cache-control"] == "private, no-store"

    await app.state.records.put_token_session("sid-9", TokenSession(access_token="a", token_type="bearer"))
    r = await _get(app, "/private", cookie="site-session=sid-9")
    assert r.json() == {"session": "sid-9"}


@pytest.mark.anyio
async def test_https_requests_use_prefixed_cookies(make_app):
    app = make_app()
    r = await _get(app, "/auth/signin", base_url="https://test")
    (header,) = r.headers.get_list("set-cookie")
    assert header.startswith("__Host-oauth-session=")
    assert "secure" in header.lower()


@pytest.mark.anyio
async def test_forwarded_proto_ignored_without_trust_proxy(make_app):
    app = make_app()
    r = await _get(app, "/auth/signin", headers={"X-Forwarded-Proto": "https"})
    (header,) = r.headers.get_list("set-cookie")
    assert header.startswith("oauth-session=")


@pytest.mark.anyio
async def test_forwarded_proto_honored_with_trust_proxy(make_app):
    app = make_app(Settings(trust_proxy=True))
    r = await _get(app, "/auth/signin", headers={"X-Forwarded-Proto": "https, http"})
    (header,) = r.headers.get_list("set-cookie")
    assert header.startswith("__Host-oauth-session=")
    assert "secure" in header.lower()


@pytest.mark.anyio
async def test_security_headers_and_health(make_app):
    app = make_app()
    r = await _get(app, "/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers["x-content-type-options"] == "nosniff"
    assert r.headers["x-frame-options"] == "DENY"
    assert r.headers["referrer-policy"] == "strict-origin-when-cross-origin"
