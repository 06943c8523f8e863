"""
Session resolution tests: fail closed, never raise.
"""
from __future__ import annotations

import logging

import pytest

from oauth_sessions.flow import get_session_id
from oauth_sessions.kv_redis import RedisKeyValueStore
from oauth_sessions.records import RecordStore, TokenSession
from utils.fakes import FailingKeyValueStore, FakeRedis, make_request


TOKENS = TokenSession(access_token="a", token_type="bearer")


@pytest.mark.anyio
async def test_no_cookie_resolves_to_none(records):
    assert await get_session_id(make_request("http://example.com"), records) is None


@pytest.mark.anyio
async def test_unknown_identifier_resolves_to_none(records):
    request = make_request("http://example.com", cookie="site-session=nil")
    assert await get_session_id(request, records) is None


@pytest.mark.anyio
async def test_stored_identifier_resolves_to_itself(records):
    await records.put_token_session("sid-123", TOKENS)
    request = make_request("http://example.com", cookie="site-session=sid-123")
    assert await get_session_id(request, records) == "sid-123"


@pytest.mark.anyio
async def test_secure_transport_reads_prefixed_cookie(records):
    await records.put_token_session("sid-123", TOKENS)
    assert await get_session_id(make_request("https://example.com", cookie="__Host-site-session=sid-123"), records) == "sid-123"
    assert await get_session_id(make_request("https://example.com", cookie="site-session=sid-123"), records) is None


@pytest.mark.anyio
async def test_deleted_session_resolves_to_none(records):
    await records.put_token_session("sid-123", TOKENS)
    await records.delete_token_session("sid-123")
    request = make_request("http://example.com", cookie="site-session=sid-123")
    assert await get_session_id(request, records) is None


@pytest.mark.anyio
async def test_store_outage_resolves_to_none_and_logs(caplog: pytest.LogCaptureFixture):
    records = RecordStore(FailingKeyValueStore())
    request = make_request("http://example.com", cookie="site-session=sid-123")
    with caplog.at_level(logging.WARNING, logger="kv_oauth.flow"):
        assert await get_session_id(request, records) is None
    assert any("StoreUnavailableError" in r.getMessage() for r in caplog.records)
    assert not any("sid-123" in r.getMessage() for r in caplog.records)


@pytest.mark.anyio
async def test_malformed_record_resolves_to_none(kv, records, caplog: pytest.LogCaptureFixture):
    await kv.set("token_sessions:sid-bad", {"access_token": "a"})
    request = make_request("http://example.com", cookie="site-session=sid-bad")
    with caplog.at_level(logging.WARNING, logger="kv_oauth.records"):
        assert await get_session_id(request, records) is None
    assert any("TokenSession" in r.getMessage() for r in caplog.records)


@pytest.mark.anyio
async def test_undecodable_redis_value_resolves_to_none():
    client = FakeRedis()
    client.data["kv_oauth:token_sessions:sid"] = ("not-json", None)
    records = RecordStore(RedisKeyValueStore(client))
    request = make_request("http://example.com", cookie="site-session=sid")
    assert await get_session_id(request, records) is None
