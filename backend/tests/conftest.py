"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend (the adapters target asyncio) and
make `backend/` plus the shared test utilities importable without an install.
"""
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(BACKEND_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

from oauth_sessions.kv import MemoryKeyValueStore  # noqa: E402
from oauth_sessions.records import RecordStore  # noqa: E402
from utils.fakes import FakeOAuth2Client  # noqa: E402
from web.config import Settings  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def records(kv):
    return RecordStore(kv)


@pytest.fixture
def oauth_client():
    return FakeOAuth2Client()


@pytest.fixture
def make_app(kv, oauth_client):
    """Build an isolated app around the per-test store and fake OAuth client."""
    from web.main import create_app

    def _make(settings: Settings | None = None, **overrides):
        return create_app(
            settings or Settings(),
            kv=overrides.get("kv", kv),
            oauth_client=overrides.get("oauth_client", oauth_client),
        )

    return _make
