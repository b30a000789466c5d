"""
Pytest configuration and shared fixtures for Passbind tests.
"""

import os
import tempfile

import pytest

# Set test environment before importing the app
_TMP_DIR = tempfile.mkdtemp(prefix="passbind-tests-")
os.environ["ENVIRONMENT"] = "testing"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/default.db"
os.environ["ADMIN_ADDRESSES"] = "0x" + "ad" * 20
os.environ["WEBAUTHN_RP_ID"] = ""

from backend.app import models  # noqa: E402,F401
from backend.app.db.base import Base  # noqa: E402
from backend.app.db.session import create_engine_for_url, create_session_factory  # noqa: E402

from tests.helpers import FakeClock  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database_url(tmp_path):
    # File-backed so concurrent sessions really contend for the same rows
    return f"sqlite+aiosqlite:///{tmp_path / 'passbind.db'}"


@pytest.fixture
async def engine(database_url):
    engine = create_engine_for_url(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session
