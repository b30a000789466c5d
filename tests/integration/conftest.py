"""
Fixtures for HTTP-level tests against the FastAPI app.

Each test gets its own SQLite file. Requests run through TestClient without
the lifespan, so tables are created here and get_db is overridden to use the
per-test engine.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from backend.app.db.base import Base
from backend.app.db.session import get_db
from backend.app.db.session import create_engine_for_url, create_session_factory
from backend.app.main import app


async def _create_tables(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
def api_session_factory(tmp_path):
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    asyncio.run(_create_tables(engine))
    yield create_session_factory(engine)
    asyncio.run(engine.dispose())


@pytest.fixture
def run_db(api_session_factory):
    """Run `operation(session)` against the test database and return its result."""

    def run(operation):
        async def runner():
            async with api_session_factory() as session:
                return await operation(session)

        return asyncio.run(runner())

    return run


@pytest.fixture
def client(api_session_factory):
    async def override_get_db():
        async with api_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
