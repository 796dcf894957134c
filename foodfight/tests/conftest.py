"""
Shared fixtures: a fresh SQLite file database per test, independent
sessions for concurrency tests, and an HTTP client bound to it.
"""
import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import random

import pytest
from httpx import AsyncClient, ASGITransport

from foodfight.database import create_engine_for, create_session_factory, init_db, get_db
from foodfight.security.identity import create_access_token
from foodfight.services.lifecycle_service import LifecycleService


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'foodfight.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def auth_headers():
    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}
    return _headers


@pytest.fixture
async def client(session_factory):
    from foodfight.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_session(db):
    """Create a nominating session with the given candidate names."""
    async def _make(names, mode="bracket", creator_id="alice", name="Lunch"):
        session = await LifecycleService.create_session(db, name, creator_id, mode=mode)
        candidates = [
            await LifecycleService.nominate(db, session.id, creator_id, candidate_name)
            for candidate_name in names
        ]
        return session, candidates
    return _make
