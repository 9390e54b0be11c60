"""
Test configuration and fixtures for the vote tracker backend.
"""
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings
from connection_manager import UpdateBroker
from database import Store
from main import create_app


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=str(tmp_path),
        frontend_url="http://vote.test",
        keepalive_seconds=0.05,
        log_level="DEBUG",
    )


@pytest_asyncio.fixture
async def store(settings: Settings) -> AsyncGenerator[Store, None]:
    """A fresh SQLite file per test."""
    store = Store(settings.resolved_database_url)
    await store.init()
    yield store
    await store.dispose()


@pytest.fixture
def broker() -> UpdateBroker:
    return UpdateBroker()


@pytest_asyncio.fixture
async def db_session(store: Store) -> AsyncGenerator[AsyncSession, None]:
    async with store.session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def app(settings: Settings, store: Store, broker: UpdateBroker):
    # ASGITransport does not run the lifespan, so wire state by hand.
    app = create_app(settings)
    app.state.store = store
    app.state.broker = broker
    return app


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def make_room(client: AsyncClient):
    async def _make_room(**body) -> dict:
        resp = await client.post("/api/rooms", json=body)
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _make_room
