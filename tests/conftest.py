"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from genesis.main import create_app
from genesis.stage.service import StageService
from genesis.state.memory import InMemoryStateStore
from helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest_asyncio.fixture
async def service(store: InMemoryStateStore) -> AsyncGenerator[StageService, None]:
    """Stage service over a fresh in-memory store."""
    svc = StageService(store)
    yield svc
    await svc.close()


@pytest_asyncio.fixture
async def app_and_client() -> AsyncGenerator[tuple, None]:
    """App wired to an in-memory store plus an httpx client for it."""
    app = create_app(store=InMemoryStateStore())
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield app, ac
    await app.state.stage_service.close()
    app.state.broadcaster.stop()


@pytest_asyncio.fixture
async def client(app_and_client: tuple) -> AsyncClient:
    """Async HTTP test client (lifespan not run; the store is injected)."""
    return app_and_client[1]
