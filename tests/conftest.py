"""Shared test fixtures."""

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from src.cm_common.database import get_db_session
from src.main import app
from tests.unit.fakes import FakeSession


@pytest.fixture
def db_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
async def client(db_session: FakeSession) -> AsyncIterator[AsyncClient]:
    """Async HTTP client for testing FastAPI endpoints.

    The database dependency is replaced by a FakeSession; tests swap the
    router-level services for ones backed by in-memory repositories.
    """

    async def _session() -> AsyncIterator[FakeSession]:
        yield db_session

    app.dependency_overrides[get_db_session] = _session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
