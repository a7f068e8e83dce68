"""
API test fixtures.

Requests go through the real application over ``httpx.ASGITransport``.
The database dependency is bound to the test session; the caller identity
is overridden with ``login`` unless a test exercises the JWT path itself.
"""

from typing import AsyncGenerator, Callable

import pytest
from httpx import ASGITransport, AsyncClient

from marketplace.api.deps import get_current_actor
from marketplace.core.actor import Actor
from marketplace.database.connection import get_db
from marketplace.main import app


@pytest.fixture
async def api_client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the application, sharing the test session."""

    async def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def login(api_client) -> Callable[[Actor], None]:
    """Make subsequent requests run as ``actor``."""

    def _login(actor: Actor) -> None:
        app.dependency_overrides[get_current_actor] = lambda: actor

    return _login
