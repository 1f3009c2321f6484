"""API-specific test fixtures.

Requests go through ``httpx.ASGITransport`` in the pytest-asyncio loop, so the
route handlers share the SQLite engine installed by the root ``engine``
fixture. The app lifespan is not run; authentication is swapped out with
``dependency_overrides``.
"""

import httpx
import pytest

from gitanalyzer.api.routes.analyses import get_processor
from gitanalyzer.core.auth import AuthUser, require_auth
from gitanalyzer.queue.processor import AnalysisProcessor


@pytest.fixture
def api_app(engine):
    from gitanalyzer.main import create_app

    app = create_app()
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def login(api_app):
    """Authenticate subsequent requests as ``user_id``."""

    def _login(user_id: str = "user-1", admin: bool = False) -> AuthUser:
        claims = {"sub": user_id}
        if admin:
            claims["app_metadata"] = {"role": "admin"}
        user = AuthUser(user_id=user_id, claims=claims)
        api_app.dependency_overrides[require_auth] = lambda: user
        return user

    return _login


@pytest.fixture
async def client(api_app, login, gateway):
    """Client logged in as user-1 whose background jobs call the mock gateway."""
    login()
    api_app.dependency_overrides[get_processor] = lambda: AnalysisProcessor(client_factory=gateway.client_factory)

    transport = httpx.ASGITransport(app=api_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def anonymous_client(api_app):
    """Client without authentication overrides."""
    transport = httpx.ASGITransport(app=api_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
