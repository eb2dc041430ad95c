"""API test fixtures -- AsyncClient against the app with dependency overrides."""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from supportdesk.api.auth import OrgContext, require_org
from supportdesk.api.deps import get_db, get_list_cache, get_redis_client
from supportdesk.api.main import create_app

ORG_A = "00000000-0000-4000-8000-0000000000aa"
ORG_B = "00000000-0000-4000-8000-0000000000bb"
USER_A = "00000000-0000-4000-8000-00000000a001"


@pytest.fixture
def make_app(session_factory, orgs):
    """Build an app bound to the SQLite session factory, acting as ``org_id``."""

    def _make(org_id: str = ORG_A, *, cache=None, redis_client=None):
        application = create_app()

        async def _db():
            async with session_factory() as session:
                yield session

        ctx = OrgContext(user_id=uuid.UUID(USER_A), org_id=uuid.UUID(org_id))
        application.dependency_overrides[get_db] = _db
        application.dependency_overrides[require_org] = lambda: ctx
        application.dependency_overrides[get_list_cache] = lambda: cache
        application.dependency_overrides[get_redis_client] = lambda: redis_client
        return application

    return _make


@pytest.fixture
async def make_client(make_app):
    """Factory for async clients that bypass lifespan; closed on teardown."""
    clients: list[AsyncClient] = []

    async def _make(org_id: str = ORG_A, **kwargs) -> AsyncClient:
        transport = ASGITransport(app=make_app(org_id, **kwargs))
        ac = AsyncClient(transport=transport, base_url="http://test")
        clients.append(ac)
        return ac

    yield _make
    for ac in clients:
        await ac.aclose()


@pytest.fixture
async def client(make_client):
    """Client acting as a member of ORG_A."""
    return await make_client(ORG_A)


@pytest.fixture
async def outsider(make_client):
    """Client acting as a member of ORG_B."""
    return await make_client(ORG_B)
