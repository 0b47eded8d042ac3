"""Service test fixtures — async KV database, fake Linear gateway and FastAPI test client.

Invariants:
    - Every test gets a fresh in-memory SQLite database
    - get_db overridden to use the test DB; get_linear overridden to the fake gateway
    - db_manager patched so the readiness check sees the test engine
    - Move tracking (in-flight set, throttle table) reset around every test

Design Decisions:
    - StaticPool: one shared connection keeps the in-memory DB alive across sessions
    - Identity travels as X-User-* headers, the same way the gateway sends it
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import portal.infrastructure.database as db_module
from portal.api.dependencies import get_linear
from portal.config import get_settings
from portal.db.base import Base
from portal.infrastructure.database import DatabaseSessionManager, get_db
from portal.infrastructure.kv_store import KVStore
from portal.main import app
from portal.models.kv_entry import KVEntry  # noqa: F401 (registers the table)
from portal.services.issue_moves import reset_move_tracking
from tests.services.fake_linear import FakeLinearClient

SUPERADMIN_EMAIL = "root@example.com"


def auth_headers(user_id: str, email: str, name: str | None = None) -> dict:
    headers = {"X-User-Id": user_id, "X-User-Email": email}
    if name:
        headers["X-User-Name"] = name
    return headers


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://", echo=False, poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
async def kv(test_db):
    return KVStore(test_db)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def linear():
    return FakeLinearClient()


@pytest.fixture(autouse=True)
def _reset_moves():
    reset_move_tracking()
    yield
    reset_move_tracking()


@pytest.fixture
async def client(test_engine, test_session_factory, linear):
    """FastAPI test client with DB and Linear dependencies overridden."""
    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    async def override_get_linear():
        yield linear

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_linear] = override_get_linear

    original_manager = db_module.db_manager
    fake_manager = DatabaseSessionManager.__new__(DatabaseSessionManager)
    fake_manager.engine = test_engine
    fake_manager._session_factory = test_session_factory
    db_module.db_manager = fake_manager

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
    db_module.db_manager = original_manager


# ─── Identities ──────────────────────────────────────────────────

@pytest.fixture
async def superadmin_headers(kv):
    """Headers for a caller on the KV superadmin list."""
    await kv.set("superadmin:emails", [SUPERADMIN_EMAIL])
    return auth_headers("u-root", SUPERADMIN_EMAIL, "Root User")


@pytest.fixture
def admin_headers():
    """Internal-domain caller: created as admin on first request."""
    return auth_headers("u-admin", "ops@teifi.com", "Ops Admin")


@pytest.fixture
async def client_user_headers(kv):
    """External caller stored as client_user."""
    await kv.set("user:u-client", {
        "id": "u-client",
        "email": "jane@acme.com",
        "role": "client_user",
        "status": "active",
        "createdAt": "2026-01-01T00:00:00Z",
        "metadata": {"name": "Jane Client"},
    })
    await kv.set("user:u-client:customers", [])
    return auth_headers("u-client", "jane@acme.com", "Jane Client")


@pytest.fixture
def viewer_headers():
    """External caller created as viewer on first request."""
    return auth_headers("u-viewer", "viewer@outside.io", "Vee Viewer")
