import os
import tempfile

# Point the app at a throwaway SQLite file before anything imports the engine.
_TMP_DIR = tempfile.mkdtemp(prefix="socialpulse-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}"

SETTINGS_ENV = (
    "LEMONSQUEEZY_API_KEY",
    "LEMONSQUEEZY_STORE_ID",
    "LEMONSQUEEZY_STORE_SLUG",
    "LEMONSQUEEZY_WEBHOOK_SECRET",
    "LEMONSQUEEZY_API_BASE",
    "LEMONSQUEEZY_STARTER_VARIANT_ID",
    "LEMONSQUEEZY_PRO_VARIANT_ID",
    "PAYMENTS_TIMEOUT_SECONDS",
    "USAGE_PERIOD_ALIGNMENT",
    "USAGE_PERIOD_TIMEZONE",
    "WEBHOOK_FAILURE_POLICY",
    "ADMIN_API_KEY",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
)
for _name in SETTINGS_ENV:
    os.environ.pop(_name, None)

import httpx
import pytest
import pytest_asyncio

from socialpulse.api.deps import get_billing_service
from socialpulse.config.settings import Settings
from socialpulse.main import app
from socialpulse.models import Profile
from socialpulse.services.billing import BillingService
from socialpulse.utils.database import AsyncSessionLocal, Base, engine


@pytest_asyncio.fixture
async def db_engine():
    """Fresh schema per test; the pool is dropped so no connection outlives its event loop"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_engine):
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_settings(monkeypatch):
    """Build Settings from the given environment, e.g. make_settings(LEMONSQUEEZY_API_KEY="k")"""
    def _make(**env):
        for name, value in env.items():
            monkeypatch.setenv(name, str(value))
        return Settings()
    return _make


@pytest_asyncio.fixture
async def processor(client, make_settings):
    """Route the billing service through a fake LemonSqueezy API: processor(handler, **env)"""
    clients = []

    def _install(handler, **env):
        env.setdefault("LEMONSQUEEZY_API_KEY", "ls_test_key")
        env.setdefault("LEMONSQUEEZY_STORE_ID", "9999")
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(http)
        service = BillingService(make_settings(**env), http)
        app.dependency_overrides[get_billing_service] = lambda: service
        return service

    yield _install
    for http in clients:
        await http.aclose()


@pytest.fixture
def add_profile(db_session):
    async def _add(user_id: str, tier: str = "free", status=None):
        db_session.add(Profile(
            id=user_id,
            email=f"{user_id}@example.com",
            subscription_tier=tier,
            subscription_status=status,
        ))
        await db_session.commit()
    return _add
