import os
import warnings
from datetime import datetime

import pytest

# Set environment variables BEFORE importing app modules
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["POSTGRES_DSN"] = "sqlite+aiosqlite:///file:santa_tests?mode=memory&cache=shared&uri=true"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-32-chars-minimum!!"
os.environ["PAYMENTS_DEMO_MODE"] = "true"
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
os.environ["EMAIL_NOTIFICATIONS_ENABLED"] = "false"

warnings.filterwarnings("ignore", category=DeprecationWarning)

from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, update
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.api.deps import get_now
from app.core.config import settings
from app.core.gift_metrics import gift_metrics
from app.core.rate_limit import limiter
from app.db.session import Base, enable_sqlite_foreign_keys, get_db
from app.main import app
from app.models.models import User
from factories import register



def pytest_configure(config):
    warnings.filterwarnings("ignore", category=DeprecationWarning)


@pytest.fixture(scope="session", autouse=True)
def disable_rate_limiting():
    """Disable rate limiting for all tests."""
    original = settings.rate_limit_enabled
    settings.rate_limit_enabled = False
    yield
    settings.rate_limit_enabled = original


@pytest.fixture(autouse=True)
def reset_counters():
    limiter.reset()
    gift_metrics.reset()
    yield
    limiter.reset()
    gift_metrics.reset()


@pytest.fixture(autouse=True)
def session_factory(tmp_path):
    """Fresh SQLite file per test, shared by the app and by service-level tests."""
    db_path = tmp_path / "santa-test.db"
    from app.models import models as models_module
    _ = models_module
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    enable_sqlite_foreign_keys(engine)
    factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

    async def override_get_db():
        async with factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    yield factory
    app.dependency_overrides.clear()
    engine.sync_engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def set_now():
    """Pin the clock seen by the API, e.g. ``set_now(datetime(2025, 12, 15, 10))``."""

    def _set(value: datetime) -> datetime:
        app.dependency_overrides[get_now] = lambda: value
        return value

    return _set


@pytest.fixture
async def async_client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def parent_client(async_client):
    """Client signed in as a freshly registered parent."""
    await register(async_client)
    return async_client


@pytest.fixture
async def admin_client(session_factory):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        user = await register(client, name="Head Elf")
        async with session_factory() as session:
            await session.execute(update(User).where(User.id == user["id"]).values(is_admin=True))
            await session.commit()
        yield client
