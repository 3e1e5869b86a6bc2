"""
Shared fixtures: settings, an on-disk SQLite store, and an app wired to a
fake platform.
"""

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from storegate.config import Settings
from storegate.main import build_services, create_app
from storegate.tenants.db import create_engine_and_sessionmaker, create_tables
from storegate.tenants.store import TenantSessionStore

from .factories import (
    APP_URL,
    CLIENT_ID,
    CLIENT_SECRET,
    OLD_SESSION_SECRET,
    SESSION_SECRET,
    TENANT_ID,
    WEBHOOK_SECRET,
    FakePlatform,
)


def build_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        PLATFORM="bigcommerce",
        PLATFORM_CLIENT_ID=CLIENT_ID,
        PLATFORM_CLIENT_SECRET=CLIENT_SECRET,
        APP_URL=APP_URL,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'storegate-test.db'}",
        SESSION_SECRETS=f"{SESSION_SECRET},{OLD_SESSION_SECRET}",
        ENVIRONMENT="test",
        WEBHOOK_SECRET=WEBHOOK_SECRET,
        LOG_LEVEL="DEBUG",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path):
    """Non-production settings for the default platform"""
    return build_settings(tmp_path)


@pytest.fixture
def fake_platform():
    return FakePlatform()


@pytest_asyncio.fixture
async def store(tmp_path):
    """TenantSessionStore on a fresh SQLite database"""
    engine, session_factory = create_engine_and_sessionmaker(
        f"sqlite+aiosqlite:///{tmp_path / 'store-test.db'}"
    )
    await create_tables(engine)
    yield TenantSessionStore(session_factory)
    await engine.dispose()


def make_client(settings: Settings, fake_platform: FakePlatform) -> TestClient:
    services = build_services(settings, http_client=fake_platform.client())
    app = create_app(services=services)
    return TestClient(app, base_url="https://testserver", follow_redirects=False)


@pytest.fixture
def client(settings, fake_platform):
    """TestClient with the lifespan running (tables created, task queue started)"""
    with make_client(settings, fake_platform) as test_client:
        yield test_client


@pytest.fixture
def services(client):
    return client.app.state.services


@pytest.fixture
def installed_tenant(client, services):
    """Seed a stored session for the default tenant on the app's own event loop"""
    client.portal.call(
        services.store.upsert_session, TENANT_ID, "access-token-xyz", "store_v2_content", 42, "owner@example.com"
    )
    return TENANT_ID
