from __future__ import annotations

import datetime as dt
import uuid
from typing import AsyncGenerator, Callable, Dict, Generator

import pytest
import pytest_asyncio
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from coachsync.config import Settings
from coachsync.db import Base, get_db, utcnow
from coachsync.models.imported_record import ImportedRecord  # noqa: F401
from coachsync.models.integration import Integration
from coachsync.models.sync_log import SyncLog  # noqa: F401
from coachsync.services.integration_service import IntegrationService
from coachsync.services.oauth_service import OAuthService
from coachsync.services.provider_registry import ProviderRegistry
from tests.fakes import FakeProviderAPI

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def settings() -> Settings:
    """Settings with fixed secrets so signatures and state tokens are reproducible."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        base_url="https://coach.example.com",
        oauth_state_secret="test-state-secret",
        oauth_state_ttl_seconds=900,
        sync_timeout_seconds=5,
        strava_client_id="strava-client",
        strava_client_secret="strava-secret",
        strava_webhook_secret="strava-webhook-secret",
        strava_webhook_verify_token="verify-me",
        myfitnesspal_client_id="mfp-client",
        myfitnesspal_client_secret="mfp-secret",
        myfitnesspal_webhook_secret=None,
    )


# ---------------------------------------------------------------------------
# Async database (service and model tests)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_integration(db_session: AsyncSession) -> Callable:
    """Insert an Integration row with sensible defaults."""

    async def _make(**overrides) -> Integration:
        values = dict(_integration_defaults(), **overrides)
        integration = Integration(**values)
        db_session.add(integration)
        await db_session.commit()
        return integration

    return _make


def _integration_defaults() -> Dict:
    return {
        "user_id": uuid.uuid4(),
        "provider": "strava",
        "external_user_id": "abc123",
        "access_token": "AT1",
        "refresh_token": "RT1",
        "token_expires_at": utcnow() + dt.timedelta(hours=6),
        "is_active": True,
        "connected_at": utcnow(),
        "extra_metadata": {},
    }


# ---------------------------------------------------------------------------
# Provider HTTP fakes
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_api() -> FakeProviderAPI:
    return FakeProviderAPI()


@pytest.fixture
def integration_service_factory(settings: Settings, fake_api: FakeProviderAPI) -> Callable:
    """Build an IntegrationService whose outbound HTTP goes to fake_api."""

    def _build(session: AsyncSession, **overrides) -> IntegrationService:
        http = fake_api.client()
        service_settings = overrides.pop("settings", settings)
        return IntegrationService(
            session,
            oauth_service=OAuthService(service_settings, client=http),
            providers=overrides.pop("providers", ProviderRegistry(client=http)),
            settings=service_settings,
        )

    return _build


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@pytest.fixture
def database_path(tmp_path) -> str:
    return str(tmp_path / "coachsync_test.db")


@pytest.fixture
def sync_session(database_path: str) -> Generator[Session, None, None]:
    """Synchronous session on the API test database, used to seed and inspect rows."""
    sync_engine = create_engine(f"sqlite:///{database_path}")
    Base.metadata.create_all(sync_engine)
    with Session(sync_engine, expire_on_commit=False) as session:
        yield session
    sync_engine.dispose()


@pytest.fixture
def seed_integration(sync_session: Session) -> Callable:
    def _seed(**overrides) -> Integration:
        integration = Integration(**dict(_integration_defaults(), **overrides))
        sync_session.add(integration)
        sync_session.commit()
        return integration

    return _seed


@pytest.fixture
def client(
    sync_session: Session,
    database_path: str,
    settings: Settings,
    fake_api: FakeProviderAPI,
    monkeypatch,
) -> Generator[TestClient, None, None]:
    """Create a test client bound to the API test database and fake providers."""
    import coachsync.config as config_module
    from coachsync.api.integrations import get_integration_service
    from coachsync.main import app
    from coachsync.services.stale_sync_reaper import stale_sync_reaper

    api_engine = create_async_engine(f"sqlite+aiosqlite:///{database_path}", poolclass=NullPool)
    api_session_factory = sessionmaker(api_engine, expire_on_commit=False, class_=AsyncSession)

    monkeypatch.setattr(config_module, "_settings", settings)
    monkeypatch.setattr(stale_sync_reaper, "settings", settings)
    monkeypatch.setattr(stale_sync_reaper, "session_factory", api_session_factory)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with api_session_factory() as session:
            yield session

    def override_get_integration_service(
        session: AsyncSession = Depends(get_db),
    ) -> IntegrationService:
        http = fake_api.client()
        return IntegrationService(
            session,
            oauth_service=OAuthService(settings, client=http),
            providers=ProviderRegistry(client=http),
            settings=settings,
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_integration_service] = override_get_integration_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
