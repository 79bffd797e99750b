"""Pytest configuration and fixtures."""

import os
import uuid
from collections.abc import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment before importing app
os.environ["TESTING"] = "1"
os.environ["WEBHOOK_SWEEPER_ENABLED"] = "0"
os.environ["WEBHOOK_SWEEP_LOCK_ENABLED"] = "0"

from solarcrm.db.base import Base
from solarcrm.db.session import get_db
from solarcrm.main import app
from solarcrm.webhooks import models  # noqa: F401  (registers tables)
from solarcrm.webhooks.config import WebhookSettings
from solarcrm.webhooks.router import get_webhook_service
from solarcrm.webhooks.service import WebhookService

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class WebhookReceiver:
    """Stands in for tenant endpoints behind an httpx MockTransport.

    Replies with the queued responses in order, then repeats the last one.
    Each queued item is a status code, an ``httpx.Response`` or an exception
    instance to raise.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._replies: list = [200]

    def reply(self, *replies) -> None:
        self._replies = list(replies)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        if isinstance(reply, httpx.RequestError):
            reply.request = request
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(reply, text="ok" if 200 <= reply < 300 else "error")


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def receiver() -> WebhookReceiver:
    return WebhookReceiver()


@pytest.fixture
def webhook_settings() -> WebhookSettings:
    return WebhookSettings()


@pytest_asyncio.fixture
async def webhook_service(
    session_factory, receiver, webhook_settings
) -> AsyncGenerator[WebhookService, None]:
    """Service whose outbound HTTP goes to the in-memory receiver."""
    service = WebhookService(
        session_factory,
        settings=webhook_settings,
        transport=httpx.MockTransport(receiver),
    )
    yield service
    await service.shutdown(timeout=5)


@pytest.fixture
def tenant_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def register_endpoint(webhook_service, tenant_id) -> Callable:
    """Register an endpoint for the default tenant."""

    async def _register(events=("lead.created",), url="https://hooks.example.com/crm", **kwargs):
        return await webhook_service.register_endpoint(
            kwargs.pop("tenant_id", tenant_id), url, list(events), **kwargs
        )

    return _register


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, webhook_service) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with mocked dependencies."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_webhook_service] = lambda: webhook_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
