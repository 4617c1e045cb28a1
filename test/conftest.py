"""
Pytest configuration and fixtures.

Tests run against a file-backed sqlite database per test so that the
request path, the intake and the job handlers can each open their own
session and still see the same data.
"""
from __future__ import annotations

import os

os.environ.setdefault("APP_ENV", "dev")
os.environ.setdefault("WORKERS_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any
from uuid import UUID

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.calls.models import CallDirection, CallRecord, CallStatus
from app.campaigns.models import Campaign
from app.main import create_app
from app.shared import database
from app.shared.database import Base, DatabaseManager, get_db_session
from app.telephony.adapters.mock import InMemoryVoiceProvider
from app.tenants.models import Tenant, TenantPhoneNumber

WEBHOOK_SECRET = "whsec_test_secret"


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def db_manager(
    session_factory: async_sessionmaker[AsyncSession],
    monkeypatch: pytest.MonkeyPatch,
) -> DatabaseManager:
    """Database manager bound to the test database and installed globally."""
    manager = DatabaseManager("sqlite+aiosqlite://")
    manager.use_session_factory(session_factory)
    monkeypatch.setattr(database, "_db_manager", manager)
    return manager


@pytest.fixture
def voice_provider() -> InMemoryVoiceProvider:
    return InMemoryVoiceProvider()


@pytest_asyncio.fixture
async def tenant(db_session: AsyncSession) -> Tenant:
    """Tenant with its own webhook secret and one mapped phone number."""
    tenant = Tenant(
        name="Acme Solar",
        webhook_secret=WEBHOOK_SECRET,
        voice_api_key="vapi-tenant-key",
        settings={},
    )
    db_session.add(tenant)
    await db_session.flush()
    db_session.add(TenantPhoneNumber(tenant_id=tenant.id, phone_number="+442071234567", active=True))
    await db_session.commit()
    return tenant


@pytest_asyncio.fixture
async def campaign(db_session: AsyncSession, tenant: Tenant) -> Campaign:
    campaign = Campaign(tenant_id=tenant.id, name="Spring outreach", assistant_id="asst_123")
    db_session.add(campaign)
    await db_session.commit()
    return campaign


@pytest.fixture
def make_call(db_session: AsyncSession):
    """Factory inserting a committed CallRecord."""

    async def _make(**fields: Any) -> CallRecord:
        fields.setdefault("status", CallStatus.QUEUED)
        fields.setdefault("direction", CallDirection.OUTBOUND)
        fields.setdefault("call_metadata", {})
        record = CallRecord(**fields)
        db_session.add(record)
        await db_session.commit()
        return record

    return _make


def vapi_message(
    event_type: str,
    call_id: str | None = "call-ext-001",
    tenant_id: UUID | None = None,
    event_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    **fields: Any,
) -> dict[str, Any]:
    """Build a provider webhook body in the wrapped ``{"message": ...}`` form."""
    call: dict[str, Any] = {"type": "outboundPhoneCall"}
    if call_id is not None:
        call["id"] = call_id
    call_metadata = {key: str(value) for key, value in (metadata or {}).items()}
    if tenant_id is not None:
        call_metadata["tenant_id"] = str(tenant_id)
    if call_metadata:
        call["metadata"] = call_metadata
    message: dict[str, Any] = {"type": event_type, "call": call, **fields}
    body: dict[str, Any] = {"message": message}
    if event_id is not None:
        body["id"] = event_id
    return body


@pytest_asyncio.fixture
async def async_client(
    db_session: AsyncSession,
    db_manager: DatabaseManager,
) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API tests."""
    app = create_app()

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db_session] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
