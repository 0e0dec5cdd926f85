"""
Pytest configuration and fixtures
"""
import asyncio
import os

# Settings are read at import time; point them at test values first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./salescredit-test.db")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("CREATE_TABLES_ON_STARTUP", "false")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

import salescredit.models  # noqa: F401
from salescredit.core.errors import ExternalServiceError
from salescredit.core.identity import Principal, Role
from salescredit.db import Base, get_db
from salescredit.schemas.credit import MemberTier
from salescredit.schemas.extraction import RawExtraction
from salescredit.services.events import EventPublisher, get_event_publisher
from salescredit.services.extraction import ExtractionAdapter, get_extraction_adapter


class FakeProvider:
    """Extraction provider double: returns `raw`, raises `error`, or sleeps past the timeout."""

    def __init__(self, raw=None, error=None, delay=0.0):
        self.raw = raw
        self.error = error
        self.delay = delay
        self.calls = []

    async def complete(self, text, history):
        self.calls.append((text, list(history)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.raw


class RecordingSink:
    def __init__(self):
        self.events = []

    async def send(self, name, payload):
        self.events.append((name, payload))


def raw_extraction(category="consultation", confidence=0.92, **overrides) -> RawExtraction:
    payload = {
        "assistance_type": category,
        "confidence": confidence,
        "products": ["yoga mat"],
        "customer_details": "Sarah",
        "time_of_sale": "2pm",
        "reply_text": "Thanks for helping Sarah with the yoga mat!",
    }
    payload.update(overrides)
    return RawExtraction(**payload)


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'credits.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def provider():
    return FakeProvider(raw=raw_extraction())


@pytest.fixture
def adapter(provider):
    return ExtractionAdapter(provider, timeout_seconds=0.5, max_turns=4, fallback_confidence=0.3)


@pytest.fixture
def timeout_adapter():
    return ExtractionAdapter(FakeProvider(raw=raw_extraction(), delay=1.0), timeout_seconds=0.05)


@pytest.fixture
def failing_adapter():
    return ExtractionAdapter(FakeProvider(error=ExternalServiceError("provider down")))


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def publisher(sink):
    return EventPublisher(sink)


@pytest.fixture
def member():
    return Principal(member_id="member-1")


@pytest.fixture
def premium_member():
    return Principal(member_id="member-2", tier=MemberTier.PREMIUM)


@pytest.fixture
def staff():
    return Principal(member_id="staff-1", role=Role.STAFF)


@pytest.fixture
async def client(session_factory, adapter, publisher):
    """HTTP client bound to the app with test database and fake collaborators."""
    from salescredit.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_extraction_adapter] = lambda: adapter
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


def headers(member_id, role="member", tier="basic"):
    return {"X-Member-Id": member_id, "X-Member-Role": role, "X-Member-Tier": tier}
