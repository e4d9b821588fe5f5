"""Pytest configuration and shared fixtures."""
from datetime import timedelta

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from hookrelay.config import Settings
from hookrelay.models.base import Base, utcnow
from hookrelay.models.endpoint import WebhookEndpoint
from hookrelay.models.event import TransactionEvent  # noqa: F401
from hookrelay.models.job import DeliveryJob  # noqa: F401
from hookrelay.models.webhook import DeliveryLogEntry  # noqa: F401
from hookrelay.services.event_log import EventLog


PRODUCER_ID = "producer-1"
OTHER_PRODUCER_ID = "producer-2"


class Clock:
    """Mutable clock passed to workers in place of utcnow."""

    def __init__(self, now=None):
        self.now = now or utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class Receiver:
    """Webhook receiver behind httpx.MockTransport.

    Answers with the queued statuses in order; the last one repeats. A status
    of None raises a read timeout instead.
    """

    def __init__(self, *statuses):
        self.statuses = list(statuses) or [200]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if status is None:
            raise httpx.ReadTimeout("timed out", request=request)
        body = "ok" if 200 <= status < 300 else "receiver exploded"
        return httpx.Response(status, text=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine so separate sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hookrelay.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def test_settings():
    return Settings(
        SENTRY_DSN=None,
        WEBHOOK_BATCH_SIZE=50,
        WEBHOOK_CONCURRENCY=5,
        WEBHOOK_TIMEOUT_SECONDS=5.0,
        WEBHOOK_MAX_ATTEMPTS=3,
        WEBHOOK_REPLAY_MAX_ATTEMPTS=1,
        WEBHOOK_STALE_CLAIM_SECONDS=300,
    )


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def make_endpoint(db):
    """Factory for webhook endpoints owned by PRODUCER_ID by default."""

    async def _make(**overrides) -> WebhookEndpoint:
        values = {
            "producer_id": PRODUCER_ID,
            "name": "Orders",
            "url": "https://receiver.example.com/hooks",
            "secret": "whsec_test",
            "event_types": ["compra.aprovada"],
            "is_active": True,
        }
        values.update(overrides)
        endpoint = WebhookEndpoint(**values)
        db.add(endpoint)
        await db.commit()
        await db.refresh(endpoint)
        return endpoint

    return _make


@pytest.fixture
def make_event(db):
    """Factory for transaction events owned by PRODUCER_ID by default."""

    async def _make(**overrides) -> TransactionEvent:
        values = {
            "producer_id": PRODUCER_ID,
            "event_type": "compra.aprovada",
            "metadata": {"amount": 9990, "currency": "BRL"},
            "sale_id": "sale-1",
        }
        values.update(overrides)
        return await EventLog(db).append_event(**values)

    return _make
