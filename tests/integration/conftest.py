import pytest
import pytest_asyncio
import httpx
from datetime import datetime
from typing import AsyncGenerator, Callable, List

from rfq_desk.adapters.catalog import SQLModelCatalog
from rfq_desk.adapters.db_repository import SQLModelRepository
from rfq_desk.main import app, get_notifier
from rfq_desk.models import RFQTransition
from rfq_desk.service.ports import AbstractNotifier
from rfq_desk.service.rfq_service import RFQService
from shared.db import get_async_session
from shared.settings import settings

NOW = datetime(2026, 3, 1, 12, 0, 0)


class RecordingNotifier(AbstractNotifier):
    """Keeps every announced transition so tests can count them."""

    def __init__(self):
        self.transitions: List[RFQTransition] = []

    async def rfq_transitioned(self, transition: RFQTransition):
        self.transitions.append(transition)


class Clock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()

@pytest.fixture
def clock() -> Clock:
    return Clock()

@pytest_asyncio.fixture(scope="function")
async def seeded_catalog(session_factory):
    async with session_factory() as session:
        catalog = SQLModelCatalog(session)
        await catalog.add_product("P1", "Standard Widget", image_url="/img/p1.png", wholesale_price=10.0)
        await catalog.add_product("P2", "Heavy Gear", wholesale_price=42.0)
        await session.commit()

@pytest_asyncio.fixture(scope="function")
async def make_service(session_factory, notifier: RecordingNotifier, clock: Clock, seeded_catalog) -> AsyncGenerator[Callable, None]:
    """Builds an RFQService on its own session, the way one request or sweeper run would."""
    sessions = []

    def _make(repository_class=SQLModelRepository) -> RFQService:
        session = session_factory()
        sessions.append(session)
        return RFQService(
            db_repository=repository_class(session),
            catalog=SQLModelCatalog(session),
            notifier=notifier,
            session=session,
            clock=clock,
        )

    yield _make
    for session in sessions:
        await session.close()

@pytest_asyncio.fixture(scope="function")
async def http_client(session_factory, notifier: RecordingNotifier, seeded_catalog, monkeypatch) -> AsyncGenerator[httpx.AsyncClient, None]:
    # In-process app against the test database; identity comes from X-User-* headers
    async def override_session():
        async with session_factory() as session:
            yield session

    monkeypatch.setattr(settings, "TEST_AUTH_BYPASS", "true")
    app.dependency_overrides[get_async_session] = override_session
    app.dependency_overrides[get_notifier] = lambda: notifier
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://rfq-desk.test") as client:
        yield client
    app.dependency_overrides.clear()
