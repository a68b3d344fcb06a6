"""
Pytest fixtures for the ordering core.

Each test gets its own SQLite file (through aiosqlite), a seeded menu, an
in-memory publisher and a lifecycle engine driven by a controllable clock.
"""
import os

os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./order_desk_test.db"
os.environ["TIMEZONE"] = "UTC"

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import httpx
import pytest
import pytest_asyncio

from order_desk.database import build_engine, build_session_maker, get_db, init_db
from order_desk.main import app, get_lifecycle_engine
from order_desk.models import Merchandise, MerchandiseType
from order_desk.services.notifications import InMemoryPublisher, NotificationEmitter, get_publisher
from order_desk.services.orders import OrderLifecycleEngine


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def clock():
    """Clock pinned to the middle of a business day."""
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Fresh database file with every table created."""
    engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'order_desk.db'}",
        connect_args={"timeout": 30},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return build_session_maker(db_engine)


@pytest_asyncio.fixture
async def menu(session_maker):
    """
    Seeded catalog, keyed by a short name.

    sold_out exists but is switched off.
    """
    items = {
        "ramen": Merchandise(name="Ramen", price=800, type=MerchandiseType.BASE_ITEM),
        "large_ramen": Merchandise(name="Large Ramen", price=950, type=MerchandiseType.BASE_ITEM),
        "egg": Merchandise(name="Soft-boiled Egg", price=100, type=MerchandiseType.TOPPING),
        "chashu": Merchandise(name="Chashu", price=200, type=MerchandiseType.TOPPING),
        "student": Merchandise(name="Student Discount", price=-50, type=MerchandiseType.DISCOUNT),
        "sold_out": Merchandise(
            name="Seasonal Ramen",
            price=1200,
            type=MerchandiseType.BASE_ITEM,
            is_available=False,
        ),
    }
    async with session_maker() as session:
        async with session.begin():
            session.add_all(items.values())
    return items


@pytest.fixture
def publisher():
    return InMemoryPublisher(queue_size=100)


@pytest.fixture
def lifecycle(session_maker, publisher, clock):
    """Lifecycle engine wired to the test database and publisher."""
    return OrderLifecycleEngine(
        session_factory=session_maker,
        emitter=NotificationEmitter(publisher, clock=clock),
        tz=ZoneInfo("UTC"),
        clock=clock,
        max_attempts=50,
        retry_backoff=0.005,
    )


@pytest_asyncio.fixture
async def client(session_maker, publisher, lifecycle):
    """HTTP client talking to the app in-process with test dependencies."""

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_publisher] = lambda: publisher
    app.dependency_overrides[get_lifecycle_engine] = lambda: lifecycle

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()
