from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from studentplan.db.models import Base
from studentplan.plan.models import RawScheduleEvent

# Use in-memory SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

UTC = ZoneInfo("UTC")


def make_event(day: str, start: str, end: str, **fields) -> RawScheduleEvent:
    """RawScheduleEvent on `day` (YYYY-MM-DD) between HH:MM times, in UTC."""
    return RawScheduleEvent(
        start=datetime.fromisoformat(f"{day}T{start}:00").replace(tzinfo=UTC),
        end=datetime.fromisoformat(f"{day}T{end}:00").replace(tzinfo=UTC),
        **fields,
    )


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeFetcher:
    """Stands in for PlanFetcher; each call pops the next queued result (list or exception)."""

    def __init__(self, range_results=None, full_results=None, search_results=None):
        self.tz = UTC
        self.range_results = list(range_results or [])
        self.full_results = list(full_results or [])
        self.search_results = list(search_results or [])
        self.range_calls: list[tuple[str, date, date]] = []
        self.full_calls: list[str] = []
        self.search_calls: list[tuple[str, str, date, date]] = []

    @staticmethod
    def _next(queue):
        result = queue.pop(0) if queue else []
        if isinstance(result, Exception):
            raise result
        return result

    def fetch_range(self, album_id, start, end, diagnostics=None):
        self.range_calls.append((album_id, start, end))
        return self._next(self.range_results)

    def fetch_full(self, album_id, diagnostics=None):
        self.full_calls.append(album_id)
        return self._next(self.full_results)

    def fetch_search(self, category, query, start, end, diagnostics=None):
        self.search_calls.append((category, query, start, end))
        return self._next(self.search_results)

    def fetch_suggestions(self, kind, query):
        return [f"{kind}:{query}"]


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def engine():
    # Use StaticPool to persist state in memory across connections
    engine = create_async_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session
        await session.rollback()
