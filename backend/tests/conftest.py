"""
Shared fixtures.

The environment is pinned before the app is imported: an in-memory SQLite
store and an unreachable Redis, so the cache runs in memory.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://127.0.0.1:1")
for _key in ("GEMINI_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_API_KEY"):
    os.environ.pop(_key, None)

from datetime import date, datetime, timedelta, timezone

import httpx
import pytest

from app.db.database import create_engine_for, create_session_factory, init_db
from app.db.repository import MarketDataRepository
from app.schemas.market import DailyBar, Exchange, HistoricalSeries, Quote
from app.services.cache import MarketCache
from app.services.exchanges import BseClient, NseClient
from app.services.indicators import IndicatorService
from app.services.retry import RetryPolicy

NSE_URL = "https://nse.test"
BSE_URL = "https://bse.test"


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class UtcClock:
    """Naive UTC wall clock for the repository."""

    def __init__(self, start: datetime = datetime(2024, 6, 3, 10, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return MarketCache(clock=clock)


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def retry_policy():
    return RetryPolicy(attempts=3, base_delay=0.5, max_delay=8.0)


@pytest.fixture
async def nse_client(cache, retry_policy, sleeps):
    client = NseClient(cache=cache, base_url=NSE_URL, retry_policy=retry_policy, sleep=sleeps)
    yield client
    await client.close()


@pytest.fixture
async def bse_client(cache, retry_policy, sleeps):
    client = BseClient(cache=cache, base_url=BSE_URL, retry_policy=retry_policy, sleep=sleeps)
    yield client
    await client.close()


@pytest.fixture
def indicator_service(cache):
    return IndicatorService(cache=cache)


@pytest.fixture
def utc_clock():
    return UtcClock()


@pytest.fixture
async def repository(utc_clock):
    engine = create_engine_for("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield MarketDataRepository(session_factory=create_session_factory(engine), clock=utc_clock)
    await engine.dispose()


@pytest.fixture
async def api_client(nse_client, bse_client, repository, indicator_service):
    """HTTP client against the app with clients and store swapped for test doubles."""
    from app.db import get_market_data_repository
    from app.main import app
    from app.services.exchanges import get_bse_client, get_nse_client
    from app.services.indicators import get_indicator_service

    app.dependency_overrides[get_nse_client] = lambda: nse_client
    app.dependency_overrides[get_bse_client] = lambda: bse_client
    app.dependency_overrides[get_market_data_repository] = lambda: repository
    app.dependency_overrides[get_indicator_service] = lambda: indicator_service

    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============ Sample data ============


def make_quote(
    symbol: str = "RELIANCE",
    exchange: Exchange = Exchange.NSE,
    price: float = 2845.5,
    timestamp: datetime = datetime(2024, 6, 3, 9, 30, tzinfo=timezone.utc),
) -> Quote:
    return Quote(
        symbol=symbol,
        exchange=exchange,
        price=price,
        close=2800.0,
        change=price - 2800.0,
        change_percent=(price - 2800.0) / 2800.0 * 100,
        timestamp=timestamp,
        last_updated=timestamp,
    )


def make_series(
    symbol: str = "RELIANCE",
    start: date = date(2024, 1, 1),
    days: int = 5,
    base: float = 100.0,
    exchange: Exchange = Exchange.NSE,
) -> HistoricalSeries:
    bars = [
        DailyBar(
            date=start + timedelta(days=i),
            open=base + i,
            high=base + i + 2,
            low=base + i - 2,
            close=base + i + 1,
            volume=1000 + i,
            adjusted_close=base + i + 1,
        )
        for i in range(days)
    ]
    return HistoricalSeries(
        symbol=symbol,
        exchange=exchange,
        from_date=start,
        to_date=start + timedelta(days=days - 1),
        bars=bars,
    )
