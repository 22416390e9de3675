"""Tests for the document store repository on SQLite."""

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.db.database import create_engine_for, create_session_factory, init_db
from app.db.models import Container, Document
from app.db.repository import BULK_BATCH_SIZE, MarketDataRepository
from app.schemas.market import Exchange, TechnicalIndicators
from app.services.base import PersistenceError, RepositoryRateLimitedError, ValidationError

from conftest import make_quote, make_series


async def count_documents(repository: MarketDataRepository, container: str) -> int:
    async with repository._session_factory() as session:
        result = await session.execute(
            select(func.count()).select_from(Document).where(Document.container == container)
        )
        return result.scalar_one()


# ============ Quotes ============


async def test_saved_quote_is_latest(repository):
    quote = make_quote()
    await repository.save_quote(quote)

    assert await repository.get_latest_quote("reliance", "nse") == quote


async def test_latest_quote_orders_by_quote_time(repository):
    older = make_quote(price=2800.0, timestamp=datetime(2024, 6, 3, 9, 15, tzinfo=timezone.utc))
    newer = make_quote(price=2850.0, timestamp=datetime(2024, 6, 3, 9, 45, tzinfo=timezone.utc))
    await repository.save_quote(newer)
    await repository.save_quote(older)

    latest = await repository.get_latest_quote("RELIANCE", "NSE")
    assert latest.price == 2850.0


async def test_same_quote_written_twice_is_one_document(repository):
    quote = make_quote()
    await repository.save_quote(quote)
    await repository.save_quote(quote)

    assert await count_documents(repository, Container.MARKET_DATA) == 1


async def test_quotes_are_scoped_by_exchange(repository):
    await repository.save_quote(make_quote(exchange=Exchange.BSE))

    assert await repository.get_latest_quote("RELIANCE", "NSE") is None
    assert await repository.get_latest_quote("RELIANCE", "BSE") is not None


async def test_blank_symbol_rejected(repository):
    with pytest.raises(ValidationError):
        await repository.get_latest_quote("  ", "NSE")


async def test_expired_quote_is_invisible_and_purged(repository, utc_clock):
    await repository.save_quote(make_quote())

    utc_clock.advance(days=31)

    assert await repository.get_latest_quote("RELIANCE", "NSE") is None
    assert await repository.purge_expired() == 1
    assert await count_documents(repository, Container.MARKET_DATA) == 0


async def test_bulk_preserves_request_order_and_skips_missing(repository):
    for symbol in ("TCS", "INFY", "RELIANCE"):
        await repository.save_quote(make_quote(symbol=symbol))

    quotes = await repository.get_bulk(["reliance", "MISSING", "tcs", "TCS"], "NSE")

    assert [q.symbol for q in quotes] == ["RELIANCE", "TCS"]


async def test_bulk_batches_large_requests(repository, monkeypatch):
    symbols = [f"SYM{i:02d}" for i in range(BULK_BATCH_SIZE * 2 + 3)]
    for symbol in symbols:
        await repository.save_quote(make_quote(symbol=symbol))

    batches = []
    original = repository._latest_quotes_for

    async def recording(batch, exchange):
        batches.append(list(batch))
        return await original(batch, exchange)

    monkeypatch.setattr(repository, "_latest_quotes_for", recording)
    quotes = await repository.get_bulk(symbols, "NSE")

    assert [len(b) for b in batches] == [BULK_BATCH_SIZE, BULK_BATCH_SIZE, 3]
    assert [q.symbol for q in quotes] == symbols


async def test_bulk_returns_newest_per_symbol(repository):
    await repository.save_quote(make_quote(price=1.0, timestamp=datetime(2024, 6, 3, 9, 0, tzinfo=timezone.utc)))
    await repository.save_quote(make_quote(price=2.0, timestamp=datetime(2024, 6, 3, 10, 0, tzinfo=timezone.utc)))

    (quote,) = await repository.get_bulk(["RELIANCE"], "NSE")
    assert quote.price == 2.0


# ============ Historical ============


async def test_historical_round_trip(repository):
    series = make_series(days=5)
    await repository.save_historical(series)

    stored = await repository.get_historical("RELIANCE", "NSE", series.from_date, series.to_date)

    assert stored.bars == series.bars


async def test_historical_window_is_trimmed(repository):
    await repository.save_historical(make_series(start=date(2024, 1, 1), days=10))

    stored = await repository.get_historical("RELIANCE", "NSE", date(2024, 1, 3), date(2024, 1, 5))

    assert [bar.date for bar in stored.bars] == [date(2024, 1, 3), date(2024, 1, 4), date(2024, 1, 5)]
    assert stored.from_date == date(2024, 1, 3)


async def test_overlapping_ranges_merge_with_latest_write_winning(repository, utc_clock):
    await repository.save_historical(make_series(start=date(2024, 1, 1), days=5, base=100.0))
    utc_clock.advance(minutes=5)
    await repository.save_historical(make_series(start=date(2024, 1, 4), days=4, base=200.0))

    stored = await repository.get_historical("RELIANCE", "NSE", date(2024, 1, 1), date(2024, 1, 7))

    dates = [bar.date for bar in stored.bars]
    assert dates == [date(2024, 1, 1) + timedelta(days=i) for i in range(7)]
    assert len(set(dates)) == len(dates)
    by_date = {bar.date: bar.close for bar in stored.bars}
    assert by_date[date(2024, 1, 3)] == 103.0
    assert by_date[date(2024, 1, 4)] == 201.0


async def test_historical_same_range_is_one_document(repository):
    await repository.save_historical(make_series())
    await repository.save_historical(make_series(base=150.0))

    assert await count_documents(repository, Container.HISTORICAL_DATA) == 1


async def test_historical_empty_series_not_saved(repository):
    series = make_series()
    await repository.save_historical(series.model_copy(update={"bars": []}))

    assert await count_documents(repository, Container.HISTORICAL_DATA) == 0


async def test_historical_missing_is_none(repository):
    assert await repository.get_historical("TCS", "NSE", date(2024, 1, 1), date(2024, 1, 31)) is None


async def test_historical_invalid_range(repository):
    with pytest.raises(ValidationError):
        await repository.get_historical("TCS", "NSE", date(2024, 2, 1), date(2024, 1, 1))


async def test_historical_never_expires(repository, utc_clock):
    await repository.save_historical(make_series())
    utc_clock.advance(days=3650)

    assert await repository.purge_expired() == 0


# ============ Indicators ============


def make_indicators(calculated_at: datetime, rsi: float) -> TechnicalIndicators:
    return TechnicalIndicators(
        symbol="TCS",
        exchange=Exchange.NSE,
        calculated_at=calculated_at,
        rsi=rsi,
        support_levels=[3900.0],
        resistance_levels=[4100.0],
    )


async def test_latest_indicators_returned(repository):
    await repository.save_indicators(make_indicators(datetime(2024, 6, 1, tzinfo=timezone.utc), 40.0))
    await repository.save_indicators(make_indicators(datetime(2024, 6, 2, tzinfo=timezone.utc), 55.0))

    latest = await repository.get_indicators("tcs", "NSE")

    assert latest.rsi == 55.0
    assert latest.support_levels == [3900.0]
    assert await repository.get_indicators("TCS", "BSE") is None


async def test_indicators_expire_after_a_week(repository, utc_clock):
    await repository.save_indicators(make_indicators(datetime(2024, 6, 3, tzinfo=timezone.utc), 50.0))
    utc_clock.advance(days=8)

    assert await repository.get_indicators("TCS") is None


# ============ Failures ============


class LockedSession:
    async def __aenter__(self):
        raise OperationalError("INSERT INTO documents", {}, Exception("database is locked"))

    async def __aexit__(self, *exc_info):
        return False


class BrokenSession:
    async def __aenter__(self):
        raise OperationalError("SELECT 1", {}, Exception("unable to open database file"))

    async def __aexit__(self, *exc_info):
        return False


async def test_locked_store_is_rate_limited():
    repository = MarketDataRepository(session_factory=LockedSession)

    with pytest.raises(RepositoryRateLimitedError):
        await repository.save_quote(make_quote())


async def test_other_store_failures_are_persistence_errors():
    repository = MarketDataRepository(session_factory=BrokenSession)

    with pytest.raises(PersistenceError) as excinfo:
        await repository.get_latest_quote("RELIANCE", "NSE")
    assert not isinstance(excinfo.value, RepositoryRateLimitedError)


# ============ File-backed store ============


async def test_concurrent_writes_to_file_database_are_all_stored(tmp_path, utc_clock):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'marketdesk.db'}")
    await init_db(engine)
    repository = MarketDataRepository(
        session_factory=create_session_factory(engine), clock=utc_clock
    )
    symbols = [f"S{i}" for i in range(40)]

    await asyncio.gather(
        *[repository.save_quote(make_quote(symbol=s)) for s in symbols],
        *[repository.get_latest_quote(s, "NSE") for s in symbols[:10]],
    )

    stored = await repository.get_bulk(symbols, "NSE")
    assert [q.symbol for q in stored] == symbols
    await engine.dispose()
