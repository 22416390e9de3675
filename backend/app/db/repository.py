"""
Market Data Repository

Persists quotes, historical ranges and indicator sets as JSON documents and
answers latest-value queries.

CONTRACT:
- Writes are upserts keyed by (container, id); repeating a write with the
  same key leaves one document.
- Expired documents are invisible to reads and removed by purge_expired().
- A busy store raises RepositoryRateLimitedError (retryable); any other
  store failure raises PersistenceError.
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import AsyncIterator, Callable, Optional, Sequence

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import Container, Document
from app.schemas.market import (
    DailyBar,
    Exchange,
    HistoricalSeries,
    Quote,
    TechnicalIndicators,
)
from app.services.base import (
    PersistenceError,
    RepositoryRateLimitedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

QUOTE_TTL_SECONDS = 30 * 24 * 3600
INDICATORS_TTL_SECONDS = 7 * 24 * 3600
BULK_BATCH_SIZE = 10

_BUSY_MARKERS = ("database is locked", "database is busy")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _naive_utc(value: datetime) -> datetime:
    """Stored timestamps are naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def quote_partition(symbol: str, exchange: str) -> str:
    return f"{symbol}_{exchange}"


def historical_partition(symbol: str, exchange: str, from_date: date) -> str:
    return f"{symbol}_{exchange}_{from_date:%Y%m}"


class MarketDataRepository:
    """Document store for market data, backed by a SQLAlchemy async session factory."""

    service_name = "MarketDataRepository"

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if session_factory is None:
            from app.db.database import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory
        self._clock = clock

    # ============ Helpers ============

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session and translate store failures into the service taxonomy."""
        try:
            async with self._session_factory() as session:
                yield session
        except OperationalError as e:
            if any(marker in str(e).lower() for marker in _BUSY_MARKERS):
                logger.warning(f"Document store busy during {operation}: {e}")
                raise RepositoryRateLimitedError(
                    self.service_name, f"Store busy during {operation}"
                ) from e
            logger.error(f"Document store error during {operation}: {e}")
            raise PersistenceError(self.service_name, f"Failed to {operation}") from e
        except SQLAlchemyError as e:
            logger.error(f"Document store error during {operation}: {e}")
            raise PersistenceError(self.service_name, f"Failed to {operation}") from e

    def _not_expired(self):
        return or_(Document.expires_at.is_(None), Document.expires_at > self._clock())

    def _require(self, **values: Optional[str]) -> list[str]:
        normalized = []
        for field, value in values.items():
            if value is None or not str(value).strip():
                raise ValidationError(self.service_name, f"{field.capitalize()} cannot be empty")
            normalized.append(str(value).strip().upper())
        return normalized

    async def _upsert(self, operation: str, document: Document) -> None:
        written_at = self._clock()
        document.written_at = written_at
        document.expires_at = Document.expiry_for(written_at, document.ttl)
        async with self._session(operation) as session:
            async with session.begin():
                await session.merge(document)

    # ============ Quotes ============

    async def save_quote(self, quote: Quote) -> None:
        """Upsert a quote snapshot; one document per symbol, exchange and second."""
        exchange = quote.exchange.value
        document = Document(
            container=Container.MARKET_DATA,
            id=f"{quote.symbol}_{exchange}_{quote.timestamp:%Y%m%d%H%M%S}",
            partition_key=quote_partition(quote.symbol, exchange),
            symbol=quote.symbol,
            exchange=exchange,
            sort_ts=_naive_utc(quote.timestamp),
            body=quote.model_dump(mode="json"),
            ttl=QUOTE_TTL_SECONDS,
        )
        await self._upsert("save quote", document)
        logger.debug(f"Saved quote for {quote.symbol} ({exchange})")

    async def get_latest_quote(self, symbol: str, exchange: str) -> Optional[Quote]:
        """Newest unexpired quote for the pair, or None."""
        symbol, exchange = self._require(symbol=symbol, exchange=exchange)

        async with self._session("get latest quote") as session:
            result = await session.execute(
                select(Document.body)
                .where(
                    Document.container == Container.MARKET_DATA,
                    Document.partition_key == quote_partition(symbol, exchange),
                    self._not_expired(),
                )
                .order_by(Document.sort_ts.desc())
                .limit(1)
            )
            body = result.scalar_one_or_none()

        if body is None:
            logger.debug(f"No stored quote for {symbol} on {exchange}")
            return None
        return Quote.model_validate(body)

    async def get_bulk(self, symbols: Sequence[str], exchange: str) -> list[Quote]:
        """
        Latest quote for each symbol, in request order.

        Symbols are queried in batches of ten; symbols with no stored quote
        are left out.
        """
        (exchange,) = self._require(exchange=exchange)
        wanted = list(dict.fromkeys(s.strip().upper() for s in symbols if s and s.strip()))
        if not wanted:
            return []

        latest: dict[str, Quote] = {}
        for start in range(0, len(wanted), BULK_BATCH_SIZE):
            batch = wanted[start:start + BULK_BATCH_SIZE]
            latest.update(await self._latest_quotes_for(batch, exchange))

        quotes = [latest[symbol] for symbol in wanted if symbol in latest]
        logger.info(f"Retrieved {len(quotes)} stored quotes of {len(wanted)} requested from {exchange}")
        return quotes

    async def _latest_quotes_for(self, symbols: list[str], exchange: str) -> dict[str, Quote]:
        newest = (
            select(Document.symbol, func.max(Document.sort_ts).label("max_ts"))
            .where(
                Document.container == Container.MARKET_DATA,
                Document.exchange == exchange,
                Document.symbol.in_(symbols),
                self._not_expired(),
            )
            .group_by(Document.symbol)
            .subquery()
        )
        async with self._session("get bulk quotes") as session:
            result = await session.execute(
                select(Document.symbol, Document.body).join(
                    newest,
                    and_(
                        Document.symbol == newest.c.symbol,
                        Document.sort_ts == newest.c.max_ts,
                    ),
                ).where(
                    Document.container == Container.MARKET_DATA,
                    Document.exchange == exchange,
                )
            )
            rows = result.all()

        return {symbol: Quote.model_validate(body) for symbol, body in rows}

    # ============ Historical ============

    async def save_historical(self, series: HistoricalSeries) -> None:
        """Upsert a historical range. Empty series are skipped."""
        if not series.bars:
            logger.warning(f"No daily bars to save for {series.symbol} ({series.exchange.value})")
            return

        exchange = series.exchange.value
        document = Document(
            container=Container.HISTORICAL_DATA,
            id=f"{series.symbol}_{exchange}_{series.from_date:%Y%m%d}_{series.to_date:%Y%m%d}",
            partition_key=historical_partition(series.symbol, exchange, series.from_date),
            symbol=series.symbol,
            exchange=exchange,
            sort_ts=self._clock(),
            range_start=series.from_date,
            range_end=series.to_date,
            body=series.model_dump(mode="json"),
            ttl=None,
        )
        await self._upsert("save historical data", document)
        logger.info(
            f"Saved historical data for {series.symbol} ({exchange}) "
            f"with {series.record_count} records"
        )

    async def get_historical(
        self, symbol: str, exchange: str, from_date: date, to_date: date
    ) -> Optional[HistoricalSeries]:
        """
        Merge every stored range overlapping [from_date, to_date].

        Bars outside the window are dropped; when ranges overlap, the most
        recently written document wins for a given date.
        """
        symbol, exchange = self._require(symbol=symbol, exchange=exchange)
        if from_date > to_date:
            raise ValidationError(self.service_name, "From date cannot be after to date")

        async with self._session("get historical data") as session:
            result = await session.execute(
                select(Document.body)
                .where(
                    Document.container == Container.HISTORICAL_DATA,
                    Document.symbol == symbol,
                    Document.exchange == exchange,
                    Document.range_start <= to_date,
                    Document.range_end >= from_date,
                    self._not_expired(),
                )
                .order_by(Document.written_at.asc())
            )
            bodies = result.scalars().all()

        bars_by_date: dict[date, DailyBar] = {}
        for body in bodies:
            for bar in HistoricalSeries.model_validate(body).bars:
                if from_date <= bar.date <= to_date:
                    bars_by_date[bar.date] = bar

        if not bars_by_date:
            logger.debug(f"No stored history for {symbol} on {exchange} from {from_date} to {to_date}")
            return None

        return HistoricalSeries(
            symbol=symbol,
            exchange=Exchange(exchange),
            from_date=from_date,
            to_date=to_date,
            bars=[bars_by_date[day] for day in sorted(bars_by_date)],
        )

    # ============ Indicators ============

    async def save_indicators(self, indicators: TechnicalIndicators) -> None:
        """Store a freshly computed indicator set, kept for seven days."""
        exchange = indicators.exchange.value if indicators.exchange else None
        key_parts = [indicators.symbol, exchange, f"{indicators.calculated_at:%Y%m%d%H%M%S}"]
        document = Document(
            container=Container.TECHNICAL_INDICATORS,
            id="_".join(part for part in key_parts if part),
            partition_key=indicators.symbol,
            symbol=indicators.symbol,
            exchange=exchange,
            sort_ts=_naive_utc(indicators.calculated_at),
            body=indicators.model_dump(mode="json"),
            ttl=INDICATORS_TTL_SECONDS,
        )
        await self._upsert("save technical indicators", document)
        logger.debug(f"Saved technical indicators for {indicators.symbol}")

    async def get_indicators(
        self, symbol: str, exchange: Optional[str] = None
    ) -> Optional[TechnicalIndicators]:
        """Most recent unexpired indicator set for the symbol, optionally per exchange."""
        (symbol,) = self._require(symbol=symbol)

        stmt = select(Document.body).where(
            Document.container == Container.TECHNICAL_INDICATORS,
            Document.partition_key == symbol,
            self._not_expired(),
        )
        if exchange:
            stmt = stmt.where(Document.exchange == exchange.strip().upper())

        async with self._session("get technical indicators") as session:
            result = await session.execute(
                stmt.order_by(Document.sort_ts.desc()).limit(1)
            )
            body = result.scalar_one_or_none()

        return TechnicalIndicators.model_validate(body) if body is not None else None

    # ============ Maintenance ============

    async def purge_expired(self) -> int:
        """Delete documents whose TTL has elapsed. Returns the number removed."""
        async with self._session("purge expired documents") as session:
            async with session.begin():
                result = await session.execute(
                    delete(Document).where(
                        Document.expires_at.is_not(None),
                        Document.expires_at <= self._clock(),
                    )
                )
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Purged {removed} expired documents")
        return removed


# Singleton instance
_repository: Optional[MarketDataRepository] = None


def get_market_data_repository() -> MarketDataRepository:
    """Get the repository singleton."""
    global _repository
    if _repository is None:
        _repository = MarketDataRepository()
    return _repository
