"""
NSE (National Stock Exchange) client.

Public JSON endpoints under https://www.nseindia.com/api. Quotes, history,
indices, symbol search, top movers and market status, each cached with its
own TTL.
"""

import asyncio
import logging
from datetime import date
from typing import Optional, Union

from pydantic import AliasChoices, Field, TypeAdapter

from app.core.config import settings
from app.schemas.market import (
    DailyBar,
    Exchange,
    HistoricalSeries,
    MarketStatus,
    Quote,
    TopMovers,
)
from app.services.cache import CacheTTL, MarketCache
from app.services.exchanges.base_client import (
    MAX_SEARCH_RESULTS,
    ExchangeClient,
    UpstreamModel,
    compute_change,
    utc_now,
)
from app.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Indices worth tracking from /api/allIndices
MAJOR_INDICES = frozenset({
    "NIFTY 50",
    "NIFTY BANK",
    "NIFTY IT",
    "NIFTY AUTO",
    "NIFTY PHARMA",
    "NIFTY FMCG",
    "NIFTY METAL",
    "NIFTY ENERGY",
})

_QUOTE = TypeAdapter(Quote)
_QUOTES = TypeAdapter(list[Quote])
_SERIES = TypeAdapter(HistoricalSeries)
_SYMBOLS = TypeAdapter(list[str])
_MOVERS = TypeAdapter(TopMovers)
_STATUS = TypeAdapter(MarketStatus)


# =============================================================================
# DTOs
# =============================================================================


class NseQuoteData(UpstreamModel):
    symbol: Optional[str] = None
    last_price: float
    open: float = 0.0
    day_high: float = 0.0
    day_low: float = 0.0
    previous_close: float = 0.0
    change: Optional[float] = None
    p_change: Optional[float] = None
    total_traded_volume: int = 0
    market_cap: Optional[float] = None
    pe: Optional[float] = None
    book_value: Optional[float] = None


class NseHistoricalRow(UpstreamModel):
    trade_date: date = Field(validation_alias=AliasChoices("date", "Date", "CH_TIMESTAMP"))
    open: float = Field(validation_alias=AliasChoices("open", "Open", "CH_OPENING_PRICE"))
    high: float = Field(validation_alias=AliasChoices("high", "High", "CH_TRADE_HIGH_PRICE"))
    low: float = Field(validation_alias=AliasChoices("low", "Low", "CH_TRADE_LOW_PRICE"))
    close: float = Field(validation_alias=AliasChoices("close", "Close", "CH_CLOSING_PRICE"))
    volume: int = Field(
        default=0,
        validation_alias=AliasChoices("volume", "Volume", "CH_TOT_TRADED_QTY"),
    )


class NseHistoricalResponse(UpstreamModel):
    data: Optional[list[NseHistoricalRow]] = None


class NseIndexData(UpstreamModel):
    index: str
    last: float
    open: float = 0.0
    day_high: float = Field(default=0.0, validation_alias=AliasChoices("dayHigh", "high", "DayHigh"))
    day_low: float = Field(default=0.0, validation_alias=AliasChoices("dayLow", "low", "DayLow"))
    previous_close: float = 0.0
    change: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("change", "variation", "Change")
    )
    per_change: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("perChange", "percentChange", "PerChange")
    )


class NseIndicesResponse(UpstreamModel):
    data: Optional[list[NseIndexData]] = None


class NseSearchItem(UpstreamModel):
    symbol: str


class NseSearchResponse(UpstreamModel):
    symbols: Optional[list[Union[str, NseSearchItem]]] = None


class NseTopStocksResponse(UpstreamModel):
    data: Optional[list[NseQuoteData]] = None


class NseMarketStateItem(UpstreamModel):
    market: Optional[str] = None
    market_status: Optional[str] = None


class NseMarketStatusResponse(UpstreamModel):
    market_state: Optional[Union[str, list[NseMarketStateItem]]] = None


# =============================================================================
# CLIENT
# =============================================================================


class NseClient(ExchangeClient):
    """Client for the NSE public JSON API."""

    def __init__(
        self,
        cache: Optional[MarketCache] = None,
        base_url: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        **kwargs,
    ):
        super().__init__(
            base_url or settings.nse_base_url,
            cache=cache,
            retry_policy=retry_policy,
            timeout=timeout,
            **kwargs,
        )
        logger.info(f"NseClient initialized with base URL: {self._base_url}")

    @property
    def exchange(self) -> Exchange:
        return Exchange.NSE

    # ============ Mapping ============

    def _to_quote(self, data: NseQuoteData, symbol: str) -> Quote:
        change, change_percent = compute_change(
            data.last_price, data.previous_close, data.change, data.p_change
        )
        now = utc_now()
        return Quote(
            symbol=symbol,
            exchange=Exchange.NSE,
            price=data.last_price,
            open=data.open,
            high=data.day_high,
            low=data.day_low,
            close=data.previous_close,
            volume=data.total_traded_volume,
            change=change,
            change_percent=change_percent,
            timestamp=now,
            last_updated=now,
            market_cap=data.market_cap,
            pe=data.pe,
            book_value=data.book_value,
        )

    def _index_to_quote(self, data: NseIndexData) -> Quote:
        change, change_percent = compute_change(
            data.last, data.previous_close, data.change, data.per_change
        )
        now = utc_now()
        return Quote(
            symbol=data.index,
            exchange=Exchange.NSE,
            price=data.last,
            open=data.open,
            high=data.day_high,
            low=data.day_low,
            close=data.previous_close,
            change=change,
            change_percent=change_percent,
            timestamp=now,
            last_updated=now,
        )

    # ============ Operations ============

    async def get_quote(self, symbol: str) -> Optional[Quote]:
        """Get a live equity quote, cached for 30 seconds."""
        normalized = self.normalize_symbol(symbol)

        async def fetch() -> Optional[Quote]:
            logger.info(f"Fetching NSE quote for {normalized}")
            payload = await self._request_json(
                "GET", "/api/quote-equity", "quote", params={"symbol": normalized}
            )
            if isinstance(payload, dict) and "data" in payload:
                payload = payload["data"]
            if not payload:
                logger.warning(f"No quote data from NSE for {normalized}")
                return None

            quote = self._to_quote(self._parse(NseQuoteData, payload, "quote"), normalized)
            logger.info(f"Fetched NSE quote for {normalized}: ₹{quote.price}")
            return quote

        return await self._read_through(
            self.cache_key("quote", normalized), CacheTTL.QUOTE, _QUOTE, fetch
        )

    async def get_historical(
        self, symbol: str, from_date: date, to_date: date
    ) -> Optional[HistoricalSeries]:
        """Get daily equity bars for an inclusive date range, cached for an hour."""
        normalized = self.normalize_symbol(symbol)
        self.check_range(from_date, to_date)

        async def fetch() -> Optional[HistoricalSeries]:
            logger.info(
                f"Fetching NSE history for {normalized} from {from_date} to {to_date}"
            )
            payload = await self._request_json(
                "GET",
                "/api/historical/cm/equity",
                "historical",
                params={
                    "symbol": normalized,
                    "series": '["EQ"]',
                    "from": from_date.strftime("%d-%m-%Y"),
                    "to": to_date.strftime("%d-%m-%Y"),
                },
            )
            if payload is None:
                return None

            rows = self._parse(NseHistoricalResponse, payload, "historical").data
            if not rows:
                logger.warning(f"No historical data from NSE for {normalized}")
                return None

            series = HistoricalSeries(
                symbol=normalized,
                exchange=Exchange.NSE,
                from_date=from_date,
                to_date=to_date,
                bars=sorted(
                    (
                        DailyBar(
                            date=row.trade_date,
                            open=row.open,
                            high=row.high,
                            low=row.low,
                            close=row.close,
                            volume=row.volume,
                            adjusted_close=row.close,
                        )
                        for row in rows
                    ),
                    key=lambda bar: bar.date,
                ),
            )
            logger.info(f"Fetched {series.record_count} NSE bars for {normalized}")
            return series

        key = self.cache_key(
            "historical", normalized, from_date.strftime("%Y%m%d"), to_date.strftime("%Y%m%d")
        )
        return await self._read_through(key, CacheTTL.HISTORICAL, _SERIES, fetch)

    async def get_indices(self) -> list[Quote]:
        """Get the major NSE indices, cached for a minute."""

        async def fetch() -> Optional[list[Quote]]:
            logger.info("Fetching NSE indices")
            payload = await self._request_json("GET", "/api/allIndices", "indices")
            if payload is None:
                return None

            data = self._parse(NseIndicesResponse, payload, "indices").data or []
            indices = [
                self._index_to_quote(item)
                for item in data
                if item.index.upper() in MAJOR_INDICES
            ]
            logger.info(f"Fetched {len(indices)} NSE indices")
            return indices

        indices = await self._read_through(
            self.cache_key("indices"), CacheTTL.INDICES, _QUOTES, fetch
        )
        return indices if indices is not None else []

    async def search_symbols(self, query: str) -> list[str]:
        """Autocomplete symbols for a query, at most ten, cached for five minutes."""
        if not query or not query.strip():
            return []
        normalized = query.strip().upper()

        async def fetch() -> Optional[list[str]]:
            logger.info(f"Searching NSE symbols for {normalized}")
            payload = await self._request_json(
                "GET", "/api/search/autocomplete", "search", params={"q": normalized}
            )
            if payload is None:
                return None

            items = self._parse(NseSearchResponse, payload, "search").symbols or []
            symbols = [
                item if isinstance(item, str) else item.symbol for item in items
            ][:MAX_SEARCH_RESULTS]
            logger.info(f"Found {len(symbols)} NSE symbols for {normalized}")
            return symbols

        symbols = await self._read_through(
            self.cache_key("search", normalized), CacheTTL.SEARCH, _SYMBOLS, fetch
        )
        return symbols if symbols is not None else []

    async def _fetch_top_stocks(self, kind: str) -> list[Quote]:
        payload = await self._request_json(
            "GET",
            "/api/live-analysis-variations",
            f"top {kind}",
            params={"index": "gainers", "type": kind},
        )
        if payload is None:
            return []

        data = self._parse(NseTopStocksResponse, payload, f"top {kind}").data or []
        return [
            self._to_quote(item, item.symbol.upper())
            for item in data[:MAX_SEARCH_RESULTS]
            if item.symbol
        ]

    async def get_top_movers(self) -> TopMovers:
        """Get top gainers and losers (fetched concurrently), cached for a minute."""

        async def fetch() -> TopMovers:
            logger.info("Fetching NSE top movers")
            gainers, losers = await asyncio.gather(
                self._fetch_top_stocks("gainers"),
                self._fetch_top_stocks("losers"),
            )
            logger.info(f"Fetched top movers: {len(gainers)} gainers, {len(losers)} losers")
            return TopMovers(
                exchange=Exchange.NSE,
                gainers=gainers,
                losers=losers,
                fetched_at=utc_now(),
            )

        return await self._read_through(
            self.cache_key("movers"), CacheTTL.TOP_MOVERS, _MOVERS, fetch
        )

    async def get_market_status(self) -> MarketStatus:
        """Whether the capital market is open, cached for a minute."""

        async def fetch() -> MarketStatus:
            payload = await self._request_json("GET", "/api/marketStatus", "market status")
            state: Optional[str] = None
            if payload is not None:
                market_state = self._parse(
                    NseMarketStatusResponse, payload, "market status"
                ).market_state
                if isinstance(market_state, str):
                    state = market_state
                elif market_state:
                    capital = next(
                        (
                            item
                            for item in market_state
                            if (item.market or "").lower() == "capital market"
                        ),
                        market_state[0],
                    )
                    state = capital.market_status

            is_open = (state or "").strip().lower() == "open"
            logger.info(f"NSE market status: {'Open' if is_open else 'Closed'}")
            return MarketStatus(
                exchange=Exchange.NSE,
                is_open=is_open,
                market_state=state,
                checked_at=utc_now(),
            )

        return await self._read_through(
            self.cache_key("market_status"), CacheTTL.MARKET_STATUS, _STATUS, fetch
        )
