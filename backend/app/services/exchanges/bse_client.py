"""
BSE (Bombay Stock Exchange) client.

BSE identifies securities by numeric scrip code. Identifiers that are all
digits are used as-is; anything else is resolved through the equity search
endpoint and cached for a day.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Annotated, Any, Optional

from pydantic import AliasChoices, BeforeValidator, Field, TypeAdapter

from app.core.config import settings
from app.core.market_hours import market_today
from app.schemas.market import (
    DailyBar,
    Exchange,
    HistoricalSeries,
    MarketAnnouncement,
    Quote,
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

# Substrings of index names worth tracking from Sensex/getIndices
MAJOR_INDEX_MARKERS = ("SENSEX", "BSE100", "BSE200", "BSE500", "BSESMCAP", "BSEMIDCAP")

ANNOUNCEMENT_LOOKBACK_DAYS = 7

_QUOTE = TypeAdapter(Quote)
_QUOTES = TypeAdapter(list[Quote])
_SERIES = TypeAdapter(HistoricalSeries)
_SYMBOLS = TypeAdapter(list[str])
_ANNOUNCEMENTS = TypeAdapter(list[MarketAnnouncement])
_SCRIP_CODE = TypeAdapter(str)


def _code_as_str(value: Any) -> Any:
    return str(value) if isinstance(value, int) else value


# BSE sends scrip codes as strings or bare integers
ScripCode = Annotated[Optional[str], BeforeValidator(_code_as_str)]


# =============================================================================
# DTOs
# =============================================================================


class BseStockData(UpstreamModel):
    current_value: float
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    prev_close: float = 0.0
    volume: int = 0


class BseStockResponse(UpstreamModel):
    data: Optional[BseStockData] = None


class BseHistoricalRow(UpstreamModel):
    trade_date: date = Field(validation_alias=AliasChoices("date", "Date", "dttm"))
    open: float
    high: float
    low: float
    close: float
    volume: int = 0


class BseHistoricalResponse(UpstreamModel):
    data: Optional[list[BseHistoricalRow]] = None


class BseIndexData(UpstreamModel):
    index_name: str
    current_value: float
    prev_close: float = 0.0
    change: Optional[float] = None
    percent_change: Optional[float] = None


class BseIndicesResponse(UpstreamModel):
    table: Optional[list[BseIndexData]] = None


class BseAnnouncementData(UpstreamModel):
    scrip_code: ScripCode = None
    short_text: Optional[str] = None
    full_text: Optional[str] = None
    category: Optional[str] = None
    attachment_date: Optional[datetime] = None
    attachment_name: Optional[str] = None


class BseAnnouncementsResponse(UpstreamModel):
    table: Optional[list[BseAnnouncementData]] = None


class BseSearchData(UpstreamModel):
    scrip_code: ScripCode = None
    short_name: Optional[str] = None
    full_name: Optional[str] = None


class BseSearchResponse(UpstreamModel):
    table: Optional[list[BseSearchData]] = None


# =============================================================================
# CLIENT
# =============================================================================


class BseClient(ExchangeClient):
    """Client for the BSE India JSON API."""

    base_headers = {
        **ExchangeClient.base_headers,
        "Referer": "https://www.bseindia.com/",
    }

    def __init__(
        self,
        cache: Optional[MarketCache] = None,
        base_url: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        **kwargs,
    ):
        super().__init__(
            base_url or settings.bse_base_url,
            cache=cache,
            retry_policy=retry_policy,
            timeout=timeout,
            **kwargs,
        )
        logger.info(f"BseClient initialized with base URL: {self._base_url}")

    @property
    def exchange(self) -> Exchange:
        return Exchange.BSE

    # ============ Mapping ============

    def _to_quote(self, data: BseStockData, symbol: str) -> Quote:
        change, change_percent = compute_change(data.current_value, data.prev_close)
        now = utc_now()
        return Quote(
            symbol=symbol,
            exchange=Exchange.BSE,
            price=data.current_value,
            open=data.open,
            high=data.high,
            low=data.low,
            close=data.prev_close,
            volume=data.volume,
            change=change,
            change_percent=change_percent,
            timestamp=now,
            last_updated=now,
        )

    def _index_to_quote(self, data: BseIndexData) -> Quote:
        change, change_percent = compute_change(
            data.current_value, data.prev_close, data.change, data.percent_change
        )
        now = utc_now()
        return Quote(
            symbol=data.index_name,
            exchange=Exchange.BSE,
            price=data.current_value,
            close=data.prev_close,
            change=change,
            change_percent=change_percent,
            timestamp=now,
            last_updated=now,
        )

    @staticmethod
    def _to_announcement(data: BseAnnouncementData) -> MarketAnnouncement:
        return MarketAnnouncement(
            symbol=data.scrip_code or "",
            title=data.short_text or "",
            description=data.full_text or "",
            category=data.category or "",
            date=data.attachment_date,
            attachment=data.attachment_name,
        )

    async def resolve_scrip_code(self, identifier: str) -> Optional[str]:
        """Scrip code for a symbol; all-digit identifiers are already scrip codes."""
        identifier = identifier.strip().upper()
        if identifier.isdigit():
            return identifier
        scrip_code = await self.get_scrip_code(identifier)
        if not scrip_code:
            logger.warning(f"Could not find BSE scrip code for {identifier}")
        return scrip_code

    # ============ Operations ============

    async def get_scrip_code(self, symbol: str) -> Optional[str]:
        """Resolve a ticker to its scrip code by exact short-name match, cached for a day."""
        normalized = self.normalize_symbol(symbol)

        async def fetch() -> Optional[str]:
            payload = await self._request_json(
                "POST",
                "/BseIndiaAPI/api/EQPremiumSearch/w",
                "scrip code lookup",
                json_body={"Flag": "1", "KeyWord": normalized},
            )
            if payload is None:
                return None

            rows = self._parse(BseSearchResponse, payload, "scrip code lookup").table or []
            return next(
                (
                    row.scrip_code
                    for row in rows
                    if row.scrip_code and (row.short_name or "").upper() == normalized
                ),
                None,
            )

        return await self._read_through(
            self.cache_key("scripcode", normalized), CacheTTL.SCRIP_CODE, _SCRIP_CODE, fetch
        )

    async def get_quote(self, symbol: str) -> Optional[Quote]:
        """Get a live quote by ticker or scrip code, cached for 30 seconds."""
        normalized = self.normalize_symbol(symbol)

        async def fetch() -> Optional[Quote]:
            logger.info(f"Fetching BSE quote for {normalized}")
            scrip_code = await self.resolve_scrip_code(normalized)
            if not scrip_code:
                return None

            payload = await self._request_json(
                "POST",
                "/BseIndiaAPI/api/StockReachGraph/w",
                "quote",
                json_body={"scripcode": scrip_code, "flag": "0"},
            )
            if payload is None:
                return None

            data = self._parse(BseStockResponse, payload, "quote").data
            if data is None:
                logger.warning(f"No quote data from BSE for {normalized}")
                return None

            quote = self._to_quote(data, normalized)
            logger.info(f"Fetched BSE quote for {normalized}: ₹{quote.price}")
            return quote

        return await self._read_through(
            self.cache_key("quote", normalized), CacheTTL.QUOTE, _QUOTE, fetch
        )

    async def get_historical(
        self, symbol: str, from_date: date, to_date: date
    ) -> Optional[HistoricalSeries]:
        """Get daily bars by ticker or scrip code, cached for an hour."""
        normalized = self.normalize_symbol(symbol)
        self.check_range(from_date, to_date)

        async def fetch() -> Optional[HistoricalSeries]:
            logger.info(
                f"Fetching BSE history for {normalized} from {from_date} to {to_date}"
            )
            scrip_code = await self.resolve_scrip_code(normalized)
            if not scrip_code:
                return None

            payload = await self._request_json(
                "POST",
                "/BseIndiaAPI/api/StockReachGraph/w",
                "historical",
                json_body={
                    "scripcode": scrip_code,
                    "flag": "1D",
                    "frmdate": from_date.strftime("%Y%m%d"),
                    "todate": to_date.strftime("%Y%m%d"),
                },
            )
            if payload is None:
                return None

            rows = self._parse(BseHistoricalResponse, payload, "historical").data
            if not rows:
                logger.warning(f"No historical data from BSE for {normalized}")
                return None

            bars = [
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
            ]
            bars.sort(key=lambda bar: bar.date)
            series = HistoricalSeries(
                symbol=normalized,
                exchange=Exchange.BSE,
                from_date=from_date,
                to_date=to_date,
                bars=bars,
            )
            logger.info(f"Fetched {series.record_count} BSE bars for {normalized}")
            return series

        key = self.cache_key(
            "historical", normalized, from_date.strftime("%Y%m%d"), to_date.strftime("%Y%m%d")
        )
        return await self._read_through(key, CacheTTL.HISTORICAL, _SERIES, fetch)

    async def get_indices(self) -> list[Quote]:
        """Get SENSEX and the other major BSE indices, cached for a minute."""

        async def fetch() -> Optional[list[Quote]]:
            logger.info("Fetching BSE indices")
            payload = await self._request_json(
                "GET", "/BseIndiaAPI/api/Sensex/getIndices", "indices"
            )
            if payload is None:
                return None

            rows = self._parse(BseIndicesResponse, payload, "indices").table or []
            indices = [
                self._index_to_quote(row)
                for row in rows
                if any(marker in row.index_name.upper() for marker in MAJOR_INDEX_MARKERS)
            ]
            logger.info(f"Fetched {len(indices)} BSE indices")
            return indices

        indices = await self._read_through(
            self.cache_key("indices"), CacheTTL.INDICES, _QUOTES, fetch
        )
        return indices if indices is not None else []

    async def search_symbols(self, query: str) -> list[str]:
        """Search listed companies by keyword, at most ten, cached for five minutes."""
        if not query or not query.strip():
            return []
        normalized = query.strip().upper()

        async def fetch() -> Optional[list[str]]:
            logger.info(f"Searching BSE symbols for {normalized}")
            payload = await self._request_json(
                "POST",
                "/BseIndiaAPI/api/EQPremiumSearch/w",
                "search",
                json_body={"Flag": "1", "KeyWord": normalized},
            )
            if payload is None:
                return None

            rows = self._parse(BseSearchResponse, payload, "search").table or []
            symbols = [row.short_name for row in rows if row.short_name][:MAX_SEARCH_RESULTS]
            logger.info(f"Found {len(symbols)} BSE symbols for {normalized}")
            return symbols

        symbols = await self._read_through(
            self.cache_key("search", normalized), CacheTTL.SEARCH, _SYMBOLS, fetch
        )
        return symbols if symbols is not None else []

    async def get_announcements(self, symbol: Optional[str] = None) -> list[MarketAnnouncement]:
        """Corporate announcements from the last seven days, optionally for one scrip."""
        normalized = symbol.strip().upper() if symbol and symbol.strip() else None

        async def fetch() -> Optional[list[MarketAnnouncement]]:
            logger.info(
                f"Fetching BSE announcements{f' for {normalized}' if normalized else ''}"
            )
            today = market_today()
            payload = await self._request_json(
                "POST",
                "/BseIndiaAPI/api/AnnGetData/w",
                "announcements",
                json_body={
                    "strCat": "-1",
                    "strPrevDate": (today - timedelta(days=ANNOUNCEMENT_LOOKBACK_DAYS)).strftime("%Y%m%d"),
                    "strScrip": normalized or "",
                    "strSearch": "P",
                    "strToDate": today.strftime("%Y%m%d"),
                    "strType": "C",
                },
            )
            if payload is None:
                return None

            rows = self._parse(BseAnnouncementsResponse, payload, "announcements").table or []
            announcements = [self._to_announcement(row) for row in rows]
            logger.info(f"Fetched {len(announcements)} BSE announcements")
            return announcements

        key = self.cache_key("announcements", normalized or "all")
        announcements = await self._read_through(key, CacheTTL.ANNOUNCEMENTS, _ANNOUNCEMENTS, fetch)
        return announcements if announcements is not None else []
