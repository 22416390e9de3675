"""
Market Data API Endpoints

Live NSE/BSE quotes, history, search and indices, plus reads of the
persisted document store. Successful live fetches are persisted in the
background; a failed write never fails the request.
"""

import logging
from datetime import date
from typing import Awaitable, Callable, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from app.core.config import settings
from app.core.market_hours import market_today
from app.db import MarketDataRepository, get_market_data_repository
from app.schemas.market import (
    Exchange,
    HistoricalSeries,
    MarketAnnouncement,
    MarketStatus,
    Quote,
    TechnicalIndicators,
    TopMovers,
)
from app.services.base import RepositoryRateLimitedError, ValidationError
from app.services.exchanges import (
    BseClient,
    ExchangeClientInterface,
    NseClient,
    get_bse_client,
    get_nse_client,
)
from app.services.indicators import IndicatorService, get_indicator_service
from app.services.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

router = APIRouter()

SERVICE_NAME = "MarketDataAPI"
MIN_QUERY_LENGTH = 2


# ============ Validation ============

def _parse_exchange(raw: str) -> Exchange:
    value = raw.strip().upper()
    if value not in Exchange.__members__:
        raise ValidationError(SERVICE_NAME, f"Unsupported exchange '{raw}'. Use NSE or BSE")
    return Exchange(value)


def _require_symbol(symbol: str) -> str:
    if not symbol or not symbol.strip():
        raise ValidationError(SERVICE_NAME, "Symbol is required")
    return symbol.strip().upper()


def _require_query(query: str) -> str:
    trimmed = query.strip()
    if len(trimmed) < MIN_QUERY_LENGTH:
        raise ValidationError(
            SERVICE_NAME, f"Search query must be at least {MIN_QUERY_LENGTH} characters"
        )
    return trimmed


def _require_range(from_date: date, to_date: date, today: Optional[date] = None) -> None:
    if from_date > to_date:
        raise ValidationError(SERVICE_NAME, "From date cannot be after to date")
    if to_date > (today or market_today()):
        raise ValidationError(SERVICE_NAME, "To date cannot be in the future")


def _client_for(exchange: Exchange) -> ExchangeClientInterface:
    return get_nse_client() if exchange == Exchange.NSE else get_bse_client()


# ============ Background persistence ============

async def _persist(operation: str, write: Callable[[], Awaitable[None]]) -> None:
    """Run a repository write, retrying while the store reports itself busy."""
    policy = RetryPolicy(
        attempts=settings.retry_attempts,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
    )
    try:
        await retry_async(
            write,
            policy=policy,
            retry_on=lambda e: isinstance(e, RepositoryRateLimitedError),
            operation=operation,
        )
    except Exception as e:
        logger.error(f"Background {operation} failed: {e}", exc_info=True)


def _save_quote_later(
    tasks: BackgroundTasks, repository: MarketDataRepository, quote: Quote
) -> None:
    tasks.add_task(_persist, f"save quote {quote.symbol}", lambda: repository.save_quote(quote))


def _save_historical_later(
    tasks: BackgroundTasks, repository: MarketDataRepository, series: HistoricalSeries
) -> None:
    tasks.add_task(
        _persist,
        f"save historical {series.symbol}",
        lambda: repository.save_historical(series),
    )


# ============ Shared handlers ============

async def _quote(
    client: ExchangeClientInterface,
    symbol: str,
    tasks: BackgroundTasks,
    repository: MarketDataRepository,
) -> Quote:
    symbol = _require_symbol(symbol)
    quote = await client.get_quote(symbol)
    if quote is None:
        raise HTTPException(
            status_code=404,
            detail=f"Quote not found for {symbol} on {client.exchange.value}",
        )
    _save_quote_later(tasks, repository, quote)
    return quote


async def _historical(
    client: ExchangeClientInterface,
    symbol: str,
    from_date: date,
    to_date: date,
    tasks: BackgroundTasks,
    repository: MarketDataRepository,
) -> HistoricalSeries:
    symbol = _require_symbol(symbol)
    _require_range(from_date, to_date)
    series = await client.get_historical(symbol, from_date, to_date)
    if series is None or not series.bars:
        raise HTTPException(
            status_code=404,
            detail=f"Historical data not found for {symbol} on {client.exchange.value}",
        )
    _save_historical_later(tasks, repository, series)
    return series


# ============ NSE ============

@router.get("/nse/search", response_model=List[str])
async def search_nse(
    query: str = Query(..., description="Symbol or company name fragment"),
    client: NseClient = Depends(get_nse_client),
):
    """Search NSE symbols (at most 10 results)."""
    return await client.search_symbols(_require_query(query))


@router.get("/nse/indices", response_model=List[Quote])
async def get_nse_indices(client: NseClient = Depends(get_nse_client)):
    """Major NSE indices."""
    return await client.get_indices()


@router.get("/nse/movers", response_model=TopMovers)
async def get_nse_movers(client: NseClient = Depends(get_nse_client)):
    """Top gainers and losers on NSE."""
    return await client.get_top_movers()


@router.get("/nse/market-status", response_model=MarketStatus)
async def get_nse_market_status(client: NseClient = Depends(get_nse_client)):
    """Whether the NSE capital market segment is open."""
    return await client.get_market_status()


@router.get("/nse/{symbol}", response_model=Quote)
async def get_nse_quote(
    symbol: str,
    background_tasks: BackgroundTasks,
    client: NseClient = Depends(get_nse_client),
    repository: MarketDataRepository = Depends(get_market_data_repository),
):
    """Live NSE quote."""
    return await _quote(client, symbol, background_tasks, repository)


@router.get("/nse/{symbol}/historical", response_model=HistoricalSeries)
async def get_nse_historical(
    symbol: str,
    background_tasks: BackgroundTasks,
    from_date: date = Query(..., alias="fromDate"),
    to_date: date = Query(..., alias="toDate"),
    client: NseClient = Depends(get_nse_client),
    repository: MarketDataRepository = Depends(get_market_data_repository),
):
    """Daily NSE bars for an inclusive date range."""
    return await _historical(client, symbol, from_date, to_date, background_tasks, repository)


# ============ BSE ============

@router.get("/bse/search", response_model=List[str])
async def search_bse(
    query: str = Query(..., description="Symbol or company name fragment"),
    client: BseClient = Depends(get_bse_client),
):
    """Search BSE symbols (at most 10 results)."""
    return await client.search_symbols(_require_query(query))


@router.get("/bse/indices", response_model=List[Quote])
async def get_bse_indices(client: BseClient = Depends(get_bse_client)):
    """Major BSE indices."""
    return await client.get_indices()


@router.get("/bse/announcements", response_model=List[MarketAnnouncement])
async def get_bse_announcements(
    symbol: Optional[str] = Query(default=None, description="Scrip code or symbol"),
    client: BseClient = Depends(get_bse_client),
):
    """Corporate announcements from the last seven days."""
    scrip_code = None
    if symbol and symbol.strip():
        scrip_code = await client.resolve_scrip_code(symbol)
        if scrip_code is None:
            return []
    return await client.get_announcements(scrip_code)


@router.get("/bse/{scrip_code}", response_model=Quote)
async def get_bse_quote(
    scrip_code: str,
    background_tasks: BackgroundTasks,
    client: BseClient = Depends(get_bse_client),
    repository: MarketDataRepository = Depends(get_market_data_repository),
):
    """Live BSE quote by scrip code or symbol."""
    return await _quote(client, scrip_code, background_tasks, repository)


@router.get("/bse/{scrip_code}/historical", response_model=HistoricalSeries)
async def get_bse_historical(
    scrip_code: str,
    background_tasks: BackgroundTasks,
    from_date: date = Query(..., alias="fromDate"),
    to_date: date = Query(..., alias="toDate"),
    client: BseClient = Depends(get_bse_client),
    repository: MarketDataRepository = Depends(get_market_data_repository),
):
    """Daily BSE bars for an inclusive date range."""
    return await _historical(client, scrip_code, from_date, to_date, background_tasks, repository)


# ============ Persisted data ============

@router.get("/cache/{exchange}", response_model=List[Quote])
async def get_cached_quotes(
    exchange: str,
    symbols: str = Query(..., description="Comma-separated symbols"),
    repository: MarketDataRepository = Depends(get_market_data_repository),
):
    """Last persisted quote for each symbol; symbols never stored are omitted."""
    parsed = _parse_exchange(exchange)
    symbol_list = [s.strip().upper() for s in symbols.split(",") if s.strip()]
    if not symbol_list:
        raise ValidationError(SERVICE_NAME, "At least one symbol is required")
    return await repository.get_bulk(symbol_list, parsed.value)


@router.get("/cache/{exchange}/{symbol}", response_model=Quote)
async def get_cached_quote(
    exchange: str,
    symbol: str,
    repository: MarketDataRepository = Depends(get_market_data_repository),
):
    """Last persisted quote, without calling the exchange."""
    parsed = _parse_exchange(exchange)
    symbol = _require_symbol(symbol)
    quote = await repository.get_latest_quote(symbol, parsed.value)
    if quote is None:
        raise HTTPException(
            status_code=404, detail=f"No stored quote for {symbol} on {parsed.value}"
        )
    return quote


@router.get("/{exchange}/{symbol}/indicators", response_model=TechnicalIndicators)
async def get_indicators(
    exchange: str,
    symbol: str,
    background_tasks: BackgroundTasks,
    refresh: bool = Query(default=False, description="Recompute from live history"),
    repository: MarketDataRepository = Depends(get_market_data_repository),
    service: IndicatorService = Depends(get_indicator_service),
):
    """
    Technical indicators for a symbol.

    Serves the latest stored set unless refresh is requested; otherwise
    computes from the last year of daily bars and stores the result.
    """
    parsed = _parse_exchange(exchange)
    symbol = _require_symbol(symbol)

    if not refresh:
        stored = await repository.get_indicators(symbol, parsed.value)
        if stored is not None:
            return stored

    indicators = await service.compute_latest(_client_for(parsed), symbol, refresh=refresh)
    if indicators is None:
        raise HTTPException(
            status_code=404, detail=f"No history to compute indicators for {symbol}"
        )
    background_tasks.add_task(
        _persist,
        f"save indicators {symbol}",
        lambda: repository.save_indicators(indicators),
    )
    return indicators
