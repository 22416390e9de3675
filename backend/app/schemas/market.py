"""
Market Data Contracts

Shared data model produced by the exchange clients, persisted by the
repository and returned by the API. All models are immutable snapshots and
serialize with camelCase keys.
"""

from datetime import date, datetime
from enum import Enum
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


# =============================================================================
# ENUMS
# =============================================================================


class Exchange(str, Enum):
    NSE = "NSE"
    BSE = "BSE"


class MarketModel(BaseModel):
    """Base for all market contracts: frozen, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# =============================================================================
# QUOTES
# =============================================================================


class Quote(MarketModel):
    """
    Live quote snapshot for a listed security or index.

    ``close`` is the previous session close as reported by the exchange, and
    ``change`` is measured against it.
    """

    symbol: str
    exchange: Exchange
    price: float
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0
    volume: int = Field(default=0, ge=0)
    change: float = 0.0
    change_percent: float = 0.0
    timestamp: datetime
    last_updated: datetime
    currency: Literal["INR"] = "INR"
    market: Literal["IN"] = "IN"

    # Fundamentals, when the exchange reports them
    market_cap: Optional[float] = None
    pe: Optional[float] = None
    dividend_yield: Optional[float] = None
    book_value: Optional[float] = None


class TopMovers(MarketModel):
    """Top gainers and losers, cached as one value."""

    exchange: Exchange
    gainers: list[Quote]
    losers: list[Quote]
    fetched_at: datetime


class MarketStatus(MarketModel):
    """Whether the capital market segment is trading."""

    exchange: Exchange
    is_open: bool
    market_state: Optional[str] = None
    checked_at: datetime


# =============================================================================
# HISTORICAL
# =============================================================================


class DailyBar(MarketModel):
    """Single daily OHLCV bar."""

    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int = Field(default=0, ge=0)
    adjusted_close: float


class HistoricalSeries(MarketModel):
    """Daily bars for one symbol over a date range, ascending by date."""

    symbol: str
    exchange: Exchange
    from_date: date
    to_date: date
    bars: list[DailyBar]

    @computed_field
    @property
    def record_count(self) -> int:
        return len(self.bars)


# =============================================================================
# ANNOUNCEMENTS
# =============================================================================


class MarketAnnouncement(MarketModel):
    """Corporate announcement as published by BSE."""

    symbol: str
    title: str
    description: str = ""
    category: str = ""
    date: Optional[datetime] = None
    attachment: Optional[str] = None


# =============================================================================
# TECHNICAL INDICATORS
# =============================================================================


class TechnicalIndicators(MarketModel):
    """
    Indicator set computed from a historical series.

    Any field that needs more history than was available is None.
    """

    symbol: str
    exchange: Optional[Exchange] = None
    calculated_at: datetime

    # Moving averages
    sma_20: Optional[float] = None
    sma_50: Optional[float] = None
    sma_200: Optional[float] = None
    ema_12: Optional[float] = None
    ema_26: Optional[float] = None

    # Momentum
    rsi: Optional[float] = None
    macd: Optional[float] = None
    macd_signal: Optional[float] = None
    macd_histogram: Optional[float] = None

    # Volatility
    bollinger_upper: Optional[float] = None
    bollinger_middle: Optional[float] = None
    bollinger_lower: Optional[float] = None
    atr: Optional[float] = None

    # Volume
    volume_ma: Optional[float] = None
    obv: Optional[float] = None

    # Levels
    support_levels: list[float] = Field(default_factory=list)
    resistance_levels: list[float] = Field(default_factory=list)
