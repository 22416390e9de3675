"""
Indicator Engine Service Implementation

Calculates a TechnicalIndicators snapshot from a daily bar series.
Pure NumPy calculations; the same series always yields the same values.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import numpy as np
from pydantic import TypeAdapter

from app.core.market_hours import market_today
from app.schemas.market import Exchange, HistoricalSeries, TechnicalIndicators
from app.services.cache import CacheTTL, MarketCache, get_market_cache
from app.services.exchanges.interface import ExchangeClientInterface
from app.services.indicators.calculations import (
    atr,
    bollinger_bands,
    ema,
    find_support_resistance,
    get_last_valid,
    macd,
    obv,
    pivot_levels,
    rsi,
    sma,
)

logger = logging.getLogger(__name__)

LOOKBACK_DAYS = 365

_INDICATORS = TypeAdapter(TechnicalIndicators)


def indicator_cache_key(exchange: Exchange, symbol: str) -> str:
    """``indicators_{exchange}_{symbol}``; exchange clients never write under this prefix."""
    return f"indicators_{exchange.value.lower()}_{symbol}"


def _round(value: Optional[float], digits: int = 2) -> Optional[float]:
    return round(value, digits) if value is not None else None


class IndicatorService:
    """
    Indicator Engine Service.

    Fields that need more history than the series holds are left as None.
    """

    def __init__(self, cache: Optional[MarketCache] = None):
        self._cache = cache or get_market_cache()

    @property
    def name(self) -> str:
        return "IndicatorService"

    def calculate(self, series: HistoricalSeries) -> TechnicalIndicators:
        """Compute the indicator set as of the last bar in the series."""
        bars = series.bars
        highs = np.array([b.high for b in bars], dtype=float)
        lows = np.array([b.low for b in bars], dtype=float)
        closes = np.array([b.close for b in bars], dtype=float)
        volumes = np.array([b.volume for b in bars], dtype=float)

        macd_line, signal_line, histogram = macd(closes)
        upper, middle, lower = bollinger_bands(closes)
        support, resistance = self._levels(highs, lows, closes)

        return TechnicalIndicators(
            symbol=series.symbol,
            exchange=series.exchange,
            calculated_at=datetime.now(timezone.utc),
            sma_20=_round(get_last_valid(sma(closes, 20))),
            sma_50=_round(get_last_valid(sma(closes, 50))),
            sma_200=_round(get_last_valid(sma(closes, 200))),
            ema_12=_round(get_last_valid(ema(closes, 12))),
            ema_26=_round(get_last_valid(ema(closes, 26))),
            rsi=_round(get_last_valid(rsi(closes))),
            macd=_round(get_last_valid(macd_line), 4),
            macd_signal=_round(get_last_valid(signal_line), 4),
            macd_histogram=_round(get_last_valid(histogram), 4),
            bollinger_upper=_round(get_last_valid(upper)),
            bollinger_middle=_round(get_last_valid(middle)),
            bollinger_lower=_round(get_last_valid(lower)),
            atr=_round(get_last_valid(atr(highs, lows, closes))),
            volume_ma=_round(get_last_valid(sma(volumes, 20))),
            obv=get_last_valid(obv(closes, volumes)) if len(closes) else None,
            support_levels=support,
            resistance_levels=resistance,
        )

    def _levels(
        self, highs: np.ndarray, lows: np.ndarray, closes: np.ndarray
    ) -> tuple[list[float], list[float]]:
        """Swing levels, falling back to pivots from the previous bar."""
        if len(closes) == 0:
            return [], []

        support, resistance = find_support_resistance(highs, lows, closes, 50)
        if support and resistance:
            return support, resistance

        i = -2 if len(closes) > 1 else -1
        pivots = pivot_levels(float(highs[i]), float(lows[i]), float(closes[i]))
        return (
            support or [pivots["s1"], pivots["s2"]],
            resistance or [pivots["r1"], pivots["r2"]],
        )

    async def compute_latest(
        self,
        client: ExchangeClientInterface,
        symbol: str,
        as_of: Optional[date] = None,
        refresh: bool = False,
    ) -> Optional[TechnicalIndicators]:
        """
        Fetch a year of history and compute indicators, cached for 15 minutes.

        Returns None when the exchange has no history for the symbol.
        """
        normalized = symbol.strip().upper()
        key = indicator_cache_key(client.exchange, normalized)

        if refresh:
            await self._cache.remove(key)
        else:
            cached = await self._cache.get(key)
            if cached is not None:
                logger.debug(f"Cache hit: {key}")
                return _INDICATORS.validate_python(cached)

        to_date = as_of or market_today()
        series = await client.get_historical(
            normalized, to_date - timedelta(days=LOOKBACK_DAYS), to_date
        )
        if series is None or not series.bars:
            logger.warning(f"No history to compute indicators for {normalized}")
            return None

        indicators = self.calculate(series)
        await self._cache.set(
            key, _INDICATORS.dump_python(indicators, mode="json"), CacheTTL.INDICATORS
        )
        logger.info(
            f"Computed indicators for {normalized} ({client.exchange.value}) "
            f"from {series.record_count} bars"
        )
        return indicators


# Singleton instance
_service_instance: Optional[IndicatorService] = None


def get_indicator_service() -> IndicatorService:
    """Get or create indicator service instance."""
    global _service_instance
    if _service_instance is None:
        _service_instance = IndicatorService()
    return _service_instance
