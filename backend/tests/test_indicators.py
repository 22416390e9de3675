"""Tests for indicator calculations and the indicator service."""

from datetime import date
from typing import Optional

import numpy as np
import pytest

from app.schemas.market import Exchange, HistoricalSeries
from app.services.exchanges import ExchangeClientInterface
from app.services.indicators.calculations import (
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

from conftest import make_series


def test_sma_aligns_with_input():
    result = sma(np.array([1.0, 2.0, 3.0, 4.0, 5.0]), 3)

    assert np.isnan(result[:2]).all()
    assert result[2:].tolist() == [2.0, 3.0, 4.0]


def test_sma_short_input_is_all_nan():
    assert np.isnan(sma(np.array([1.0, 2.0]), 3)).all()


def test_ema_of_constant_series_is_constant():
    result = ema(np.full(30, 50.0), 12)

    assert np.isnan(result[:11]).all()
    assert result[11:] == pytest.approx(50.0)


def test_ema_skips_leading_nans():
    data = np.concatenate([np.full(5, np.nan), np.arange(1.0, 11.0)])
    result = ema(data, 3)

    assert np.isnan(result[:7]).all()
    assert result[7] == pytest.approx(2.0)


def test_rsi_all_gains_is_100():
    result = rsi(np.arange(1.0, 31.0))

    assert get_last_valid(result) == 100.0


def test_rsi_bounded():
    closes = 100 + np.sin(np.linspace(0, 12, 80)) * 5
    values = rsi(closes)
    valid = values[~np.isnan(values)]

    assert ((valid >= 0) & (valid <= 100)).all()


def test_macd_signal_available_after_warmup():
    closes = np.linspace(100.0, 160.0, 60)
    line, signal, hist = macd(closes)

    assert np.isnan(line[:25]).all()
    assert not np.isnan(line[25])
    assert np.isnan(signal[:33]).all()
    assert not np.isnan(signal[33])
    assert hist[-1] == pytest.approx(line[-1] - signal[-1])


def test_bollinger_collapses_on_flat_prices():
    upper, middle, lower = bollinger_bands(np.full(25, 10.0))

    assert upper[-1] == middle[-1] == lower[-1] == 10.0


def test_obv_follows_direction():
    result = obv(np.array([1.0, 2.0, 1.0, 1.0]), np.array([10.0, 20.0, 30.0, 40.0]))

    assert result.tolist() == [10.0, 30.0, 0.0, 0.0]


def test_pivot_levels():
    levels = pivot_levels(110.0, 90.0, 100.0)

    assert levels == {"pivot": 100.0, "r1": 110.0, "r2": 120.0, "s1": 90.0, "s2": 80.0}


def test_support_resistance_needs_full_lookback():
    prices = np.arange(10.0)

    assert find_support_resistance(prices, prices, prices, lookback=50) == ([], [])


def test_support_resistance_finds_swings():
    closes = 100 + 10 * np.sin(np.linspace(0, 6 * np.pi, 60))
    support, resistance = find_support_resistance(closes + 1, closes - 1, closes, lookback=50)

    assert support and resistance
    assert all(level < closes[-1] for level in support)
    assert all(level > closes[-1] for level in resistance)
    assert support == sorted(support, reverse=True)


# ============ Service ============


def test_calculate_leaves_unavailable_fields_empty(indicator_service):
    series = make_series(symbol="TCS", days=30)

    result = indicator_service.calculate(series)

    assert result.symbol == "TCS"
    assert result.exchange == Exchange.NSE
    assert result.sma_20 is not None
    assert result.sma_50 is None
    assert result.sma_200 is None
    assert result.rsi == 100.0
    assert result.macd is not None
    assert result.macd_signal is None
    assert result.support_levels and result.resistance_levels


class StubClient(ExchangeClientInterface):
    def __init__(self, series: Optional[HistoricalSeries]):
        self.series = series
        self.calls = []

    @property
    def exchange(self) -> Exchange:
        return Exchange.NSE

    async def get_quote(self, symbol):
        return None

    async def get_historical(self, symbol, from_date, to_date):
        self.calls.append((symbol, from_date, to_date))
        return self.series

    async def get_indices(self):
        return []

    async def search_symbols(self, query):
        return []

    async def close(self):
        pass


async def test_compute_latest_fetches_a_year_and_caches(indicator_service):
    client = StubClient(make_series(symbol="TCS", days=250))

    first = await indicator_service.compute_latest(client, "tcs", as_of=date(2024, 6, 3))
    second = await indicator_service.compute_latest(client, "TCS", as_of=date(2024, 6, 3))

    assert client.calls == [("TCS", date(2023, 6, 4), date(2024, 6, 3))]
    assert first == second
    assert first.sma_200 is not None


async def test_compute_latest_refresh_recomputes(indicator_service):
    client = StubClient(make_series(symbol="TCS", days=60))

    await indicator_service.compute_latest(client, "TCS")
    await indicator_service.compute_latest(client, "TCS", refresh=True)

    assert len(client.calls) == 2


async def test_compute_latest_without_history(indicator_service):
    assert await indicator_service.compute_latest(StubClient(None), "TCS") is None


async def test_compute_latest_caches_under_indicator_prefix(indicator_service, cache):
    client = StubClient(make_series(symbol="TCS", days=60))

    await indicator_service.compute_latest(client, "tcs")

    assert await cache.exists("indicators_nse_TCS")
    assert not await cache.exists("nse_indicators_TCS")
