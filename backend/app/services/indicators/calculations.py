"""
Technical Indicator Calculations

NumPy implementations over daily bar arrays. Every function returns an array
aligned with its input, NaN where the lookback is not yet satisfied.
"""

import numpy as np
from typing import Optional
from numpy.lib.stride_tricks import sliding_window_view


# =============================================================================
# MOVING AVERAGES
# =============================================================================


def sma(data: np.ndarray, period: int) -> np.ndarray:
    """Simple Moving Average."""
    result = np.full(len(data), np.nan)
    if len(data) < period:
        return result

    result[period - 1:] = sliding_window_view(data, period).mean(axis=1)
    return result


def ema(data: np.ndarray, period: int) -> np.ndarray:
    """
    Exponential Moving Average, seeded with the SMA of the first full window.

    Leading NaNs are skipped, so the EMA of a derived series (e.g. the MACD
    line) starts once enough valid points exist.
    """
    result = np.full(len(data), np.nan)
    valid = np.flatnonzero(~np.isnan(data))
    if len(valid) == 0:
        return result

    start = valid[0]
    if len(data) - start < period:
        return result

    multiplier = 2 / (period + 1)
    seed = start + period - 1
    result[seed] = np.mean(data[start:seed + 1])
    for i in range(seed + 1, len(data)):
        result[i] = (data[i] - result[i - 1]) * multiplier + result[i - 1]

    return result


# =============================================================================
# MOMENTUM
# =============================================================================


def rsi(closes: np.ndarray, period: int = 14) -> np.ndarray:
    """Relative Strength Index with Wilder smoothing."""
    result = np.full(len(closes), np.nan)
    if len(closes) < period + 1:
        return result

    deltas = np.diff(closes)
    gains = np.clip(deltas, 0, None)
    losses = np.clip(-deltas, 0, None)

    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()

    for i in range(period, len(closes)):
        if i > period:
            avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
            avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period
        result[i] = 100.0 if avg_loss == 0 else 100 - (100 / (1 + avg_gain / avg_loss))

    return result


def macd(
    closes: np.ndarray,
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    MACD (Moving Average Convergence Divergence).

    Returns: (macd_line, signal_line, histogram)
    """
    macd_line = ema(closes, fast_period) - ema(closes, slow_period)
    signal_line = ema(macd_line, signal_period)
    return macd_line, signal_line, macd_line - signal_line


# =============================================================================
# VOLATILITY
# =============================================================================


def atr(
    highs: np.ndarray, lows: np.ndarray, closes: np.ndarray, period: int = 14
) -> np.ndarray:
    """Average True Range (EMA of the true range)."""
    if len(closes) < 2:
        return np.full(len(closes), np.nan)

    prev_close = closes[:-1]
    tr = np.empty(len(closes))
    tr[0] = highs[0] - lows[0]
    tr[1:] = np.maximum.reduce([
        highs[1:] - lows[1:],
        np.abs(highs[1:] - prev_close),
        np.abs(lows[1:] - prev_close),
    ])
    return ema(tr, period)


def bollinger_bands(
    closes: np.ndarray, period: int = 20, std_dev: float = 2.0
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Bollinger Bands over a population standard deviation.

    Returns: (upper, middle, lower)
    """
    middle = sma(closes, period)
    std = np.full(len(closes), np.nan)
    if len(closes) >= period:
        std[period - 1:] = sliding_window_view(closes, period).std(axis=1)

    return middle + std_dev * std, middle, middle - std_dev * std


# =============================================================================
# VOLUME
# =============================================================================


def obv(closes: np.ndarray, volumes: np.ndarray) -> np.ndarray:
    """On-Balance Volume, starting from the first bar's volume."""
    if len(closes) == 0:
        return np.array([], dtype=float)

    direction = np.sign(np.diff(closes))
    flow = np.concatenate(([volumes[0]], direction * volumes[1:]))
    return np.cumsum(flow).astype(float)


# =============================================================================
# SUPPORT/RESISTANCE
# =============================================================================


def pivot_levels(high: float, low: float, close: float) -> dict[str, float]:
    """Standard floor-trader pivots from one bar."""
    pivot = (high + low + close) / 3
    return {
        "pivot": round(pivot, 2),
        "r1": round(2 * pivot - low, 2),
        "r2": round(pivot + (high - low), 2),
        "s1": round(2 * pivot - high, 2),
        "s2": round(pivot - (high - low), 2),
    }


def find_support_resistance(
    highs: np.ndarray, lows: np.ndarray, closes: np.ndarray, lookback: int = 50
) -> tuple[list[float], list[float]]:
    """
    Find support and resistance levels using local minima/maxima.

    A swing point beats the two bars on either side. Returns up to five
    levels each, nearest to the last close first.

    Returns: (support_levels, resistance_levels)
    """
    if len(closes) < lookback:
        return [], []

    recent_highs = highs[-lookback:]
    recent_lows = lows[-lookback:]
    current_price = closes[-1]

    resistance = set()
    support = set()
    for i in range(2, lookback - 2):
        neighbours = np.r_[i - 2:i, i + 1:i + 3]
        if np.all(recent_highs[i] > recent_highs[neighbours]) and recent_highs[i] > current_price:
            resistance.add(round(float(recent_highs[i]), 2))
        if np.all(recent_lows[i] < recent_lows[neighbours]) and recent_lows[i] < current_price:
            support.add(round(float(recent_lows[i]), 2))

    return sorted(support, reverse=True)[:5], sorted(resistance)[:5]


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def get_last_valid(arr: np.ndarray) -> Optional[float]:
    """Get last non-NaN value from array."""
    valid = arr[~np.isnan(arr)]
    return float(valid[-1]) if len(valid) > 0 else None
