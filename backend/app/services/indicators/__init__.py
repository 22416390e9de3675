"""
Indicator Engine Service

CONTRACT:
    Input:  HistoricalSeries (daily bars, ascending)
    Output: TechnicalIndicators

RESPONSIBILITIES:
    - Moving averages (SMA 20/50/200, EMA 12/26)
    - Momentum (RSI, MACD)
    - Volatility (ATR, Bollinger Bands)
    - Volume (volume MA, OBV)
    - Support/resistance levels

PURE PYTHON - No LLM involvement.
Uses NumPy for calculations.
All math is deterministic and reproducible.
"""

from app.services.indicators.service import IndicatorService, get_indicator_service

__all__ = [
    "IndicatorService",
    "get_indicator_service",
]
