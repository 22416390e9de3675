"""
MarketDesk Schema Contracts

JSON contracts shared by the exchange clients, the document store and the API.
"""

from app.schemas.market import (
    DailyBar,
    Exchange,
    HistoricalSeries,
    MarketAnnouncement,
    MarketStatus,
    Quote,
    TechnicalIndicators,
    TopMovers,
)

__all__ = [
    "DailyBar",
    "Exchange",
    "HistoricalSeries",
    "MarketAnnouncement",
    "MarketStatus",
    "Quote",
    "TechnicalIndicators",
    "TopMovers",
]
