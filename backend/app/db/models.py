"""
SQLAlchemy models for the MarketDesk document store.

One table holds every container. A document is addressed by
``(container, id)`` and routed by ``partition_key``:
- market-data: quotes, 30 day TTL
- historical-data: daily bar ranges, kept indefinitely
- technical-indicators: computed indicator sets, 7 day TTL
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    Integer,
    Date,
    DateTime,
    Index,
    JSON,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Container:
    MARKET_DATA = "market-data"
    HISTORICAL_DATA = "historical-data"
    TECHNICAL_INDICATORS = "technical-indicators"


class Document(Base):
    """
    A JSON document in a named container.

    ``sort_ts`` orders documents within a partition (quote timestamp,
    indicator calculation time, write time for history). ``range_start`` and
    ``range_end`` are set for historical ranges only.
    """
    __tablename__ = "documents"

    container = Column(String(40), primary_key=True)
    id = Column(String(200), primary_key=True)
    partition_key = Column(String(120), nullable=False)
    symbol = Column(String(40), nullable=False)
    exchange = Column(String(10), nullable=True)
    sort_ts = Column(DateTime, nullable=False)
    range_start = Column(Date, nullable=True)
    range_end = Column(Date, nullable=True)
    body = Column(JSON, nullable=False)
    ttl = Column(Integer, nullable=True)  # seconds; None = never expires
    written_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=True, index=True)

    __table_args__ = (
        Index("ix_documents_partition_sort", "container", "partition_key", "sort_ts"),
        Index("ix_documents_symbol_exchange", "container", "symbol", "exchange"),
    )

    @staticmethod
    def expiry_for(written_at: datetime, ttl: Optional[int]) -> Optional[datetime]:
        return written_at + timedelta(seconds=ttl) if ttl else None
