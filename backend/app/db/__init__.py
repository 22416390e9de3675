"""
Database module for MarketDesk.

Provides the document store connection, model and repository.
"""

from app.db.database import AsyncSessionLocal, close_db, init_db, ping_db
from app.db.models import Base, Container, Document
from app.db.repository import MarketDataRepository, get_market_data_repository

__all__ = [
    "AsyncSessionLocal",
    "init_db",
    "close_db",
    "ping_db",
    "Base",
    "Container",
    "Document",
    "MarketDataRepository",
    "get_market_data_repository",
]
