"""
Exchange clients for MarketDesk.

One client per exchange, shared across requests.
"""

from typing import Optional

from app.services.exchanges.interface import ExchangeClientInterface
from app.services.exchanges.base_client import ExchangeClient, compute_change
from app.services.exchanges.nse_client import NseClient
from app.services.exchanges.bse_client import BseClient

# Singleton instances
_nse_client: Optional[NseClient] = None
_bse_client: Optional[BseClient] = None


def get_nse_client() -> NseClient:
    """Get the NSE client singleton."""
    global _nse_client
    if _nse_client is None:
        _nse_client = NseClient()
    return _nse_client


def get_bse_client() -> BseClient:
    """Get the BSE client singleton."""
    global _bse_client
    if _bse_client is None:
        _bse_client = BseClient()
    return _bse_client


async def close_exchange_clients() -> None:
    """Close HTTP sessions. Called on application shutdown."""
    global _nse_client, _bse_client
    for client in (_nse_client, _bse_client):
        if client is not None:
            await client.close()
    _nse_client = None
    _bse_client = None


__all__ = [
    "ExchangeClientInterface",
    "ExchangeClient",
    "NseClient",
    "BseClient",
    "compute_change",
    "get_nse_client",
    "get_bse_client",
    "close_exchange_clients",
]
