"""
Exchange Client Interface

Defines the contract shared by the NSE and BSE clients.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional

from app.schemas.market import Exchange, HistoricalSeries, Quote


class ExchangeClientInterface(ABC):
    """
    Exchange Client Contract.

    INPUT: symbol (or BSE scrip code), optional date range, search query

    OUTPUT:
        - Quote / HistoricalSeries in the shared market model
        - None (or an empty list) when the exchange has nothing for the input

    ERRORS:
        - ValidationError: blank symbol, from_date after to_date
        - UpstreamTimeoutError / UpstreamUnavailableError: retries exhausted
        - MalformedResponseError: payload did not match the expected shape
    """

    @property
    @abstractmethod
    def exchange(self) -> Exchange:
        """Exchange served by this client."""
        pass

    @property
    def name(self) -> str:
        return f"{self.exchange.value}Client"

    @abstractmethod
    async def get_quote(self, symbol: str) -> Optional[Quote]:
        """Live quote for a single security."""
        pass

    @abstractmethod
    async def get_historical(
        self, symbol: str, from_date: date, to_date: date
    ) -> Optional[HistoricalSeries]:
        """Daily bars between two dates, inclusive."""
        pass

    @abstractmethod
    async def get_indices(self) -> list[Quote]:
        """Major indices as quotes."""
        pass

    @abstractmethod
    async def search_symbols(self, query: str) -> list[str]:
        """Up to ten symbols matching the query."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the HTTP session."""
        pass
