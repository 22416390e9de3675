"""
Domain agents.

Each agent answers one family of intents using the exchange clients and the
indicator engine. Agents never classify; they receive an AgentContext.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Mapping

from app.core.market_hours import market_today
from app.schemas.market import Exchange
from app.services.agents.models import AgentContext, AgentKind, AgentResponse, IntentKind
from app.services.exchanges import BseClient, ExchangeClientInterface, NseClient
from app.services.indicators import IndicatorService

DISCLAIMER = (
    "Market data is delayed and for information only. "
    "This is not investment advice."
)

HISTORY_DAYS = 30


class BaseAgent(ABC):
    """An agent handles a context and produces a response."""

    kind: AgentKind

    @property
    def name(self) -> str:
        return self.kind.value

    @abstractmethod
    async def handle(self, context: AgentContext) -> AgentResponse:
        pass

    def _reply(self, context: AgentContext, response: str, **kwargs) -> AgentResponse:
        return AgentResponse(
            agent_name=self.name,
            intent=context.intent,
            response=response,
            disclaimers=[DISCLAIMER],
            **kwargs,
        )

    def _ask_for_symbol(self, context: AgentContext) -> AgentResponse:
        return self._reply(
            context,
            "Which stock would you like me to look at? Please mention its NSE or BSE symbol.",
            suggestions=["Price of RELIANCE", "Technical analysis of TCS"],
        )


class ExchangeAwareAgent(BaseAgent):
    """Agent that picks the exchange client named in the context."""

    def __init__(self, clients: Mapping[Exchange, ExchangeClientInterface]):
        self._clients = clients

    def _client_for(self, context: AgentContext) -> ExchangeClientInterface:
        exchange = Exchange(context.exchange) if context.exchange in Exchange.__members__ else Exchange.NSE
        return self._clients[exchange]


class MarketDataAgent(ExchangeAwareAgent):
    """Quotes, recent history and index overview."""

    kind = AgentKind.MARKET_DATA

    async def handle(self, context: AgentContext) -> AgentResponse:
        client = self._client_for(context)

        if context.intent == IntentKind.MARKET_TRENDS:
            indices = await client.get_indices()
            if not indices:
                return self._reply(context, "Index data is not available right now.")
            lines = [
                f"{q.symbol}: {q.price:,.2f} ({q.change_percent:+.2f}%)" for q in indices
            ]
            return self._reply(
                context,
                f"{client.exchange.value} indices:\n" + "\n".join(lines),
                data=[q.model_dump(mode="json", by_alias=True) for q in indices],
            )

        if not context.symbol:
            return self._ask_for_symbol(context)

        if context.intent == IntentKind.GET_HISTORICAL_DATA:
            to_date = market_today()
            series = await client.get_historical(
                context.symbol, to_date - timedelta(days=HISTORY_DAYS), to_date
            )
            if series is None or not series.bars:
                return self._reply(context, f"No recent history found for {context.symbol}.")
            first, last = series.bars[0], series.bars[-1]
            move = (last.close - first.close) / first.close * 100 if first.close else 0.0
            return self._reply(
                context,
                f"{series.symbol} closed at ₹{last.close:,.2f} on {last.date}, "
                f"{move:+.2f}% over {series.record_count} sessions.",
                data=series.model_dump(mode="json", by_alias=True),
            )

        quote = await client.get_quote(context.symbol)
        if quote is None:
            return self._reply(context, f"I couldn't find a quote for {context.symbol}.")
        return self._reply(
            context,
            f"{quote.symbol} ({quote.exchange.value}) is trading at ₹{quote.price:,.2f}, "
            f"{quote.change:+,.2f} ({quote.change_percent:+.2f}%) from the previous close.",
            data=quote.model_dump(mode="json", by_alias=True),
        )


class AnalysisAgent(ExchangeAwareAgent):
    """Technical picture from the indicator engine."""

    kind = AgentKind.ANALYSIS

    def __init__(
        self,
        clients: Mapping[Exchange, ExchangeClientInterface],
        indicators: IndicatorService,
    ):
        super().__init__(clients)
        self._indicators = indicators

    async def handle(self, context: AgentContext) -> AgentResponse:
        if not context.symbol:
            return self._ask_for_symbol(context)

        result = await self._indicators.compute_latest(self._client_for(context), context.symbol)
        if result is None:
            return self._reply(context, f"Not enough history to analyse {context.symbol}.")

        parts = []
        if result.rsi is not None:
            state = "overbought" if result.rsi > 70 else "oversold" if result.rsi < 30 else "neutral"
            parts.append(f"RSI {result.rsi:.1f} ({state})")
        if result.macd is not None and result.macd_signal is not None:
            parts.append("MACD above signal" if result.macd > result.macd_signal else "MACD below signal")
        if result.sma_50 is not None and result.sma_200 is not None:
            parts.append("50-day SMA above 200-day" if result.sma_50 > result.sma_200 else "50-day SMA below 200-day")

        summary = ", ".join(parts) if parts else "limited indicator coverage for the available history"
        return self._reply(
            context,
            f"{result.symbol}: {summary}.",
            data=result.model_dump(mode="json", by_alias=True),
        )


class NewsAndSentimentAgent(BaseAgent):
    """Recent corporate announcements from BSE."""

    kind = AgentKind.NEWS_AND_SENTIMENT

    def __init__(self, bse: BseClient):
        self._bse = bse

    async def handle(self, context: AgentContext) -> AgentResponse:
        scrip = await self._bse.resolve_scrip_code(context.symbol) if context.symbol else None
        if context.symbol and scrip is None:
            return self._reply(context, f"I couldn't find {context.symbol} on BSE.")

        announcements = await self._bse.get_announcements(scrip)
        if not announcements:
            return self._reply(context, "No corporate announcements in the last week.")

        headlines = [f"- {a.title}" for a in announcements[:5] if a.title]
        return self._reply(
            context,
            "Recent announcements:\n" + "\n".join(headlines),
            data=[a.model_dump(mode="json", by_alias=True) for a in announcements],
        )


class GeneralAgent(BaseAgent):
    """Help text for unclear or unsupported requests."""

    kind = AgentKind.GENERAL

    async def handle(self, context: AgentContext) -> AgentResponse:
        return self._reply(
            context,
            "I can fetch live NSE/BSE quotes, recent price history, index levels, "
            "technical indicators and BSE corporate announcements.",
            suggestions=[
                "What is the price of INFY?",
                "Show NIFTY indices",
                "Technical analysis of HDFCBANK",
                "Latest announcements for TCS",
            ],
        )


def build_default_agents(
    nse: NseClient, bse: BseClient, indicators: IndicatorService
) -> dict[AgentKind, BaseAgent]:
    """Agents registered at startup, keyed by kind."""
    clients = {Exchange.NSE: nse, Exchange.BSE: bse}
    agents: list[BaseAgent] = [
        MarketDataAgent(clients),
        AnalysisAgent(clients, indicators),
        NewsAndSentimentAgent(bse),
        GeneralAgent(),
    ]
    return {agent.kind: agent for agent in agents}
