"""
Agent Orchestrator

CONTRACT:
    Input: AgentQuery (free text plus optional symbols/exchange)
    Output: AgentResponse from exactly one agent

Flow: classify intent -> extract symbols -> route intent to an agent kind ->
dispatch. The route table is fixed at import time and covers every intent.
"""

import logging
from types import MappingProxyType
from typing import Mapping, Optional

from app.services.agents.agents import BaseAgent, build_default_agents
from app.services.agents.classifier import IntentClassifier
from app.services.agents.models import (
    AgentContext,
    AgentKind,
    AgentQuery,
    AgentResponse,
    IntentKind,
)
from app.services.base import ServiceError, ValidationError

logger = logging.getLogger(__name__)

INTENT_ROUTES: Mapping[IntentKind, AgentKind] = MappingProxyType({
    IntentKind.GET_STOCK_PRICE: AgentKind.MARKET_DATA,
    IntentKind.GET_HISTORICAL_DATA: AgentKind.MARKET_DATA,
    IntentKind.MARKET_TRENDS: AgentKind.MARKET_DATA,
    IntentKind.TECHNICAL_ANALYSIS: AgentKind.ANALYSIS,
    IntentKind.FUNDAMENTAL_ANALYSIS: AgentKind.ANALYSIS,
    IntentKind.RISK_ASSESSMENT: AgentKind.ANALYSIS,
    IntentKind.INVESTMENT_RECOMMENDATION: AgentKind.RECOMMENDATION,
    IntentKind.PORTFOLIO_ANALYSIS: AgentKind.RECOMMENDATION,
    IntentKind.NEWS_AND_SENTIMENT: AgentKind.NEWS_AND_SENTIMENT,
    IntentKind.GENERAL_HELP: AgentKind.GENERAL,
})

FALLBACK_AGENT_NAME = "OrchestratorAgent"


class AgentOrchestrator:
    """Routes classified queries to registered agents."""

    def __init__(
        self,
        agents: Mapping[AgentKind, BaseAgent],
        classifier: IntentClassifier,
        routes: Mapping[IntentKind, AgentKind] = INTENT_ROUTES,
    ):
        self._agents = dict(agents)
        self._classifier = classifier
        self._routes = routes

    def select_agent(self, intent: IntentKind) -> tuple[AgentKind, Optional[BaseAgent]]:
        kind = self._routes.get(intent, AgentKind.GENERAL)
        return kind, self._agents.get(kind)

    async def process(self, query: AgentQuery) -> AgentResponse:
        intent = await self._classifier.classify(query.message)
        symbols = [s.strip().upper() for s in query.symbols if s.strip()]
        if not symbols:
            symbols = await self._classifier.extract_symbols(query.message)

        context = AgentContext(
            intent=intent,
            message=query.message,
            symbols=symbols,
            exchange=(query.exchange or "NSE").upper(),
            user_id=query.user_id,
            session_id=query.session_id,
        )

        kind, agent = self.select_agent(intent)
        logger.info(f"Routing {intent.value} to {kind.value} (symbols: {symbols})")

        if agent is None:
            return AgentResponse(
                agent_name=FALLBACK_AGENT_NAME,
                intent=intent,
                response=(
                    "That kind of request isn't supported yet. "
                    "Try asking for a price, index levels, technical indicators or announcements."
                ),
                suggestions=["Price of RELIANCE", "Technical analysis of TCS"],
            )

        try:
            return await agent.handle(context)
        except ValidationError as e:
            return self._failed(agent.name, intent, e.message)
        except ServiceError as e:
            logger.error(f"{agent.name} failed on {intent.value}: {e.message}")
            return self._failed(agent.name, intent, "Market data is temporarily unavailable.")

    @staticmethod
    def _failed(agent_name: str, intent: IntentKind, message: str) -> AgentResponse:
        return AgentResponse(
            agent_name=agent_name,
            intent=intent,
            response="Sorry, I couldn't complete that request.",
            is_successful=False,
            error_message=message,
        )


# Singleton instance
_orchestrator: Optional[AgentOrchestrator] = None


def get_agent_orchestrator() -> AgentOrchestrator:
    """Get the orchestrator singleton wired to the shared clients."""
    global _orchestrator
    if _orchestrator is None:
        from app.services.exchanges import get_bse_client, get_nse_client
        from app.services.indicators import get_indicator_service

        agents = build_default_agents(get_nse_client(), get_bse_client(), get_indicator_service())
        _orchestrator = AgentOrchestrator(agents, IntentClassifier())
    return _orchestrator
