"""
Conversational agents.

CONTRACT:
    Input: AgentQuery
    Output: AgentResponse

An LLM classifies the message into an IntentKind; a fixed route table maps
the intent to an AgentKind and the registered agent answers it.
"""

from app.services.agents.agents import (
    AnalysisAgent,
    BaseAgent,
    GeneralAgent,
    MarketDataAgent,
    NewsAndSentimentAgent,
    build_default_agents,
)
from app.services.agents.classifier import IntentClassifier
from app.services.agents.models import (
    AgentContext,
    AgentKind,
    AgentQuery,
    AgentResponse,
    IntentKind,
)
from app.services.agents.orchestrator import (
    INTENT_ROUTES,
    AgentOrchestrator,
    get_agent_orchestrator,
)

__all__ = [
    "AgentContext",
    "AgentKind",
    "AgentOrchestrator",
    "AgentQuery",
    "AgentResponse",
    "AnalysisAgent",
    "BaseAgent",
    "GeneralAgent",
    "INTENT_ROUTES",
    "IntentClassifier",
    "IntentKind",
    "MarketDataAgent",
    "NewsAndSentimentAgent",
    "build_default_agents",
    "get_agent_orchestrator",
]
