"""
Agent Contracts

Intent and agent kinds, plus the request/response models passed between the
orchestrator and its agents.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class IntentKind(str, Enum):
    GET_STOCK_PRICE = "GET_STOCK_PRICE"
    GET_HISTORICAL_DATA = "GET_HISTORICAL_DATA"
    TECHNICAL_ANALYSIS = "TECHNICAL_ANALYSIS"
    FUNDAMENTAL_ANALYSIS = "FUNDAMENTAL_ANALYSIS"
    INVESTMENT_RECOMMENDATION = "INVESTMENT_RECOMMENDATION"
    PORTFOLIO_ANALYSIS = "PORTFOLIO_ANALYSIS"
    MARKET_TRENDS = "MARKET_TRENDS"
    NEWS_AND_SENTIMENT = "NEWS_AND_SENTIMENT"
    RISK_ASSESSMENT = "RISK_ASSESSMENT"
    GENERAL_HELP = "GENERAL_HELP"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "IntentKind":
        """Map classifier output to an intent; anything unrecognized is GENERAL_HELP."""
        if not raw:
            return cls.GENERAL_HELP
        token = raw.strip().strip("`'\".").upper().replace(" ", "_")
        try:
            return cls(token)
        except ValueError:
            return cls.GENERAL_HELP


class AgentKind(str, Enum):
    MARKET_DATA = "MarketDataAgent"
    ANALYSIS = "AnalysisAgent"
    RECOMMENDATION = "RecommendationAgent"
    NEWS_AND_SENTIMENT = "NewsAndSentimentAgent"
    GENERAL = "GeneralAgent"


class AgentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AgentQuery(AgentModel):
    """Free-text question from a user session."""

    message: str = Field(..., min_length=1, max_length=2000)
    user_id: str = "anonymous"
    session_id: Optional[str] = None
    symbols: list[str] = Field(default_factory=list)
    exchange: Optional[str] = None


class AgentContext(AgentModel):
    """What an agent sees: the query plus the classified intent and entities."""

    intent: IntentKind
    message: str
    symbols: list[str] = Field(default_factory=list)
    exchange: str = "NSE"
    user_id: str = "anonymous"
    session_id: Optional[str] = None

    @property
    def symbol(self) -> Optional[str]:
        return self.symbols[0] if self.symbols else None


class AgentResponse(AgentModel):
    agent_name: str
    intent: Optional[IntentKind] = None
    response: str
    data: Optional[Any] = None
    suggestions: list[str] = Field(default_factory=list)
    disclaimers: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_successful: bool = True
    error_message: Optional[str] = None
