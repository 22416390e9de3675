"""
Intent classification and entity extraction over the LLM client.

The model is a black box: whatever it returns is mapped onto IntentKind, and
any failure (no provider, timeout, API error, unparseable output) degrades to
GENERAL_HELP with no symbols.
"""

import asyncio
import json
import logging
import re
from typing import Optional

from app.core.config import settings
from app.services.agents.models import IntentKind
from app.services.llm import LLMClient, get_llm_client

logger = logging.getLogger(__name__)

INTENT_SYSTEM_PROMPT = """You are an expert financial assistant for the Indian equity market.
Classify the user's intent.

Available intents:
- GET_STOCK_PRICE: User wants current stock price
- GET_HISTORICAL_DATA: User wants historical price data
- TECHNICAL_ANALYSIS: User wants technical analysis (RSI, MACD, etc.)
- FUNDAMENTAL_ANALYSIS: User wants fundamental analysis
- INVESTMENT_RECOMMENDATION: User wants investment advice
- PORTFOLIO_ANALYSIS: User wants portfolio review
- MARKET_TRENDS: User wants market overview or trends
- NEWS_AND_SENTIMENT: User wants news or market sentiment
- RISK_ASSESSMENT: User wants risk analysis
- GENERAL_HELP: User needs general help or unclear intent

Respond with only the intent name."""

ENTITY_SYSTEM_PROMPT = """Extract NSE/BSE stock symbols mentioned in the user message.
Return only a JSON object of the form {"symbols": ["RELIANCE", "TCS"]}.
Use an empty list when no symbol is mentioned."""

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class IntentClassifier:
    """Classifies free text into an IntentKind and pulls out ticker symbols."""

    def __init__(self, llm: Optional[LLMClient] = None, timeout: Optional[float] = None):
        self._llm = llm or get_llm_client()
        self._timeout = timeout or settings.llm_timeout_seconds

    async def _ask(self, system_prompt: str, message: str, max_tokens: int) -> Optional[str]:
        if not self._llm.is_configured:
            return None
        try:
            response = await asyncio.wait_for(
                self._llm.generate(system_prompt, f"User message: {message}", max_tokens),
                timeout=self._timeout,
            )
            return response.content
        except asyncio.TimeoutError:
            logger.warning("LLM call timed out")
        except Exception as e:
            logger.error(f"LLM call failed: {e}")
        return None

    async def classify(self, message: str) -> IntentKind:
        """Classify the message; GENERAL_HELP when the model is unavailable or unclear."""
        raw = await self._ask(INTENT_SYSTEM_PROMPT, message, max_tokens=20)
        intent = IntentKind.parse(raw)
        logger.debug(f"Intent classified as {intent.value} (raw: {raw!r})")
        return intent

    async def extract_symbols(self, message: str) -> list[str]:
        """Ticker symbols mentioned in the message, upper-cased, in order."""
        raw = await self._ask(ENTITY_SYSTEM_PROMPT, message, max_tokens=100)
        if not raw:
            return []

        match = _JSON_OBJECT.search(raw)
        try:
            payload = json.loads(match.group(0)) if match else {}
        except ValueError:
            logger.warning(f"Entity extraction returned invalid JSON: {raw!r}")
            return []

        symbols = payload.get("symbols") if isinstance(payload, dict) else None
        if not isinstance(symbols, list):
            return []
        return list(dict.fromkeys(
            s.strip().upper() for s in symbols if isinstance(s, str) and s.strip()
        ))
