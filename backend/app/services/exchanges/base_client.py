"""
Shared HTTP plumbing for exchange clients.

Each client owns one aiohttp session with exchange-specific headers. Every
logical call goes through ``_request_json`` (retry + error mapping) and, where
cached, ``_read_through`` (cache check, fetch, write-through).
"""

import asyncio
import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiohttp
from pydantic import AliasChoices, AliasGenerator, BaseModel, ConfigDict, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel, to_pascal

from app.core.config import settings
from app.services.base import (
    MalformedResponseError,
    TransientUpstreamError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
    ValidationError,
)
from app.services.cache import MarketCache, get_market_cache
from app.services.exchanges.interface import ExchangeClientInterface
from app.services.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")
DtoT = TypeVar("DtoT", bound=BaseModel)

MAX_SEARCH_RESULTS = 10


class UpstreamModel(BaseModel):
    """
    Base for exchange payload DTOs.

    Exchanges are inconsistent about key casing, so each field accepts its
    snake_case, camelCase and PascalCase spelling.
    """

    model_config = ConfigDict(
        alias_generator=AliasGenerator(
            validation_alias=lambda name: AliasChoices(name, to_camel(name), to_pascal(name)),
        ),
        populate_by_name=True,
        extra="ignore",
    )


def compute_change(
    price: float,
    previous_close: float,
    change: Optional[float] = None,
    change_percent: Optional[float] = None,
) -> tuple[float, float]:
    """
    Resolve change and percent change for a quote.

    Values reported by the exchange win. Missing values are derived from the
    previous close; percent change is 0 when there is no previous close.
    """
    if change is None:
        change = price - previous_close
    if change_percent is None:
        change_percent = (change / previous_close * 100) if previous_close else 0.0
    return change, change_percent


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExchangeClient(ExchangeClientInterface):
    """HTTP client base: session management, retries, caching."""

    base_headers: dict[str, str] = {
        "Accept": "application/json",
        "Accept-Language": "en-US,en;q=0.9",
    }

    def __init__(
        self,
        base_url: str,
        cache: Optional[MarketCache] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._base_url = base_url.rstrip("/")
        self._cache = cache or get_market_cache()
        self._retry_policy = retry_policy or RetryPolicy(
            attempts=settings.retry_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )
        self._timeout = aiohttp.ClientTimeout(
            total=timeout or settings.exchange_timeout_seconds
        )
        self._sleep = sleep
        self._session: Optional[aiohttp.ClientSession] = None

    # ============ Session ============

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": settings.user_agent, **self.base_headers}

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure we have an active HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self._headers(),
                timeout=self._timeout,
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info(f"{self.name} session closed")
        self._session = None

    # ============ Validation helpers ============

    def normalize_symbol(self, symbol: str) -> str:
        if symbol is None or not symbol.strip():
            raise ValidationError(self.name, "Symbol cannot be empty")
        return symbol.strip().upper()

    def check_range(self, from_date: date, to_date: date) -> None:
        if from_date > to_date:
            raise ValidationError(
                self.name,
                "From date cannot be after to date",
                {"from_date": from_date.isoformat(), "to_date": to_date.isoformat()},
            )

    def cache_key(self, operation: str, *parts: str) -> str:
        """``{exchange}_{operation}[_part...]``, e.g. ``nse_quote_RELIANCE``."""
        return "_".join([self.exchange.value.lower(), operation, *parts])

    # ============ HTTP ============

    async def _request_json(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        params: Optional[dict[str, str]] = None,
        json_body: Optional[dict[str, Any]] = None,
    ) -> Optional[Any]:
        """
        Perform one logical call and return the decoded JSON body.

        Returns None when the exchange answers with a non-retryable non-2xx
        status. Timeouts, connection failures, 429 and 5xx are retried under
        the client's policy.
        """
        url = f"{self._base_url}{path}"

        async def attempt() -> Optional[Any]:
            session = await self._ensure_session()
            try:
                async with session.request(method, url, params=params, json=json_body) as resp:
                    if resp.status == 429 or resp.status >= 500:
                        raise UpstreamUnavailableError(
                            self.name,
                            f"{operation} returned HTTP {resp.status}",
                            {"status": resp.status},
                        )
                    if not 200 <= resp.status < 300:
                        logger.warning(f"{self.name} {operation} returned HTTP {resp.status}")
                        return None
                    raw = await resp.read()
            except asyncio.TimeoutError as e:
                raise UpstreamTimeoutError(self.name, f"{operation} timed out") from e
            except aiohttp.ClientError as e:
                raise UpstreamUnavailableError(self.name, f"{operation} failed: {e}") from e

            try:
                return json.loads(raw)
            except ValueError as e:
                logger.error(f"{self.name} {operation} returned non-JSON body: {raw[:500]!r}")
                raise MalformedResponseError(self.name, f"{operation} returned invalid JSON") from e

        return await retry_async(
            attempt,
            policy=self._retry_policy,
            retry_on=lambda e: isinstance(e, TransientUpstreamError),
            sleep=self._sleep,
            operation=f"{self.name} {operation}",
        )

    def _parse(self, dto: type[DtoT], payload: Any, operation: str) -> DtoT:
        """Validate an upstream payload against its DTO."""
        try:
            return dto.model_validate(payload)
        except PydanticValidationError as e:
            logger.error(
                f"{self.name} {operation} payload did not match {dto.__name__}: {payload!r}"
            )
            raise MalformedResponseError(
                self.name,
                f"Unexpected {operation} payload",
                {"error_count": e.error_count()},
            ) from e

    # ============ Cache ============

    async def _read_through(
        self,
        key: str,
        ttl: int,
        adapter: TypeAdapter,
        fetch: Callable[[], Awaitable[Optional[T]]],
    ) -> Optional[T]:
        """
        Return the cached value for ``key`` or fetch, cache and return it.

        A None result from ``fetch`` (not found) is not cached.
        """
        cached = await self._cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit: {key}")
            return adapter.validate_python(cached)

        value = await fetch()
        if value is not None:
            await self._cache.set(key, adapter.dump_python(value, mode="json"), ttl)
        return value
