"""
MarketDesk Services

Exchange clients, cache, indicator engine and agents. Failures are reported
through the ServiceError hierarchy in app.services.base.
"""

from app.services.base import (
    MalformedResponseError,
    PersistenceError,
    RepositoryRateLimitedError,
    ServiceError,
    TransientUpstreamError,
    UpstreamError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
    ValidationError,
)

__all__ = [
    "ServiceError",
    "ValidationError",
    "UpstreamError",
    "TransientUpstreamError",
    "UpstreamTimeoutError",
    "UpstreamUnavailableError",
    "MalformedResponseError",
    "PersistenceError",
    "RepositoryRateLimitedError",
]
