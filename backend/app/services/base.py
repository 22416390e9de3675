"""
Service Errors

Error taxonomy shared by exchange clients, the repository and the API layer.

    ServiceError
    ├── ValidationError            caller broke a precondition (HTTP 400)
    ├── UpstreamError
    │   ├── TransientUpstreamError retried, then reported (HTTP 500)
    │   │   ├── UpstreamTimeoutError
    │   │   └── UpstreamUnavailableError
    │   └── MalformedResponseError never retried (HTTP 500)
    └── PersistenceError           logged and swallowed on the request path
        └── RepositoryRateLimitedError  retryable

"Not found" is never an exception: operations return None or an empty list.
"""


class ServiceError(Exception):
    """Base exception for service errors."""

    def __init__(self, service_name: str, message: str, details: dict = None):
        self.service_name = service_name
        self.message = message
        self.details = details or {}
        super().__init__(f"[{service_name}] {message}")


class ValidationError(ServiceError):
    """Input validation error."""
    pass


class UpstreamError(ServiceError):
    """An external dependency failed to produce a usable answer."""
    pass


class TransientUpstreamError(UpstreamError):
    """Upstream failure that may succeed on retry (timeout, 5xx, 429)."""
    pass


class UpstreamTimeoutError(TransientUpstreamError):
    """Upstream call exceeded its timeout."""
    pass


class UpstreamUnavailableError(TransientUpstreamError):
    """Connection failure, server error or rate limit from upstream."""
    pass


class MalformedResponseError(UpstreamError):
    """Upstream answered with a payload we could not deserialize."""
    pass


class PersistenceError(ServiceError):
    """Document store write or read failed."""
    pass


class RepositoryRateLimitedError(PersistenceError):
    """Document store rejected the call as busy; safe to retry with backoff."""
    pass
