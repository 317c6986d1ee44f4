"""
Service runtime layer for the Identity Server.

- RunContext: Request-scoped correlation data for side effects
- ServiceError: Standardized errors and the authorization taxonomy
- ServiceHttpClient: Pooled async HTTP client with automatic headers
- RetryPolicy: Configurable retry behavior for outbound calls
"""

from .context import RunContext
from .errors import RetryableError, ServiceError, TerminalError
from .http_client import ServiceHttpClient
from .retry import RetryPolicy, with_retry

__all__ = [
    "RunContext",
    "ServiceError",
    "RetryableError",
    "TerminalError",
    "ServiceHttpClient",
    "RetryPolicy",
    "with_retry",
]
