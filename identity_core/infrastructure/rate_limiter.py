"""
Rate limiter infrastructure using slowapi.

Limits are keyed by client address; set RATE_LIMIT_STORAGE_URI to a
Redis URL when running several workers.
"""

from slowapi import Limiter, _rate_limit_exceeded_handler  # noqa: F401
from slowapi.util import get_remote_address

from identity_core.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
)
