"""Rate limiting configuration for the BackED API."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from backed.core.config import settings

# In-memory storage: limits are per worker process
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=settings.RATE_LIMIT_ENABLED,
)
