"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (to mount SlowAPIMiddleware) and by route modules
(to apply per-route limits with @limiter.limit()). A single shared instance
means every route counts against the same in-memory store.

RATE_LIMIT_ENABLED=false turns every limit into a no-op (the test suite
signs in far more often than the signin limit allows).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=get_settings().rate_limit_enabled,
)
