"""
Rate Limiting Module for EdgeGuard
==================================
Fixed-window limiter with in-memory, SQL and Redis counter stores.
"""

from .models import (
    DEFAULT_RATE_LIMITS,
    RateLimitConfig,
    RateLimitRecord,
    RateLimitResult,
    resolve_rate_limit_config,
)
from .base import RateLimitStore
from .in_memory import InMemoryRateLimitStore
from .sql_store import SQLRateLimitStore
from .redis_store import RedisRateLimitStore
from .limiter import RateLimiter, get_rate_limit_headers

__all__ = [
    # Models
    "DEFAULT_RATE_LIMITS",
    "RateLimitConfig",
    "RateLimitRecord",
    "RateLimitResult",
    "resolve_rate_limit_config",
    # Stores
    "RateLimitStore",
    "InMemoryRateLimitStore",
    "SQLRateLimitStore",
    "RedisRateLimitStore",
    # Limiter
    "RateLimiter",
    "get_rate_limit_headers",
]
