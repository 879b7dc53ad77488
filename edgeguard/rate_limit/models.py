"""
Rate Limit Models
=================
Configuration, persisted counter records and check results.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Union


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-profile limiter settings. Not persisted."""
    limit: int  # requests allowed per window
    window: int  # window size in seconds
    ip_based: bool = True
    user_based: bool = True
    admin_bypass: bool = False
    error_message: Optional[str] = None


DEFAULT_ERROR_MESSAGE = "Too many requests. Please try again later."

DEFAULT_RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "default": RateLimitConfig(limit=60, window=60, admin_bypass=True),
    # Login/MFA endpoints are themselves the escalation surface: no bypass
    "auth": RateLimitConfig(
        limit=10,
        window=60,
        admin_bypass=False,
        error_message="Too many authentication attempts. Please try again later.",
    ),
    "api": RateLimitConfig(limit=120, window=60, admin_bypass=True),
    "payment": RateLimitConfig(
        limit=20,
        window=60,
        admin_bypass=False,
        error_message="Too many payment requests. Please try again later.",
    ),
    "admin": RateLimitConfig(limit=300, window=60, admin_bypass=True),
}


def resolve_rate_limit_config(config) -> RateLimitConfig:
    """Accept a profile name or a RateLimitConfig; unknown names get ``default``."""
    if isinstance(config, RateLimitConfig):
        return config
    return DEFAULT_RATE_LIMITS.get(config, DEFAULT_RATE_LIMITS["default"])


@dataclass
class RateLimitRecord:
    """Counter for one (key, endpoint) window."""
    key: str
    endpoint: str
    count: int
    first_request_at: datetime
    last_request_at: datetime
    expires_at: datetime
    id: Optional[Union[int, str]] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass
class RateLimitResult:
    """Rate limit check result with quota information."""
    allowed: bool
    limit: int
    remaining: int
    reset: int  # Unix timestamp
    retry_after: Optional[int] = None  # Seconds until retry allowed
