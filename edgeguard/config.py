"""
EdgeGuard Configuration
=======================
Deployment settings read from the environment.
"""

import os
from dataclasses import dataclass, field
from typing import List


def _env(*names: str, default: str = "") -> str:
    """Return the first non-empty environment variable among ``names``."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class EdgeGuardSettings:
    """Settings for the persistence and identity backends."""
    database_url: str = field(default_factory=lambda: _env("EDGEGUARD_DATABASE_URL"))
    redis_url: str = field(default_factory=lambda: _env("EDGEGUARD_REDIS_URL"))
    identity_url: str = field(
        default_factory=lambda: _env("EDGEGUARD_IDENTITY_URL", "SUPABASE_URL")
    )
    service_role_key: str = field(
        default_factory=lambda: _env("EDGEGUARD_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_ROLE_KEY")
    )
    rate_limit_table: str = field(
        default_factory=lambda: _env("EDGEGUARD_RATE_LIMIT_TABLE", default="rate_limits")
    )
    waf_log_table: str = field(
        default_factory=lambda: _env("EDGEGUARD_WAF_LOG_TABLE", default="waf_logs")
    )
    waf_log_retention_days: int = field(
        default_factory=lambda: int(_env("EDGEGUARD_WAF_LOG_RETENTION_DAYS", default="30"))
    )
    cors_origins: List[str] = field(
        default_factory=lambda: _split(_env("EDGEGUARD_CORS_ORIGINS", default="*"))
    )
    identity_timeout: float = field(
        default_factory=lambda: float(_env("EDGEGUARD_IDENTITY_TIMEOUT", default="5.0"))
    )
    service_name: str = field(default_factory=lambda: _env("SERVICE_NAME", default="edgeguard"))

    def validate(self) -> None:
        """Raise ValueError if the identity backend is not configured."""
        if not self.identity_url or not self.service_role_key:
            raise ValueError(
                "EDGEGUARD_IDENTITY_URL and EDGEGUARD_SERVICE_ROLE_KEY must be set"
            )
