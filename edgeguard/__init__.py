"""
EdgeGuard
=========
Edge security middleware for Starlette/FastAPI services: rate limiting,
web application firewall, bearer authentication and role checks.
"""

__version__ = "0.1.0"

# Configuration
from edgeguard.config import EdgeGuardSettings

# Errors
from edgeguard.errors import (
    EdgeGuardError,
    RateLimitExceeded,
    AttackDetected,
    Unauthenticated,
    InvalidCredentials,
    Unauthorized,
    UpstreamDependencyError,
    StorageError,
    IdentityProviderError,
    FailurePolicy,
    error_response,
)

# Database
from edgeguard.database import Database, EdgeGuardTables, build_tables

# Logging
from edgeguard.log_setup import setup_logging, bind_request_context, clear_request_context

# Headers
from edgeguard.headers import (
    CORS_HEADERS,
    DEFAULT_SECURITY_HEADERS,
    cors_headers,
    add_cors_headers,
    add_security_headers,
    add_cors_and_security_headers,
)

# Rate Limiting
from edgeguard.rate_limit import (
    DEFAULT_RATE_LIMITS,
    RateLimitConfig,
    RateLimitResult,
    RateLimiter,
    InMemoryRateLimitStore,
    SQLRateLimitStore,
    RedisRateLimitStore,
    get_rate_limit_headers,
)

# WAF
from edgeguard.waf import (
    DEFAULT_WAF_CONFIG,
    DEFAULT_WAF_RULES,
    ProtectionLevel,
    WafConfig,
    WafRule,
    AttackDetectionResult,
    WafLogEntry,
    WebApplicationFirewall,
    InMemoryWafLogStore,
    SQLWafLogStore,
)

# Auth
from edgeguard.auth import (
    AuthGate,
    AuthRequirement,
    AuthResult,
    UserData,
    IdentityProvider,
    SQLProfileStore,
    StaticProfileStore,
    has_required_roles,
)

# Orchestrator
from edgeguard.security import (
    DEFAULT_SECURITY_CONFIG,
    SecurityConfig,
    SecurityGuard,
    resolve_security_config,
    create_security_guard,
    wrap_response_with_security,
    create_secure_response,
    create_secure_error_response,
)

# Framework Integration
from edgeguard.middleware import (
    EdgeSecurityMiddleware,
    SecurityDenied,
    require_security,
    security_denied_handler,
    setup_security,
)

# Maintenance
from edgeguard.maintenance import run_maintenance

# Metrics
from edgeguard.metrics import EDGEGUARD_REGISTRY, get_metrics_text

__all__ = [
    # Configuration
    "EdgeGuardSettings",
    # Errors
    "EdgeGuardError",
    "RateLimitExceeded",
    "AttackDetected",
    "Unauthenticated",
    "InvalidCredentials",
    "Unauthorized",
    "UpstreamDependencyError",
    "StorageError",
    "IdentityProviderError",
    "FailurePolicy",
    "error_response",
    # Database
    "Database",
    "EdgeGuardTables",
    "build_tables",
    # Logging
    "setup_logging",
    "bind_request_context",
    "clear_request_context",
    # Headers
    "CORS_HEADERS",
    "DEFAULT_SECURITY_HEADERS",
    "cors_headers",
    "add_cors_headers",
    "add_security_headers",
    "add_cors_and_security_headers",
    # Rate Limiting
    "DEFAULT_RATE_LIMITS",
    "RateLimitConfig",
    "RateLimitResult",
    "RateLimiter",
    "InMemoryRateLimitStore",
    "SQLRateLimitStore",
    "RedisRateLimitStore",
    "get_rate_limit_headers",
    # WAF
    "DEFAULT_WAF_CONFIG",
    "DEFAULT_WAF_RULES",
    "ProtectionLevel",
    "WafConfig",
    "WafRule",
    "AttackDetectionResult",
    "WafLogEntry",
    "WebApplicationFirewall",
    "InMemoryWafLogStore",
    "SQLWafLogStore",
    # Auth
    "AuthGate",
    "AuthRequirement",
    "AuthResult",
    "UserData",
    "IdentityProvider",
    "SQLProfileStore",
    "StaticProfileStore",
    "has_required_roles",
    # Orchestrator
    "DEFAULT_SECURITY_CONFIG",
    "SecurityConfig",
    "SecurityGuard",
    "resolve_security_config",
    "create_security_guard",
    "wrap_response_with_security",
    "create_secure_response",
    "create_secure_error_response",
    # Framework Integration
    "EdgeSecurityMiddleware",
    "SecurityDenied",
    "require_security",
    "security_denied_handler",
    "setup_security",
    # Maintenance
    "run_maintenance",
    # Metrics
    "EDGEGUARD_REGISTRY",
    "get_metrics_text",
]
