"""
Security Orchestrator
=====================
Composes rate limiting, WAF, authentication and role checks per endpoint
profile, and decorates responses with CORS and security headers.

Usage:
    guard = create_security_guard()

    async def handler(request):
        denied = await guard.apply_security(request, "protected")
        if denied:
            return denied
        return guard.wrap_response_with_security(JSONResponse(...), "protected")
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import redis.asyncio as aioredis
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
import structlog

from .auth import (
    AuthGate,
    AuthRequirement,
    AuthResult,
    IdentityProvider,
    SQLProfileStore,
    StaticProfileStore,
    has_required_roles,
)
from .config import EdgeGuardSettings
from .database import Database, build_tables
from .errors import Unauthenticated, Unauthorized, error_response
from .headers import add_cors_and_security_headers, cors_headers, preflight_response
from .ip_utils import get_client_ip, is_trusted_ip
from .metrics import record_decision
from .rate_limit import (
    InMemoryRateLimitStore,
    RateLimitConfig,
    RateLimiter,
    RedisRateLimitStore,
    SQLRateLimitStore,
)
from .waf import (
    InMemoryWafLogStore,
    ProtectionLevel,
    SQLWafLogStore,
    WafConfig,
    WebApplicationFirewall,
)

logger = structlog.get_logger(__name__)


@dataclass
class SecurityConfig:
    """
    Security profile for an endpoint.

    ``rate_limit`` is a rate limit profile name or config, ``waf`` a
    protection level or config; ``False`` disables either step.
    """
    rate_limit: Union[str, RateLimitConfig, bool] = "default"
    waf: Union[ProtectionLevel, WafConfig, bool] = ProtectionLevel.MEDIUM
    auth: AuthRequirement = AuthRequirement.OPTIONAL
    roles: Tuple[str, ...] = ()
    security_headers: bool = True
    custom_headers: Dict[str, str] = field(default_factory=dict)
    trusted_ips: Tuple[str, ...] = ()

    def __post_init__(self):
        self.auth = AuthRequirement(self.auth)
        self.roles = tuple(self.roles or ())
        self.trusted_ips = tuple(self.trusted_ips or ())
        if isinstance(self.waf, str) and not isinstance(self.waf, ProtectionLevel):
            self.waf = ProtectionLevel(self.waf)


DEFAULT_SECURITY_CONFIG: Dict[str, SecurityConfig] = {
    "default": SecurityConfig(
        rate_limit="default",
        waf=ProtectionLevel.MEDIUM,
        auth=AuthRequirement.OPTIONAL,
    ),
    "public": SecurityConfig(
        rate_limit="api",
        waf=ProtectionLevel.MEDIUM,
        auth=AuthRequirement.NONE,
    ),
    # Auth endpoints handle their own credentials
    "auth": SecurityConfig(
        rate_limit="auth",
        waf=ProtectionLevel.HIGH,
        auth=AuthRequirement.NONE,
    ),
    "protected": SecurityConfig(
        rate_limit="api",
        waf=ProtectionLevel.MEDIUM,
        auth=AuthRequirement.REQUIRED,
    ),
    "payment": SecurityConfig(
        rate_limit="payment",
        waf=ProtectionLevel.HIGH,
        auth=AuthRequirement.REQUIRED,
    ),
    "admin": SecurityConfig(
        rate_limit="admin",
        waf=ProtectionLevel.HIGH,
        auth=AuthRequirement.REQUIRED,
        roles=("admin",),
    ),
    "webhook": SecurityConfig(
        rate_limit="api",
        waf=ProtectionLevel.LOW,
        auth=AuthRequirement.NONE,
        security_headers=False,
    ),
}

SecurityProfile = Union[str, SecurityConfig, Mapping[str, Any]]


def resolve_security_config(config: SecurityProfile = "default") -> SecurityConfig:
    """
    Resolve a profile name, a SecurityConfig or a partial mapping.

    Unknown names fall back to ``default``; mappings override ``default``
    field by field.
    """
    if isinstance(config, SecurityConfig):
        return config
    if isinstance(config, str):
        return DEFAULT_SECURITY_CONFIG.get(config, DEFAULT_SECURITY_CONFIG["default"])
    return replace(DEFAULT_SECURITY_CONFIG["default"], **dict(config))


class SecurityGuard:
    """
    Runs the security pipeline for a request.

    Order: preflight, trusted IP bypass, rate limit, WAF, authentication,
    roles. The first failing step produces the response; later steps do not run.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        waf: WebApplicationFirewall,
        auth_gate: AuthGate,
        cors_origins: Optional[List[str]] = None,
        waf_log_retention_days: int = 30,
        database: Optional[Database] = None,
        redis_client=None,
    ):
        """
        Args:
            rate_limiter: Limiter (its auth gate should be ``auth_gate``)
            waf: Firewall engine
            auth_gate: Token verification
            cors_origins: Allowed origins (None or ["*"] for any)
            waf_log_retention_days: Default retention for maintenance
            database: Engine owner, disposed by ``aclose``
            redis_client: Redis connection, closed by ``aclose``
        """
        self.rate_limiter = rate_limiter
        self.waf = waf
        self.auth_gate = auth_gate
        self.cors_origins = cors_origins or ["*"]
        self.waf_log_retention_days = waf_log_retention_days
        self.database = database
        self.redis_client = redis_client

    def _cors(self, request: Optional[Request] = None) -> Dict[str, str]:
        origin = request.headers.get("origin") if request is not None else None
        return cors_headers(self.cors_origins, origin)

    async def apply_security(
        self,
        request: Request,
        config: SecurityProfile = "default",
        endpoint: Optional[str] = None,
    ) -> Optional[Response]:
        """
        Apply a security profile to a request.

        Args:
            request: Incoming request
            config: Profile name, SecurityConfig or partial mapping
            endpoint: Counter namespace for rate limiting (default: URL path)

        Returns:
            A denial (or preflight) response, or None to continue
        """
        security_config = resolve_security_config(config)
        cors = self._cors(request)

        if request.method == "OPTIONS":
            return preflight_response(cors)

        if is_trusted_ip(get_client_ip(request), security_config.trusted_ips):
            record_decision("security", "bypassed")
            return None

        endpoint = endpoint or request.url.path

        if security_config.rate_limit:
            denied = await self.rate_limiter.limit_request(
                request, endpoint, security_config.rate_limit
            )
            if denied is not None:
                return add_cors_and_security_headers(denied, security_config, cors)

        if security_config.waf:
            known = self.auth_gate.cached_result(request)
            user_id = known.user.id if known is not None and known.user is not None else None
            denied = await self.waf.protect(request, security_config.waf, user_id=user_id)
            if denied is not None:
                return add_cors_and_security_headers(denied, security_config, cors)

        auth_result = AuthResult(authenticated=False)
        if security_config.auth != AuthRequirement.NONE:
            auth_result = await self.auth_gate.verify_auth(request)

            if security_config.auth == AuthRequirement.REQUIRED and not auth_result.authenticated:
                record_decision("auth", "denied")
                logger.warning("auth_required_failed", path=request.url.path, reason=auth_result.error)
                exc = Unauthenticated(auth_result.error or "Authentication required")
                return add_cors_and_security_headers(error_response(exc), security_config, cors)

            record_decision("auth", "allowed" if auth_result.authenticated else "anonymous")

        if auth_result.authenticated and auth_result.user is not None:
            request.state.user = auth_result.user

            if security_config.roles and not has_required_roles(auth_result.user, security_config.roles):
                record_decision("role", "denied")
                logger.warning(
                    "role_check_failed",
                    user_id=auth_result.user.id,
                    role=auth_result.user.role,
                    required=list(security_config.roles),
                )
                exc = Unauthorized(list(security_config.roles))
                return add_cors_and_security_headers(error_response(exc), security_config, cors)

        return None

    def wrap_response_with_security(
        self,
        response: Response,
        config: SecurityProfile = "default",
        request: Optional[Request] = None,
    ) -> Response:
        """Add CORS and (per profile) security headers to a handler response."""
        return add_cors_and_security_headers(
            response, resolve_security_config(config), self._cors(request)
        )

    def create_secure_response(
        self,
        body: Any,
        status: int = 200,
        config: SecurityProfile = "default",
    ) -> Response:
        """Strings become text/plain, anything else JSON."""
        return self.wrap_response_with_security(_make_response(body, status), config)

    def create_secure_error_response(
        self,
        message: str,
        status: int = 400,
        config: SecurityProfile = "default",
    ) -> Response:
        return self.create_secure_response({"error": message}, status, config)

    async def aclose(self) -> None:
        """Release the identity client, Redis connection and database engine."""
        await self.auth_gate.identity_provider.aclose()
        if self.redis_client is not None:
            await self.redis_client.aclose()
        if self.database is not None:
            await self.database.dispose()


def _make_response(body: Any, status: int) -> Response:
    if isinstance(body, str):
        return PlainTextResponse(body, status_code=status)
    return JSONResponse(body, status_code=status)


def wrap_response_with_security(
    response: Response,
    config: SecurityProfile = "default",
    cors: Optional[Dict[str, str]] = None,
) -> Response:
    """Add wildcard CORS and (per profile) security headers to a response."""
    return add_cors_and_security_headers(response, resolve_security_config(config), cors)


def create_secure_response(body: Any, status: int = 200, config: SecurityProfile = "default") -> Response:
    return wrap_response_with_security(_make_response(body, status), config)


def create_secure_error_response(
    message: str, status: int = 400, config: SecurityProfile = "default"
) -> Response:
    """JSON ``{"error": message}`` with security headers."""
    return create_secure_response({"error": message}, status, config)


def create_security_guard(settings: Optional[EdgeGuardSettings] = None) -> SecurityGuard:
    """
    Build the guard and every backend it needs from settings.

    Call once per process and share the result. Without a database URL the
    counters and WAF log are kept in memory, which is only suitable for
    development.
    """
    settings = settings or EdgeGuardSettings()
    settings.validate()

    database = None
    redis_client = None

    if settings.database_url:
        database = Database(
            settings.database_url,
            tables=build_tables(settings.rate_limit_table, settings.waf_log_table),
        )
        waf_log_store = SQLWafLogStore(database)
        profile_store = SQLProfileStore(database)
        rate_limit_store = SQLRateLimitStore(database)
    else:
        logger.warning("edgeguard_in_memory_storage", reason="database_url not set")
        waf_log_store = InMemoryWafLogStore()
        profile_store = StaticProfileStore()
        rate_limit_store = InMemoryRateLimitStore()

    if settings.redis_url:
        redis_client = aioredis.from_url(settings.redis_url)
        rate_limit_store = RedisRateLimitStore(redis_client)

    identity_provider = IdentityProvider(
        settings.identity_url,
        settings.service_role_key,
        timeout=settings.identity_timeout,
    )
    auth_gate = AuthGate(identity_provider, profile_store)

    guard = SecurityGuard(
        rate_limiter=RateLimiter(rate_limit_store, auth_gate=auth_gate),
        waf=WebApplicationFirewall(waf_log_store),
        auth_gate=auth_gate,
        cors_origins=settings.cors_origins,
        waf_log_retention_days=settings.waf_log_retention_days,
        database=database,
        redis_client=redis_client,
    )
    logger.info(
        "security_guard_created",
        service=settings.service_name,
        database=database is not None,
        redis=redis_client is not None,
    )
    return guard
