"""
Framework Integration
=====================
Starlette middleware and FastAPI dependency wrapping SecurityGuard.

Usage:
    from edgeguard.middleware import setup_security

    app = FastAPI()
    guard = create_security_guard()
    setup_security(app, guard, profiles={"/api/admin": "admin", "/api/pay": "payment"})

    # Or per route:
    @app.post("/orders", dependencies=[Depends(require_security(guard, "protected"))])
    async def create_order(): ...
"""

import uuid
from typing import Callable, Dict, Iterable, Mapping, Optional

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import structlog

from .auth import UserData
from .log_setup import bind_request_context, clear_request_context
from .security import SecurityGuard, SecurityProfile

logger = structlog.get_logger(__name__)

DEFAULT_EXCLUDE_PATHS = ("/health", "/ready", "/metrics")


class EdgeSecurityMiddleware(BaseHTTPMiddleware):
    """
    Applies a security profile to every request, chosen by path prefix.

    The longest matching prefix wins; unmatched paths get ``default_profile``.
    Handler responses are decorated with the same profile's headers.
    """

    def __init__(
        self,
        app,
        guard: SecurityGuard,
        profiles: Optional[Mapping[str, SecurityProfile]] = None,
        default_profile: SecurityProfile = "default",
        exclude_paths: Iterable[str] = DEFAULT_EXCLUDE_PATHS,
    ):
        super().__init__(app)
        self.guard = guard
        self.profiles: Dict[str, SecurityProfile] = dict(profiles or {})
        self.default_profile = default_profile
        self.exclude_paths = frozenset(exclude_paths)
        # Longest first so the first hit is the most specific
        self._prefixes = sorted(self.profiles, key=len, reverse=True)

    def profile_for(self, path: str) -> SecurityProfile:
        for prefix in self._prefixes:
            if path == prefix or path.startswith(prefix.rstrip("/") + "/"):
                return self.profiles[prefix]
        return self.default_profile

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in self.exclude_paths:
            return await call_next(request)

        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        bind_request_context(request_id)

        try:
            profile = self.profile_for(path)
            denied = await self.guard.apply_security(request, profile)
            if denied is not None:
                denied.headers["X-Request-ID"] = request_id
                return denied

            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return self.guard.wrap_response_with_security(response, profile, request)
        finally:
            clear_request_context()


class SecurityDenied(Exception):
    """Raised by ``require_security`` to short-circuit a route with a denial."""

    def __init__(self, response: Response):
        super().__init__(response.status_code)
        self.response = response


async def security_denied_handler(request: Request, exc: SecurityDenied) -> Response:
    return exc.response


def require_security(guard: SecurityGuard, profile: SecurityProfile = "default"):
    """
    FastAPI dependency enforcing a security profile on one route.

    Resolves to the authenticated user (or None), so it can double as the
    route's user dependency.
    """
    async def dependency(request: Request) -> Optional[UserData]:
        denied = await guard.apply_security(request, profile)
        if denied is not None:
            raise SecurityDenied(denied)
        return getattr(request.state, "user", None)

    return dependency


def setup_security(
    app: FastAPI,
    guard: SecurityGuard,
    profiles: Optional[Mapping[str, SecurityProfile]] = None,
    default_profile: SecurityProfile = "default",
    exclude_paths: Iterable[str] = DEFAULT_EXCLUDE_PATHS,
) -> None:
    """
    Install EdgeSecurityMiddleware and the SecurityDenied handler on an app.

    Args:
        app: FastAPI application instance
        guard: Shared SecurityGuard (see ``create_security_guard``)
        profiles: Path prefix -> profile name or config
        default_profile: Profile for paths without a matching prefix
        exclude_paths: Exact paths that skip security entirely
    """
    app.add_exception_handler(SecurityDenied, security_denied_handler)
    app.add_middleware(
        EdgeSecurityMiddleware,
        guard=guard,
        profiles=profiles,
        default_profile=default_profile,
        exclude_paths=exclude_paths,
    )
    logger.info("edge_security_configured", profiles=len(profiles or {}))
