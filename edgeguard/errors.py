"""
EdgeGuard Errors
================
Denial taxonomy, upstream dependency errors and failure policies.

Denials (rate limit, attack, authentication, authorization) are rendered as
JSON responses with a stable ``error`` field. Upstream errors never reach the
caller directly: each component decides whether it fails open or closed.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from starlette.responses import JSONResponse


class FailurePolicy(str, Enum):
    """What a component does when one of its dependencies fails."""
    FAIL_OPEN = "fail_open"      # allow the request
    FAIL_CLOSED = "fail_closed"  # deny the request


# =============================================================================
# Denials
# =============================================================================

class EdgeGuardError(Exception):
    """Base exception for all EdgeGuard errors."""

    status_code: int = 500
    error: str = "Internal Server Error"

    def __init__(self, message: str = ""):
        self.message = message
        super().__init__(message)

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message}


class RateLimitExceeded(EdgeGuardError):
    """Caller may retry after ``retry_after`` seconds."""

    status_code = 429

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.message, "retryAfter": self.retry_after}


class AttackDetected(EdgeGuardError):
    """Request matched a blocking WAF rule. Not retryable with the same payload."""

    status_code = 403
    error = "Forbidden"

    def __init__(self, rule_id: str, message: str = "Request blocked by security rules"):
        super().__init__(message)
        self.rule_id = rule_id

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message, "code": self.rule_id}


class Unauthenticated(EdgeGuardError):
    """Caller must supply or refresh credentials."""

    status_code = 401
    error = "Unauthorized"


class InvalidCredentials(Unauthenticated):
    """The identity provider rejected the bearer token."""


class Unauthorized(EdgeGuardError):
    """Identity is valid but the role is insufficient."""

    status_code = 403
    error = "Forbidden"

    def __init__(self, roles: List[str]):
        super().__init__(f"Required role: {' or '.join(roles)}")
        self.roles = roles


def error_response(exc: EdgeGuardError, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    """Render a denial as a JSON response. Never includes tracebacks or payloads."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)


# =============================================================================
# Upstream dependencies
# =============================================================================

class UpstreamDependencyError(EdgeGuardError):
    """A backing service (storage, identity provider) failed."""

    status_code = 503
    error = "Service Unavailable"

    def __init__(self, message: str, dependency: str = "unknown"):
        super().__init__(message)
        self.dependency = dependency

    def __str__(self) -> str:
        return f"[{self.dependency}] {self.message}"


class StorageError(UpstreamDependencyError):
    """Raised by rate limit, WAF log and profile stores."""

    def __init__(self, message: str, dependency: str = "storage"):
        super().__init__(message, dependency)


class IdentityProviderError(UpstreamDependencyError):
    """Identity provider unreachable, timing out or returning garbage."""

    def __init__(self, message: str, dependency: str = "identity"):
        super().__init__(message, dependency)
