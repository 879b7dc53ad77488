"""
Auth Gate
=========
Bearer token verification and role checks.

``verify_auth`` never raises: provider and profile store failures are folded
into the returned AuthResult.
"""

from typing import Optional, Sequence

from starlette.requests import Request
import structlog

from ..errors import IdentityProviderError, InvalidCredentials, StorageError
from .identity import IdentityProvider, ProfileStore
from .models import ADMIN_ROLE, UNKNOWN_ROLE, AuthResult, UserData

logger = structlog.get_logger(__name__)

BEARER_PREFIX = "Bearer "
MISSING_HEADER_ERROR = "Missing or invalid Authorization header"
PROVIDER_ERROR = "Authentication error"

# request.state attribute holding the per-request verification
_STATE_ATTR = "edgeguard_auth"


def has_required_roles(user: UserData, required_roles: Optional[Sequence[str]]) -> bool:
    """
    Role check.

    No required roles always passes, and the admin role passes every check.
    """
    if not required_roles:
        return True
    if user.role == ADMIN_ROLE:
        return True
    return user.role in required_roles


class AuthGate:
    """Resolves the caller behind a bearer token to a UserData."""

    def __init__(self, identity_provider: IdentityProvider, profile_store: ProfileStore):
        self.identity_provider = identity_provider
        self.profile_store = profile_store

    async def verify_auth(self, request: Request) -> AuthResult:
        """
        Verify the request's bearer token.

        The result is cached on ``request.state`` so the limiter and the auth
        step of one request share a single provider round trip.
        """
        cached = self.cached_result(request)
        if cached is not None:
            return cached

        result = await self._verify(request)
        setattr(request.state, _STATE_ATTR, result)
        return result

    def cached_result(self, request: Request) -> Optional[AuthResult]:
        """The verification already done for this request, without calling out."""
        return getattr(request.state, _STATE_ATTR, None)

    async def _verify(self, request: Request) -> AuthResult:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith(BEARER_PREFIX):
            return AuthResult(authenticated=False, error=MISSING_HEADER_ERROR)

        token = auth_header[len(BEARER_PREFIX):]
        try:
            identity = await self.identity_provider.get_user(token)
        except InvalidCredentials as e:
            return AuthResult(authenticated=False, error=e.message or "Invalid token")
        except IdentityProviderError as e:
            logger.error("identity_provider_error", error=str(e))
            return AuthResult(authenticated=False, error=PROVIDER_ERROR)

        try:
            profile = await self.profile_store.get_profile(identity.id)
        except StorageError as e:
            logger.warning("profile_lookup_failed", user_id=identity.id, error=str(e))
            profile = None

        if profile is None:
            return AuthResult(
                authenticated=True,
                user=UserData(id=identity.id, role=UNKNOWN_ROLE, email=identity.email),
            )

        return AuthResult(
            authenticated=True,
            user=UserData(
                id=identity.id,
                role=profile.role or UNKNOWN_ROLE,
                email=profile.email or identity.email,
            ),
        )

    async def get_authenticated_user(self, request: Request) -> Optional[UserData]:
        """The verified caller, or None."""
        result = await self.verify_auth(request)
        return result.user if result.authenticated else None
