"""
Identity Backends
=================
Token verification against the identity provider, and role lookup in the
profile store.
"""

from typing import Dict, Mapping, Optional, Protocol, Union

import httpx
from pydantic import ValidationError
from sqlalchemy import select

from ..database import DATABASE_ERRORS, Database
from ..errors import IdentityProviderError, InvalidCredentials, StorageError
from .models import IdentityUser, Profile

# Status codes the provider uses to reject a token
REJECTION_STATUSES = frozenset({400, 401, 403, 404, 422})


def _error_message(response: httpx.Response) -> str:
    """Best-effort human message from a GoTrue-style error body."""
    try:
        payload = response.json()
    except ValueError:
        return "Invalid token"
    if isinstance(payload, dict):
        for key in ("msg", "error_description", "message", "error"):
            if payload.get(key):
                return str(payload[key])
    return "Invalid token"


class IdentityProvider:
    """
    Async client for a GoTrue-compatible identity provider.

    Exchanges a bearer token for the user it belongs to via
    ``GET {base_url}/auth/v1/user``. No retries: a failed lookup is reported
    to the caller immediately.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Provider root URL
            service_key: Key sent as ``apikey`` on every call
            timeout: Per-request timeout in seconds
            transport: Custom httpx transport (tests use MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={
                "apikey": service_key,
                "Accept": "application/json",
                "User-Agent": "EdgeGuard-Identity-Client",
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()

    def _map_exception(self, exc: httpx.HTTPError) -> IdentityProviderError:
        if isinstance(exc, httpx.TimeoutException):
            return IdentityProviderError("Identity provider timed out")
        return IdentityProviderError(f"Identity provider unreachable: {exc}")

    async def get_user(self, token: str) -> IdentityUser:
        """
        Resolve a bearer token to its user.

        Raises:
            InvalidCredentials: The provider rejected the token
            IdentityProviderError: Network failure, 5xx or malformed payload
        """
        try:
            response = await self.client.get(
                "/auth/v1/user",
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise self._map_exception(e) from e

        if response.status_code in REJECTION_STATUSES:
            raise InvalidCredentials(_error_message(response))
        if response.status_code >= 400:
            raise IdentityProviderError(
                f"Identity provider returned HTTP {response.status_code}"
            )

        try:
            return IdentityUser.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise IdentityProviderError(f"Malformed identity payload: {e}") from e


class ProfileStore(Protocol):
    """Role lookup by subject id. Raises ``StorageError`` on backend failure."""

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        ...


class SQLProfileStore:
    """Reads the ``profiles`` table owned by the host application."""

    def __init__(self, database: Database):
        self.database = database
        self.table = database.tables.profiles

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        stmt = select(self.table.c.id, self.table.c.role, self.table.c.email).where(
            self.table.c.id == user_id
        )
        try:
            async with self.database.session() as session:
                row = (await session.execute(stmt)).mappings().first()
        except DATABASE_ERRORS as e:
            raise StorageError(f"Profile lookup failed: {e}") from e

        if row is None:
            return None
        return Profile(id=row["id"], role=row["role"], email=row["email"])


class StaticProfileStore:
    """
    Dict-backed profile store.

    For development and testing, or services with a fixed set of operators.
    """

    def __init__(self, profiles: Optional[Mapping[str, Union[Profile, str]]] = None):
        """
        Args:
            profiles: user id -> Profile, or user id -> role name
        """
        self._profiles: Dict[str, Profile] = {}
        for user_id, value in (profiles or {}).items():
            if isinstance(value, Profile):
                self._profiles[user_id] = value
            else:
                self._profiles[user_id] = Profile(id=user_id, role=value)

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        return self._profiles.get(user_id)
