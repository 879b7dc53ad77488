"""
Authentication Module for EdgeGuard
===================================
Identity provider client, profile stores and the auth gate.
"""

from .models import (
    ADMIN_ROLE,
    UNKNOWN_ROLE,
    AuthRequirement,
    AuthResult,
    IdentityUser,
    Profile,
    UserData,
)
from .identity import (
    IdentityProvider,
    ProfileStore,
    SQLProfileStore,
    StaticProfileStore,
)
from .gate import AuthGate, has_required_roles

__all__ = [
    # Models
    "ADMIN_ROLE",
    "UNKNOWN_ROLE",
    "AuthRequirement",
    "AuthResult",
    "IdentityUser",
    "Profile",
    "UserData",
    # Backends
    "IdentityProvider",
    "ProfileStore",
    "SQLProfileStore",
    "StaticProfileStore",
    # Gate
    "AuthGate",
    "has_required_roles",
]
