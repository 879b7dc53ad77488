"""
Auth Models
===========
Caller identity as seen by the security layer.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

UNKNOWN_ROLE = "unknown"
ADMIN_ROLE = "admin"


class AuthRequirement(str, Enum):
    """How strictly an endpoint requires authentication."""
    NONE = "none"          # never consult the identity provider
    OPTIONAL = "optional"  # verify if possible, never deny
    REQUIRED = "required"  # deny with 401 on failure


@dataclass
class UserData:
    """Authenticated caller with the role from the profile store."""
    id: str
    role: str
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


@dataclass
class AuthResult:
    """``user`` is set iff ``authenticated``; ``error`` only on failure."""
    authenticated: bool
    user: Optional[UserData] = None
    error: Optional[str] = None


@dataclass
class Profile:
    """Row from the profile store."""
    id: str
    role: Optional[str] = None
    email: Optional[str] = None


class IdentityUser(BaseModel):
    """User payload returned by the identity provider."""
    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None
