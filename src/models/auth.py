"""
Authentication and Authorization Models

These models describe who is signed in and what they may see:
- Identity: the authenticated principal (user id + email)
- Session: opaque proof of authentication issued by the identity provider
- Role: coarse permission tier resolved from the identity
- AuthSnapshot: one immutable reading of the auth state

DESIGN DECISION: Snapshots are frozen. The auth state manager replaces
its snapshot on every transition instead of mutating fields in place,
so observers never see a half-applied transition.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


class Role(str, Enum):
    """
    Permission tiers.

    Exactly one role per identity. USER is the least privileged.
    """
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    USER = "user"

    @classmethod
    def parse(cls, value: object) -> Optional["Role"]:
        """Return the matching role, or None for anything unrecognised."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


# Roles allowed to manage the ledger (entry, search, scan, intelligence)
LEDGER_ADMIN_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.SUPER_ADMIN})


class AuthPhase(str, Enum):
    """Phase of the auth state machine, derived from a snapshot."""
    INITIALIZING = "initializing"
    UNAUTHENTICATED = "unauthenticated"
    RESOLVING_ROLE = "resolving_role"
    AUTHENTICATED = "authenticated"


class Identity(BaseModel):
    """
    The authenticated principal.

    Owned by the identity provider; immutable for the lifetime of a session.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Opaque user id issued by the identity provider"
    )
    email: Optional[str] = Field(
        default=None,
        description="Email address, when the provider exposes one"
    )


class Session(BaseModel):
    """
    Opaque token bundle with an implicit expiry.

    Held transiently; this code never persists it.
    """
    model_config = ConfigDict(frozen=True)

    identity: Identity
    access_token: str = Field(default="", repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_at: Optional[datetime] = None


class RoleRecord(BaseModel):
    """
    Row of the users table as returned by the role store.

    The role is kept as the raw stored value; the resolver decides
    whether it is one of the known roles.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    role: Optional[str] = None

    @field_validator("role", mode="before")
    @classmethod
    def coerce_role(cls, v):
        if isinstance(v, Role):
            return v.value
        return v


class AuthSnapshot(BaseModel):
    """
    One reading of the auth state: {session, identity, role, resolving}.

    Invariant: without a session there is no identity and no role.
    """
    model_config = ConfigDict(frozen=True)

    session: Optional[Session] = None
    identity: Optional[Identity] = None
    role: Optional[Role] = None
    resolving: bool = False

    @model_validator(mode="after")
    def check_session_invariant(self) -> "AuthSnapshot":
        if self.session is None and (self.identity is not None or self.role is not None):
            raise ValueError("Identity and role require a session")
        return self

    @classmethod
    def initializing(cls) -> "AuthSnapshot":
        return cls(resolving=True)

    @classmethod
    def signed_out(cls) -> "AuthSnapshot":
        return cls()

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    @property
    def phase(self) -> AuthPhase:
        if self.session is None:
            return AuthPhase.INITIALIZING if self.resolving else AuthPhase.UNAUTHENTICATED
        if self.resolving or self.role is None:
            return AuthPhase.RESOLVING_ROLE
        return AuthPhase.AUTHENTICATED

    def to_log_dict(self) -> dict:
        """Loggable view; tokens are never included."""
        return {
            "phase": self.phase.value,
            "identity_id": self.identity.id if self.identity else None,
            "role": self.role.value if self.role else None,
            "resolving": self.resolving,
        }
