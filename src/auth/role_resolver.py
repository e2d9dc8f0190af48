"""
Role Resolver

Maps an authenticated identity to exactly one Role by looking up its
record in the role store.

FAIL-CLOSED POLICY: an authenticated identity whose role cannot be proven
gets the least privileged role. A failed lookup, a missing record and an
unrecognised stored value all resolve to FAIL_CLOSED_ROLE. Nothing here
ever grants more than the stored record says.

One attempt per resolution. No retries, no caching (the auth state
manager holds the resolved role for the lifetime of the identity).
"""

from typing import Optional

import structlog

from src.audit import AuditLogger
from src.models.auth import Role
from src.services.auth.interface import RoleStoreInterface


logger = structlog.get_logger(__name__)

# Role assigned whenever the stored role cannot be established
FAIL_CLOSED_ROLE = Role.USER


def fail_closed_role() -> Role:
    """The minimum-privilege role used on any uncertainty."""
    return FAIL_CLOSED_ROLE


class RoleResolver:
    """Resolves identity ids to roles, failing closed."""

    def __init__(
        self,
        role_store: RoleStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._role_store = role_store
        self._audit_logger = audit_logger

    async def resolve(self, identity_id: str) -> Role:
        """
        Return the role for an identity.

        Raises:
            ValueError: If identity_id is empty
        """
        if not identity_id:
            raise ValueError("identity_id must be non-empty")

        try:
            record = await self._role_store.find_role_record(identity_id)
        except Exception as e:
            logger.error(
                "role_lookup_failed",
                identity_id=identity_id,
                error=str(e),
            )
            return await self._fall_back(identity_id, "lookup_failed")

        if record is None:
            logger.warning("role_record_missing", identity_id=identity_id)
            return await self._fall_back(identity_id, "record_missing")

        role = Role.parse(record.role)
        if role is None:
            logger.error(
                "role_value_unrecognized",
                identity_id=identity_id,
                stored_role=record.role,
            )
            return await self._fall_back(identity_id, "role_unrecognized")

        return role

    async def _fall_back(self, identity_id: str, reason: str) -> Role:
        if self._audit_logger:
            await self._audit_logger.log_role_fallback(identity_id, reason)
        return fail_closed_role()
