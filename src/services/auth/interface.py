"""
Abstract Identity Interfaces

DESIGN DECISION: The identity provider and the role table are external
collaborators. We define the narrow surface we consume from them so that:
1. The auth state machine can be tested without a network
2. The hosted backend can be swapped without touching the auth core
3. Nothing outside this package knows about provider SDK types

The auth core consumes only: get current session, subscribe to session
changes, find role record by identity id, sign out. The credential
operations exist for the login and password reset screens.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from src.models.auth import RoleRecord, Session


# Callback invoked with the new session, or None when the session is gone
SessionCallback = Callable[[Optional[Session]], None]

# Returned by subscribe(); calling it stops further notifications
Unsubscribe = Callable[[], None]


class SessionStoreInterface(ABC):
    """
    Issues, refreshes and revokes sessions; notifies subscribers on change.

    Notifications must be delivered in the order the provider emits them.
    """

    @abstractmethod
    async def get_current_session(self) -> Optional[Session]:
        """
        Return the active session, if any.

        Raises:
            AuthServiceError: If the provider cannot be reached
        """
        pass

    @abstractmethod
    def subscribe(self, callback: SessionCallback) -> Unsubscribe:
        """
        Register for session-change notifications.

        Args:
            callback: Called with the new session (None on sign-out/expiry)

        Returns:
            A function that cancels the subscription
        """
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        """
        Revoke the current session.

        Raises:
            AuthServiceError: If the provider rejects the request
        """
        pass

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> Session:
        """
        Verify credentials and open a session.

        Raises:
            AuthServiceError: On bad credentials or provider failure
        """
        pass

    @abstractmethod
    async def sign_up(self, email: str, password: str) -> Optional[Session]:
        """
        Register a new identity.

        Returns:
            The new session, or None when email confirmation is pending
        """
        pass

    @abstractmethod
    async def request_password_reset(self, email: str) -> None:
        """Ask the provider to email a password reset link."""
        pass

    @abstractmethod
    async def update_password(self, new_password: str) -> None:
        """Set a new password for the signed-in identity."""
        pass


class RoleStoreInterface(ABC):
    """Looks up the stored role record for an identity."""

    @abstractmethod
    async def find_role_record(self, identity_id: str) -> Optional[RoleRecord]:
        """
        Find the role record keyed by identity id.

        Single round trip, no pagination, no retries.

        Returns:
            The record, or None if the identity has no record

        Raises:
            RoleLookupError: On transport or server failure
        """
        pass


class AuthServiceError(Exception):
    """The identity provider rejected a request or could not be reached."""
    pass


class RoleLookupError(Exception):
    """The role record query failed (transport or server error)."""
    pass
