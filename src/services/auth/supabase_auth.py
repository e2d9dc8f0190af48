"""
Supabase Identity Implementation

Adapts the hosted Supabase Auth service and the public users table to
SessionStoreInterface and RoleStoreInterface.

TRADEOFFS:
- The Python client is synchronous; calls block the event loop for one
  round trip. Acceptable for a single-user UI session.
- Session-change callbacks fire on the thread that triggered them
  (sign in, sign out, token refresh). The auth state manager copes with
  being called from outside its loop.
"""

from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from src.models.auth import Identity, RoleRecord, Session
from src.services.auth.interface import (
    AuthServiceError,
    RoleLookupError,
    RoleStoreInterface,
    SessionCallback,
    SessionStoreInterface,
    Unsubscribe,
)
from src.services.storage.supabase_store import SupabaseClient


logger = structlog.get_logger(__name__)

# PostgREST answers maybe_single() on an empty result with this code
# in older client releases instead of returning None.
NO_ROWS_CODE = "204"


def to_session(raw: Any) -> Optional[Session]:
    """Convert a provider session object to our Session model."""
    if raw is None or getattr(raw, "user", None) is None:
        return None

    user = raw.user
    expires_at = None
    if getattr(raw, "expires_at", None):
        expires_at = datetime.fromtimestamp(raw.expires_at, tz=timezone.utc)

    return Session(
        identity=Identity(id=str(user.id), email=getattr(user, "email", None)),
        access_token=raw.access_token or "",
        refresh_token=getattr(raw, "refresh_token", None),
        expires_at=expires_at,
    )


class SupabaseSessionStore(SessionStoreInterface):
    """Session store backed by Supabase Auth."""

    def __init__(self, client: Optional[SupabaseClient] = None):
        self._client = client or SupabaseClient()

    @property
    def _auth(self):
        return self._client.connect().auth

    async def get_current_session(self) -> Optional[Session]:
        try:
            return to_session(self._auth.get_session())
        except Exception as e:
            raise AuthServiceError(f"Failed to read current session: {e}") from e

    def subscribe(self, callback: SessionCallback) -> Unsubscribe:
        def _listener(event, raw_session) -> None:
            logger.debug("auth_state_change", provider_event=str(event))
            callback(to_session(raw_session))

        subscription = self._auth.on_auth_state_change(_listener)
        return subscription.unsubscribe

    async def sign_out(self) -> None:
        try:
            self._auth.sign_out()
        except Exception as e:
            raise AuthServiceError(f"Sign out failed: {e}") from e

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        try:
            response = self._auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except Exception as e:
            raise AuthServiceError(str(e)) from e

        session = to_session(response.session)
        if session is None:
            raise AuthServiceError("Sign in did not return a session")
        return session

    async def sign_up(self, email: str, password: str) -> Optional[Session]:
        try:
            response = self._auth.sign_up({"email": email, "password": password})
        except Exception as e:
            raise AuthServiceError(str(e)) from e
        return to_session(response.session)

    async def request_password_reset(self, email: str) -> None:
        options = {}
        redirect = self._client.settings.password_reset_redirect
        if redirect:
            options["redirect_to"] = redirect
        try:
            self._auth.reset_password_for_email(email, options)
        except Exception as e:
            raise AuthServiceError(str(e)) from e

    async def update_password(self, new_password: str) -> None:
        try:
            self._auth.update_user({"password": new_password})
        except Exception as e:
            raise AuthServiceError(str(e)) from e


class SupabaseRoleStore(RoleStoreInterface):
    """Role lookup against the users table (one row per identity)."""

    def __init__(self, client: Optional[SupabaseClient] = None):
        self._client = client or SupabaseClient()

    async def find_role_record(self, identity_id: str) -> Optional[RoleRecord]:
        table = self._client.settings.users_table
        try:
            response = (
                self._client.connect()
                .table(table)
                .select("id, email, role")
                .eq("id", identity_id)
                .maybe_single()
                .execute()
            )
        except Exception as e:
            if str(getattr(e, "code", "")) == NO_ROWS_CODE:
                return None
            raise RoleLookupError(f"Role lookup failed for {identity_id}: {e}") from e

        if response is None or not response.data:
            return None
        return RoleRecord(**response.data)
