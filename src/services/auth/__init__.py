"""
Identity Services Package

Session store and role store interfaces, with the Supabase implementation.
"""

from src.services.auth.interface import (
    AuthServiceError,
    RoleLookupError,
    RoleStoreInterface,
    SessionCallback,
    SessionStoreInterface,
    Unsubscribe,
)
from src.services.auth.supabase_auth import (
    SupabaseRoleStore,
    SupabaseSessionStore,
    to_session,
)

__all__ = [
    # Interfaces
    "RoleStoreInterface",
    "SessionCallback",
    "SessionStoreInterface",
    "Unsubscribe",
    # Exceptions
    "AuthServiceError",
    "RoleLookupError",
    # Supabase implementation
    "SupabaseRoleStore",
    "SupabaseSessionStore",
    "to_session",
]
