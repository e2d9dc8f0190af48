"""Services package."""

from src.services.auth import (
    AuthServiceError,
    RoleLookupError,
    RoleStoreInterface,
    SessionStoreInterface,
    SupabaseRoleStore,
    SupabaseSessionStore,
)
from src.services.export import (
    ExportError,
    ExportFormat,
    export_transactions,
)
from src.services.storage import (
    ConnectionError,
    NotFoundError,
    StorageError,
    SupabaseClient,
    SupabaseTransactionStorage,
    TransactionStorageInterface,
)

__all__ = [
    # Identity services
    "AuthServiceError",
    "RoleLookupError",
    "RoleStoreInterface",
    "SessionStoreInterface",
    "SupabaseRoleStore",
    "SupabaseSessionStore",
    # Export services
    "ExportError",
    "ExportFormat",
    "export_transactions",
    # Storage services
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    "SupabaseClient",
    "SupabaseTransactionStorage",
    "TransactionStorageInterface",
]
