"""
Storage Services Package

Provides the abstract ledger storage interface and its Supabase implementation.
"""

from src.services.storage.interface import (
    ConnectionError,
    NotFoundError,
    StorageError,
    TransactionStorageInterface,
)
from src.services.storage.supabase_store import (
    SupabaseClient,
    SupabaseTransactionStorage,
)

__all__ = [
    # Interfaces
    "TransactionStorageInterface",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # Supabase implementation
    "SupabaseClient",
    "SupabaseTransactionStorage",
]
