"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for ledger storage.
This allows us to:
1. Keep the hosted Postgres table behind one seam
2. Use in-memory storage for testing
3. Keep search/aggregation logic decoupled from the query builder

The interface is intentionally simple - we're not building a full ORM.
Row level security stays in the hosted database; nothing here filters
by caller except where the UI explicitly scopes to the creator.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional
from uuid import UUID

from src.models.transaction import (
    Transaction,
    TransactionCreate,
    TransactionFilter,
)


class TransactionStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.
    """

    @abstractmethod
    async def create(self, transaction: TransactionCreate) -> Transaction:
        """
        Insert a validated transaction.

        Returns:
            The stored row, with its generated id

        Raises:
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def get(
        self,
        transaction_id: UUID,
        created_by: Optional[str] = None,
    ) -> Optional[Transaction]:
        """
        Retrieve a transaction by id.

        Args:
            transaction_id: The row id
            created_by: When given, only a row created by this identity matches

        Returns:
            The transaction if found, None otherwise
        """
        pass

    @abstractmethod
    async def delete(self, transaction_id: UUID) -> bool:
        """
        Delete a transaction by id.

        Returns:
            True if deleted

        Raises:
            NotFoundError: If no row has this id
        """
        pass

    @abstractmethod
    async def search(
        self,
        criteria: TransactionFilter,
        offset: int,
        limit: int,
    ) -> tuple[list[Transaction], int]:
        """
        Find transactions matching the filter, newest first.

        The page field of the filter is ignored; offset/limit select the slice.

        Returns:
            (rows in the slice, total number of matching rows)
        """
        pass

    @abstractmethod
    async def matching_amounts(
        self,
        criteria: TransactionFilter,
    ) -> list[tuple[Decimal, str, str]]:
        """
        (amount, payment_mode, source) of every row matching the filter.

        Used for aggregate metrics over the whole match, not just one page.
        """
        pass

    @abstractmethod
    async def recent(self, limit: int = 30) -> list[Transaction]:
        """
        Most recent transactions, newest first.
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
