"""
Supabase Storage Implementation

DESIGN DECISION: The ledger lives in a hosted Postgres table behind
Supabase's PostgREST API because:
1. Authentication and row level security come with it
2. No database to operate ourselves
3. The same client serves auth and data

TRADEOFFS:
- Aggregates are computed in Python over the matching rows
  (PostgREST caps a single response, fine for a branch ledger)
- The free-text search only covers text columns (source, reference id)

The implementation follows the abstract interface, so the table can be
swapped without changing the search or entry flows.
"""

import re
from datetime import datetime, time
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from supabase import Client, create_client
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.config import SupabaseSettings, get_settings
from src.models.transaction import (
    Transaction,
    TransactionCreate,
    TransactionFilter,
)
from src.services.storage.interface import (
    ConnectionError,
    NotFoundError,
    StorageError,
    TransactionStorageInterface,
)


# Columns read back for aggregate metrics
AGGREGATE_COLUMNS = "amount, payment_mode, source"

# Characters that would break a PostgREST or=(...) expression
_OR_FILTER_UNSAFE = re.compile(r"[,()]")


class SupabaseClient:
    """
    Lazy wrapper around the Supabase client.

    One instance is shared by the session store, the role store
    and the transaction storage.
    """

    def __init__(self, settings: Optional[SupabaseSettings] = None):
        self._client: Optional[Client] = None
        self._settings = settings

    @property
    def settings(self) -> SupabaseSettings:
        if self._settings is None:
            self._settings = get_settings().supabase
        return self._settings

    def connect(self) -> Client:
        """Create the client on first use."""
        if self._client is None:
            try:
                self._client = create_client(
                    self.settings.url,
                    self.settings.anon_key,
                )
            except Exception as e:
                raise ConnectionError(f"Failed to create Supabase client: {e}")
        return self._client


class SupabaseTransactionStorage(TransactionStorageInterface):
    """
    Supabase implementation of ledger storage.

    Reads and writes are retried on transient failures; a missing row
    is never retried.
    """

    def __init__(self, client: Optional[SupabaseClient] = None):
        self._client = client or SupabaseClient()

    def _table(self):
        return self._client.connect().table(self._client.settings.transactions_table)

    @staticmethod
    def _apply_filter(query: Any, criteria: TransactionFilter) -> Any:
        """Add the filter's WHERE clauses to a PostgREST query builder."""
        term = _OR_FILTER_UNSAFE.sub(" ", criteria.query).strip()
        if term:
            query = query.or_(f"source.ilike.%{term}%,reference_id.ilike.%{term}%")
        if criteria.payment_mode:
            query = query.eq("payment_mode", criteria.payment_mode.value)
        if criteria.start_date:
            query = query.gte(
                "created_at", datetime.combine(criteria.start_date, time.min).isoformat()
            )
        if criteria.end_date:
            # End date is inclusive of the whole day
            query = query.lte(
                "created_at", datetime.combine(criteria.end_date, time.max).isoformat()
            )
        if criteria.min_amount is not None:
            query = query.gte("amount", float(criteria.min_amount))
        if criteria.max_amount is not None:
            query = query.lte("amount", float(criteria.max_amount))
        return query

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def create(self, transaction: TransactionCreate) -> Transaction:
        """Insert a transaction and return the stored row."""
        try:
            response = self._table().insert(transaction.to_row()).execute()
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

        if not response.data:
            raise StorageError("Insert returned no row (check row level security)")
        return Transaction.from_row(response.data[0])

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def get(
        self,
        transaction_id: UUID,
        created_by: Optional[str] = None,
    ) -> Optional[Transaction]:
        """Retrieve a transaction by id."""
        try:
            query = self._table().select("*").eq("id", str(transaction_id))
            if created_by:
                query = query.eq("created_by", created_by)
            response = query.limit(1).execute()
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

        if not response.data:
            return None
        return Transaction.from_row(response.data[0])

    @retry(
        retry=retry_if_not_exception_type(NotFoundError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def delete(self, transaction_id: UUID) -> bool:
        """Delete a transaction by id."""
        try:
            response = self._table().delete().eq("id", str(transaction_id)).execute()
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")

        if not response.data:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return True

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def search(
        self,
        criteria: TransactionFilter,
        offset: int,
        limit: int,
    ) -> tuple[list[Transaction], int]:
        """One newest-first slice of the matching rows, plus the exact count."""
        try:
            query = self._apply_filter(
                self._table().select("*", count="exact"), criteria
            )
            response = (
                query.order("created_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )
        except Exception as e:
            raise StorageError(f"Failed to search transactions: {e}")

        rows = [Transaction.from_row(row) for row in (response.data or [])]
        return rows, response.count or 0

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def matching_amounts(
        self,
        criteria: TransactionFilter,
    ) -> list[tuple[Decimal, str, str]]:
        """Amount, mode and source for every matching row."""
        try:
            query = self._apply_filter(self._table().select(AGGREGATE_COLUMNS), criteria)
            response = query.execute()
        except Exception as e:
            raise StorageError(f"Failed to aggregate transactions: {e}")

        return [
            (Decimal(str(row["amount"])), row["payment_mode"], row.get("source") or "")
            for row in (response.data or [])
        ]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def recent(self, limit: int = 30) -> list[Transaction]:
        """Most recent transactions, newest first."""
        try:
            response = (
                self._table()
                .select("*")
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            raise StorageError(f"Failed to list recent transactions: {e}")

        return [Transaction.from_row(row) for row in (response.data or [])]
