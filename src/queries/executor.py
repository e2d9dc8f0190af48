"""
Ledger Search Engine

DESIGN DECISION: Search is DETERMINISTIC and runs against stored rows
only. The AI insight shown next to the results is computed FROM the
metrics this engine returns; it never sees the query or answers it.

Every search produces one LedgerPage:
- the requested page of rows, newest first
- the exact number of matching rows
- metrics (total, average, mode distribution) over the WHOLE match,
  not just the visible page
"""

import time
from collections import Counter
from decimal import Decimal
from typing import Callable, Optional

import structlog

from src.models.transaction import (
    LedgerPage,
    LedgerStats,
    Transaction,
    TransactionFilter,
)
from src.services.storage import StorageError, TransactionStorageInterface


logger = structlog.get_logger(__name__)

# Sources passed to the insight agent as examples
SAMPLE_SOURCE_COUNT = 5


class QueryExecutionError(Exception):
    """Error during ledger search."""
    pass


class LedgerQueryExecutor:
    """
    Executes ledger searches against transaction storage.

    GUARANTEES:
    - Only returns real data from storage
    - Metrics describe exactly the rows the filter selects
    - An empty match is a valid page, not an error
    """

    def __init__(self, storage: TransactionStorageInterface, page_size: int = 10):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._storage = storage
        self.page_size = page_size

    async def search(self, criteria: TransactionFilter) -> LedgerPage:
        """
        Run a filtered search.

        Raises:
            QueryExecutionError: If storage cannot be read
        """
        offset = (criteria.page - 1) * self.page_size
        try:
            rows, total = await self._storage.search(criteria, offset, self.page_size)
            matches = await self._storage.matching_amounts(criteria)
        except StorageError as e:
            logger.error("ledger_search_failed", error=str(e), **criteria.to_query_params())
            raise QueryExecutionError(str(e)) from e

        stats = self.compute_stats(matches, rows, total)
        logger.debug(
            "ledger_search",
            total=total,
            page=criteria.page,
            rows=len(rows),
        )
        return LedgerPage(
            filter=criteria,
            rows=rows,
            total_count=total,
            page_size=self.page_size,
            stats=stats,
        )

    async def recent(self, limit: int = 30) -> list[Transaction]:
        """Most recent rows, used as context for the audit assistant."""
        try:
            return await self._storage.recent(limit)
        except StorageError as e:
            raise QueryExecutionError(str(e)) from e

    @staticmethod
    def compute_stats(
        matches: list[tuple[Decimal, str, str]],
        rows: list[Transaction],
        total_count: Optional[int] = None,
    ) -> LedgerStats:
        """
        Metrics over every matching row.

        The average divides by the exact match count when storage reports
        one, so it stays correct if the amount listing is truncated.
        """
        count = total_count if total_count is not None else len(matches)
        total_value = sum((amount for amount, _, _ in matches), Decimal("0"))
        average = total_value / count if count else Decimal("0")

        return LedgerStats(
            total_value=total_value,
            average_value=average.quantize(Decimal("0.01")),
            transaction_count=count,
            mode_distribution=dict(Counter(mode for _, mode, _ in matches)),
            sample_sources=[row.source for row in rows[:SAMPLE_SOURCE_COUNT]],
        )


def reset_page_on_change(
    previous: TransactionFilter,
    updated: TransactionFilter,
) -> TransactionFilter:
    """Go back to page 1 whenever the criteria (not just the page) change."""
    if previous.same_criteria(updated):
        return updated
    return updated.model_copy(update={"page": 1})


class SearchDebouncer:
    """
    Holds back free-text search input until typing pauses.

    push() records each keystroke's text; `released` only changes once
    no new text has arrived for the quiet period.
    """

    def __init__(
        self,
        quiet_period_ms: int = 400,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._quiet_period = quiet_period_ms / 1000
        self._clock = clock
        self._released = ""
        self._pending: Optional[str] = None
        self._changed_at = 0.0

    def push(self, text: str) -> None:
        latest = self._pending if self._pending is not None else self._released
        if text == latest:
            return
        self._pending = text
        self._changed_at = self._clock()

    @property
    def released(self) -> str:
        self._settle()
        return self._released

    @property
    def is_pending(self) -> bool:
        self._settle()
        return self._pending is not None

    def remaining(self) -> float:
        """Seconds until pending text is released (0 when nothing is pending)."""
        if not self.is_pending:
            return 0.0
        return max(0.0, self._quiet_period - (self._clock() - self._changed_at))

    def _settle(self) -> None:
        if self._pending is None:
            return
        if self._clock() - self._changed_at >= self._quiet_period:
            self._released = self._pending
            self._pending = None
