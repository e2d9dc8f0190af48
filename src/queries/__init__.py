"""Ledger search package."""

from src.queries.executor import (
    LedgerQueryExecutor,
    QueryExecutionError,
    SearchDebouncer,
    reset_page_on_change,
)

__all__ = [
    "LedgerQueryExecutor",
    "QueryExecutionError",
    "SearchDebouncer",
    "reset_page_on_change",
]
