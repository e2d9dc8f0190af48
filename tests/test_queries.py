"""
Tests for the ledger search engine.

Test strategy:
- Run searches against in-memory storage
- Metrics must cover the whole match, not the visible page
- Debouncer driven by a fake clock
"""

import asyncio
from decimal import Decimal

import pytest

from src.models.transaction import PaymentMode, TransactionFilter
from src.queries import (
    LedgerQueryExecutor,
    QueryExecutionError,
    SearchDebouncer,
    reset_page_on_change,
)
from src.services.storage import ConnectionError

from conftest import make_transaction


class TestLedgerQueryExecutor:
    """Tests for LedgerQueryExecutor."""

    def test_page_size_must_be_positive(self, storage):
        """Test a zero page size is rejected."""
        with pytest.raises(ValueError):
            LedgerQueryExecutor(storage, page_size=0)

    def test_search_all_newest_first(self, storage):
        """Test an empty filter returns every row, newest first."""
        page = asyncio.run(LedgerQueryExecutor(storage).search(TransactionFilter()))
        assert page.total_count == 4
        assert [row.source for row in page.rows] == [
            "Acme Traders",
            "Corner Store",
            "Acme Logistics",
            "Tea Stall",
        ]
        assert page.stats.total_value == Decimal("11790.49")
        assert page.stats.average_value == Decimal("2947.62")

    def test_stats_cover_whole_match(self, storage):
        """Test metrics on page 2 still describe every matching row."""
        executor = LedgerQueryExecutor(storage, page_size=3)
        page = asyncio.run(executor.search(TransactionFilter(page=2)))

        assert [row.source for row in page.rows] == ["Tea Stall"]
        assert page.page_count == 2
        assert page.has_previous and not page.has_next
        assert page.stats.transaction_count == 4
        assert page.stats.mode_distribution == {"upi": 1, "cash": 2, "bank": 1}
        assert page.stats.sample_sources == ["Tea Stall"]

    def test_mode_filter(self, storage):
        """Test filtering by payment mode."""
        page = asyncio.run(
            LedgerQueryExecutor(storage).search(TransactionFilter(payment_mode=PaymentMode.CASH))
        )
        assert page.total_count == 2
        assert page.stats.total_value == Decimal("290.50")
        assert page.stats.average_value == Decimal("145.25")

    def test_no_match_is_empty_page(self, storage):
        """Test an empty result is not an error."""
        page = asyncio.run(LedgerQueryExecutor(storage).search(TransactionFilter(query="zzz")))
        assert page.rows == []
        assert page.stats.transaction_count == 0
        assert page.stats.average_value == Decimal("0.00")
        assert page.page_count == 1

    def test_storage_failure_wrapped(self, storage):
        """Test storage errors surface as QueryExecutionError."""
        storage.fail_with = ConnectionError("unreachable")
        with pytest.raises(QueryExecutionError):
            asyncio.run(LedgerQueryExecutor(storage).search(TransactionFilter()))

    def test_recent_limited(self, storage):
        """Test recent() returns the newest rows only."""
        rows = asyncio.run(LedgerQueryExecutor(storage).recent(2))
        assert [row.source for row in rows] == ["Acme Traders", "Corner Store"]

    def test_compute_stats_prefers_total_count(self):
        """Test the average divides by the reported count."""
        row = make_transaction("10")
        stats = LedgerQueryExecutor.compute_stats(
            [(Decimal("10"), "upi", "A"), (Decimal("20"), "upi", "B")],
            [row],
            total_count=4,
        )
        assert stats.transaction_count == 4
        assert stats.average_value == Decimal("7.50")
        assert stats.mode_distribution == {"upi": 2}


class TestResetPage:
    """Tests for reset_page_on_change."""

    def test_page_kept_when_criteria_same(self):
        """Test plain page changes are kept."""
        updated = reset_page_on_change(TransactionFilter(query="a"), TransactionFilter(query="a", page=3))
        assert updated.page == 3

    def test_page_reset_when_criteria_change(self):
        """Test any filter change goes back to page 1."""
        updated = reset_page_on_change(
            TransactionFilter(query="a", page=3),
            TransactionFilter(query="b", page=3),
        )
        assert updated.page == 1
        assert updated.query == "b"


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestSearchDebouncer:
    """Tests for SearchDebouncer."""

    def test_text_released_after_quiet_period(self):
        """Test text is held back until typing pauses."""
        clock = FakeClock()
        debouncer = SearchDebouncer(quiet_period_ms=500, clock=clock)

        debouncer.push("ac")
        assert debouncer.released == ""
        assert debouncer.is_pending

        clock.now += 0.25
        debouncer.push("acme")
        clock.now += 0.25
        assert debouncer.released == ""
        assert debouncer.remaining() == pytest.approx(0.25)

        clock.now += 0.25
        assert debouncer.released == "acme"
        assert not debouncer.is_pending
        assert debouncer.remaining() == 0.0

    def test_same_text_does_not_restart(self):
        """Test re-pushing unchanged text keeps the timer."""
        clock = FakeClock()
        debouncer = SearchDebouncer(quiet_period_ms=500, clock=clock)

        debouncer.push("x")
        clock.now += 0.25
        debouncer.push("x")
        clock.now += 0.25
        assert debouncer.released == "x"

    def test_released_text_not_pending(self):
        """Test pushing the already released text is a no-op."""
        clock = FakeClock()
        debouncer = SearchDebouncer(clock=clock)
        debouncer.push("")
        assert not debouncer.is_pending


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
