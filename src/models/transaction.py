"""
Ledger Data Models

Schemas for transactions flowing between the entry form, the receipt
scanner, the search screen and the hosted transactions table.

DESIGN DECISION: Amounts are Decimal end to end. The hosted table stores
DECIMAL(15, 2); floats only appear at the export and charting edges.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS
# =============================================================================

class PaymentMode(str, Enum):
    """How a transaction was settled."""
    CASH = "cash"
    BANK = "bank"
    UPI = "upi"
    CARD = "card"

    @property
    def needs_reference(self) -> bool:
        """Everything except cash carries a network reference (UTR / ref id)."""
        return self is not PaymentMode.CASH


# Modes offered by the entry form and the receipt scanner
ENTRY_PAYMENT_MODES = (PaymentMode.CASH, PaymentMode.BANK, PaymentMode.UPI)


# =============================================================================
# TRANSACTION
# =============================================================================

class Transaction(BaseModel):
    """A stored ledger row."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID
    amount: Decimal
    payment_mode: PaymentMode
    source: str = Field(..., min_length=1, max_length=200)
    reference_id: Optional[str] = Field(default=None, max_length=100)
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Transaction":
        """Build from a raw table row, ignoring columns we don't model."""
        return cls(**{k: v for k, v in row.items() if k in cls.model_fields})


class TransactionCreate(BaseModel):
    """
    A validated, ready-to-insert transaction.

    Produced by TransactionValidator (manual entry) or by the receipt
    scanner commit step. Never built straight from raw form input.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(..., gt=0)
    payment_mode: PaymentMode
    source: str = Field(..., min_length=1, max_length=200)
    reference_id: Optional[str] = Field(default=None, max_length=100)
    created_by: str = Field(..., min_length=1)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @model_validator(mode="after")
    def check_reference(self) -> "TransactionCreate":
        if self.payment_mode is PaymentMode.CASH:
            self.reference_id = None
        elif not self.reference_id:
            raise ValueError("Reference id is required for non-cash payments")
        else:
            self.reference_id = self.reference_id.upper()
        return self

    def to_row(self) -> dict[str, Any]:
        """Insert payload for the transactions table."""
        return {
            "amount": float(self.amount),
            "payment_mode": self.payment_mode.value,
            "source": self.source,
            "reference_id": self.reference_id,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }


class NewTransactionForm(BaseModel):
    """Raw entry-form input, exactly as typed."""

    amount: str = ""
    payment_mode: PaymentMode = PaymentMode.CASH
    source: str = ""
    reference_id: str = ""


class FieldError(BaseModel):
    """A single form field problem."""

    field: str
    message: str


# =============================================================================
# SEARCH
# =============================================================================

class TransactionFilter(BaseModel):
    """
    Ledger search filters, as held in the search screen's query string.

    page is 1-based. payment_mode None means all modes.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    query: str = ""
    payment_mode: Optional[PaymentMode] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    page: int = Field(default=1, ge=1)

    @field_validator("payment_mode", mode="before")
    @classmethod
    def all_means_none(cls, v):
        if v in ("", "all", None):
            return None
        return v

    @field_validator("min_amount", "max_amount", "start_date", "end_date", mode="before")
    @classmethod
    def blank_means_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def same_criteria(self, other: "TransactionFilter") -> bool:
        """True when both filters select the same rows (page ignored)."""
        return self.model_dump(exclude={"page"}) == other.model_dump(exclude={"page"})

    def to_query_params(self) -> dict[str, str]:
        """Short query-string form (q, mode, start, end, min, max, page)."""
        params: dict[str, str] = {}
        if self.query:
            params["q"] = self.query
        if self.payment_mode:
            params["mode"] = self.payment_mode.value
        if self.start_date:
            params["start"] = self.start_date.isoformat()
        if self.end_date:
            params["end"] = self.end_date.isoformat()
        if self.min_amount is not None:
            params["min"] = str(self.min_amount)
        if self.max_amount is not None:
            params["max"] = str(self.max_amount)
        if self.page > 1:
            params["page"] = str(self.page)
        return params

    @classmethod
    def from_query_params(cls, params: dict[str, str]) -> "TransactionFilter":
        """Inverse of to_query_params; a bad page number falls back to 1."""
        try:
            page = max(1, int(params.get("page", "1")))
        except ValueError:
            page = 1
        return cls(
            query=params.get("q", ""),
            payment_mode=params.get("mode"),
            start_date=params.get("start"),
            end_date=params.get("end"),
            min_amount=params.get("min"),
            max_amount=params.get("max"),
            page=page,
        )


class LedgerStats(BaseModel):
    """Aggregate metrics for the rows matching a filter."""

    total_value: Decimal = Decimal("0")
    average_value: Decimal = Decimal("0")
    transaction_count: int = 0
    mode_distribution: dict[str, int] = Field(default_factory=dict)
    sample_sources: list[str] = Field(default_factory=list)


class LedgerPage(BaseModel):
    """One page of search results plus the metrics for the whole match."""

    filter: TransactionFilter
    rows: list[Transaction] = Field(default_factory=list)
    total_count: int = 0
    page_size: int
    stats: LedgerStats = Field(default_factory=LedgerStats)

    @property
    def page_count(self) -> int:
        if self.total_count == 0:
            return 1
        return (self.total_count + self.page_size - 1) // self.page_size

    @property
    def has_next(self) -> bool:
        return self.filter.page < self.page_count

    @property
    def has_previous(self) -> bool:
        return self.filter.page > 1


# =============================================================================
# RECEIPT SCAN
# =============================================================================

class ReceiptExtraction(BaseModel):
    """
    Fields read off a receipt image by the vision model.

    CRITICAL: This is PROPOSED data. It becomes a transaction only after
    the user commits it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(..., gt=0)
    source: str = Field(..., min_length=1, max_length=200)
    payment_mode: PaymentMode = PaymentMode.BANK
    date: Optional[datetime] = None

    @field_validator("payment_mode", mode="before")
    @classmethod
    def unknown_mode_is_bank(cls, v):
        if isinstance(v, str) and v.strip().lower() in {m.value for m in ENTRY_PAYMENT_MODES}:
            return v.strip().lower()
        return PaymentMode.BANK

    @field_validator("date", mode="before")
    @classmethod
    def unparsable_date_is_none(cls, v):
        if v in (None, ""):
            return None
        if isinstance(v, datetime):
            return v
        try:
            parsed = datetime.fromisoformat(str(v).replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def to_transaction(self, created_by: str, reference_id: str) -> TransactionCreate:
        """Committed form of the extraction; an absent date means now."""
        return TransactionCreate(
            amount=self.amount,
            payment_mode=self.payment_mode,
            source=self.source,
            reference_id=reference_id,
            created_by=created_by,
            created_at=self.date or datetime.now(timezone.utc),
        )
