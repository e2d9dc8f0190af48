"""
Data Models Package

This package contains all Pydantic models used in Ledger Gate.
All data flowing through the system must conform to these schemas.
"""

from src.models.auth import (
    LEDGER_ADMIN_ROLES,
    AuthPhase,
    AuthSnapshot,
    Identity,
    Role,
    RoleRecord,
    Session,
)
from src.models.transaction import (
    ENTRY_PAYMENT_MODES,
    FieldError,
    LedgerPage,
    LedgerStats,
    NewTransactionForm,
    PaymentMode,
    ReceiptExtraction,
    Transaction,
    TransactionCreate,
    TransactionFilter,
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Auth models
    "LEDGER_ADMIN_ROLES",
    "AuthPhase",
    "AuthSnapshot",
    "Identity",
    "Role",
    "RoleRecord",
    "Session",
    # Ledger models
    "ENTRY_PAYMENT_MODES",
    "FieldError",
    "LedgerPage",
    "LedgerStats",
    "NewTransactionForm",
    "PaymentMode",
    "ReceiptExtraction",
    "Transaction",
    "TransactionCreate",
    "TransactionFilter",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
