"""Ledger export package."""

from src.services.export.exporter import (
    EXPORT_COLUMNS,
    LOCAL_REFERENCE,
    ExportError,
    ExportFormat,
    export_filename,
    export_transactions,
    transactions_to_frame,
)

__all__ = [
    "EXPORT_COLUMNS",
    "LOCAL_REFERENCE",
    "ExportError",
    "ExportFormat",
    "export_filename",
    "export_transactions",
    "transactions_to_frame",
]
