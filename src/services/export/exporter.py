"""
Ledger Export

Writes a page of search results to CSV or Excel for offline audit.

DESIGN DECISION: Rows go through a pandas DataFrame so both formats share
one column layout; Excel is written with the xlsxwriter engine. Exports
are produced in memory and handed to the UI as bytes.
"""

from datetime import datetime, timezone
from enum import Enum
from io import BytesIO
from typing import Optional

import pandas as pd

from src.models.transaction import Transaction


EXPORT_COLUMNS = [
    "Archive Date",
    "Entity",
    "Mode",
    "Value (INR)",
    "Reference ID",
    "Trace ID",
]

# Shown in place of a missing reference id (cash entries)
LOCAL_REFERENCE = "LOCAL"

SHEET_NAME = "Ledger_Export"

# Excel column widths, in the order of EXPORT_COLUMNS
_COLUMN_WIDTHS = [25, 30, 15, 20, 25, 40]


class ExportFormat(str, Enum):
    CSV = "csv"
    XLSX = "xlsx"

    @property
    def mime_type(self) -> str:
        if self is ExportFormat.CSV:
            return "text/csv"
        return "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class ExportError(Exception):
    """Nothing to export, or the file could not be written."""
    pass


def transactions_to_frame(rows: list[Transaction]) -> pd.DataFrame:
    """One DataFrame row per transaction, in export column order."""
    records = [
        {
            "Archive Date": tx.created_at.strftime("%d %b %Y, %H:%M"),
            "Entity": tx.source,
            "Mode": tx.payment_mode.value.upper(),
            "Value (INR)": float(tx.amount),
            "Reference ID": tx.reference_id or LOCAL_REFERENCE,
            "Trace ID": str(tx.id),
        }
        for tx in rows
    ]
    return pd.DataFrame(records, columns=EXPORT_COLUMNS)


def export_filename(fmt: ExportFormat, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"FinTrack_Audit_{int(now.timestamp() * 1000)}.{fmt.value}"


def export_transactions(rows: list[Transaction], fmt: str) -> bytes:
    """
    Serialize transactions.

    Args:
        rows: Transactions to write, in display order
        fmt: "csv" or "xlsx"

    Returns:
        File contents

    Raises:
        ExportError: If there are no rows or the format is unknown
    """
    try:
        fmt = ExportFormat(fmt)
    except ValueError:
        raise ExportError(f"Unsupported export format: {fmt}")

    if not rows:
        raise ExportError("No transactions to export")

    df = transactions_to_frame(rows)

    if fmt is ExportFormat.CSV:
        return df.to_csv(index=False).encode("utf-8")

    out = BytesIO()
    with pd.ExcelWriter(out, engine="xlsxwriter") as writer:
        df.to_excel(writer, index=False, sheet_name=SHEET_NAME)
        worksheet = writer.sheets[SHEET_NAME]
        for index, width in enumerate(_COLUMN_WIDTHS):
            worksheet.set_column(index, index, width)
    return out.getvalue()
