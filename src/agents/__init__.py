"""AI agents package."""

from src.agents.ai_agents import (
    AUDIT_GREETING,
    AUDIT_STANDBY,
    CRITICAL_ERROR_PREFIX,
    FALLBACK_INSIGHT,
    AIServiceError,
    AuditConversation,
    ChatMessage,
    ForensicAuditAgent,
    LedgerInsightAgent,
    ReceiptScanAgent,
    ReceiptScanError,
    format_ledger_context,
    parse_receipt_response,
)

__all__ = [
    # Agents
    "ForensicAuditAgent",
    "LedgerInsightAgent",
    "ReceiptScanAgent",
    # Conversation
    "AUDIT_GREETING",
    "AUDIT_STANDBY",
    "CRITICAL_ERROR_PREFIX",
    "AuditConversation",
    "ChatMessage",
    # Helpers
    "FALLBACK_INSIGHT",
    "format_ledger_context",
    "parse_receipt_response",
    # Exceptions
    "AIServiceError",
    "ReceiptScanError",
]
