"""
Audit Models for Ledger Gate

Every security-relevant and ledger-changing action is logged for audit
purposes. This provides:
1. Traceability of who could see what, and why
2. Debugging information when role resolution degrades
3. Accountability for ledger writes

DESIGN DECISION: Audit events never carry session tokens.
Identities are referenced by id only.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Session lifecycle
    SESSION_ESTABLISHED = "session_established"
    SESSION_ENDED = "session_ended"
    SIGNED_OUT = "signed_out"
    SIGN_IN_FAILED = "sign_in_failed"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"

    # Authorization
    ROLE_RESOLVED = "role_resolved"
    ROLE_FALLBACK_APPLIED = "role_fallback_applied"
    ACCESS_DENIED = "access_denied"

    # Ledger
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_DELETED = "transaction_deleted"
    LEDGER_EXPORTED = "ledger_exported"
    RECEIPT_SCANNED = "receipt_scanned"

    # Intelligence
    AI_ANALYSIS_REQUESTED = "ai_analysis_requested"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Who
    actor_id: Optional[str] = Field(
        default=None,
        description="Identity id of the user involved, if any"
    )

    # What
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'route', 'session')"
    )
    entity_id: Optional[str] = None

    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "actor_id": self.actor_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.role_resolved(identity_id, "admin")
        event = AuditEventBuilder.access_denied(identity_id, "/admin/scan", ...)
    """

    @staticmethod
    def session_established(identity_id: str, email: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_ESTABLISHED,
            actor_id=identity_id,
            entity_type="session",
            description="Session established",
            details={"email": email},
        )

    @staticmethod
    def session_ended(identity_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_ENDED,
            actor_id=identity_id,
            entity_type="session",
            description="Session ended by the identity provider",
        )

    @staticmethod
    def signed_out(identity_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SIGNED_OUT,
            actor_id=identity_id,
            entity_type="session",
            description="User signed out",
            is_user_action=True,
        )

    @staticmethod
    def sign_in_failed(email: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SIGN_IN_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="session",
            description="Sign in rejected",
            details={"email": email},
            error_message=reason,
            is_user_action=True,
        )

    @staticmethod
    def password_reset_requested(email: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PASSWORD_RESET_REQUESTED,
            entity_type="session",
            description="Password reset email requested",
            details={"email": email},
            is_user_action=True,
        )

    @staticmethod
    def role_resolved(identity_id: str, role: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROLE_RESOLVED,
            actor_id=identity_id,
            entity_type="role",
            description=f"Role resolved: {role}",
            details={"role": role},
        )

    @staticmethod
    def role_fallback_applied(identity_id: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROLE_FALLBACK_APPLIED,
            severity=AuditSeverity.WARNING,
            actor_id=identity_id,
            entity_type="role",
            description="Role fell back to minimum privilege",
            details={"reason": reason},
        )

    @staticmethod
    def access_denied(
        identity_id: Optional[str],
        location: str,
        required_roles: list[str],
        current_role: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCESS_DENIED,
            severity=AuditSeverity.WARNING,
            actor_id=identity_id,
            entity_type="route",
            entity_id=location,
            description=f"Access denied to {location}",
            details={
                "required_roles": required_roles,
                "current_role": current_role,
            },
        )

    @staticmethod
    def transaction_created(
        transaction_id: str,
        actor_id: str,
        amount: str,
        payment_mode: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            actor_id=actor_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction recorded: ₹{amount} via {payment_mode}",
            details={"amount": amount, "payment_mode": payment_mode},
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(transaction_id: str, actor_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            actor_id=actor_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description="Transaction deleted",
            is_user_action=True,
        )

    @staticmethod
    def ledger_exported(actor_id: Optional[str], fmt: str, row_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_EXPORTED,
            actor_id=actor_id,
            entity_type="ledger",
            description=f"Exported {row_count} rows as {fmt}",
            details={"format": fmt, "row_count": row_count},
            is_user_action=True,
        )

    @staticmethod
    def receipt_scanned(
        actor_id: Optional[str],
        amount: str,
        source: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_SCANNED,
            actor_id=actor_id,
            entity_type="receipt",
            correlation_id=correlation_id,
            description=f"Receipt read: {source} - ₹{amount}",
            details={"amount": amount, "source": source},
            is_user_action=True,
        )

    @staticmethod
    def ai_analysis_requested(actor_id: Optional[str], kind: str, context_rows: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AI_ANALYSIS_REQUESTED,
            actor_id=actor_id,
            entity_type="ai",
            description=f"AI analysis requested: {kind}",
            details={"kind": kind, "context_rows": context_rows},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
