"""
Audit Logger

DESIGN DECISION: Every security-relevant action in the system is logged.
This provides:
1. Traceability of role decisions (including fail-closed fallbacks)
2. Debugging capability for session/role races
3. Accountability for ledger writes

The audit logger:
- Is async so it can sit inside the auth and ledger flows
- Never raises into the caller (an audit problem must not break sign-in)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


def configure_logging(level: str = "INFO") -> None:
    """
    Configure stdlib logging and structlog for JSON output.

    Safe to call more than once; the last call wins.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Writes every event to the structured log under the "audit" logger,
    at a level matching the event severity.
    """

    def __init__(self, logger: Optional[structlog.stdlib.BoundLogger] = None):
        self._logger = logger or structlog.get_logger("audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False if the event could not be written.
        """
        log_dict = event.to_log_dict()
        try:
            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity is AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity is AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Log failure but don't raise
            logging.getLogger(__name__).error(
                "audit write failed for %s: %s", event.event_id, e
            )
            return False
        return True

    async def log_session_established(self, identity_id: str, email: Optional[str]) -> None:
        """Log a newly observed identity."""
        await self.log(AuditEventBuilder.session_established(identity_id, email))

    async def log_session_ended(self, identity_id: Optional[str]) -> None:
        """Log session loss reported by the identity provider."""
        await self.log(AuditEventBuilder.session_ended(identity_id))

    async def log_signed_out(self, identity_id: Optional[str]) -> None:
        """Log an explicit sign-out."""
        await self.log(AuditEventBuilder.signed_out(identity_id))

    async def log_sign_in_failed(self, email: str, reason: str) -> None:
        await self.log(AuditEventBuilder.sign_in_failed(email, reason))

    async def log_password_reset_requested(self, email: str) -> None:
        await self.log(AuditEventBuilder.password_reset_requested(email))

    async def log_role_resolved(self, identity_id: str, role: str) -> None:
        """Log the role committed for an identity."""
        await self.log(AuditEventBuilder.role_resolved(identity_id, role))

    async def log_role_fallback(self, identity_id: str, reason: str) -> None:
        """Log a fail-closed role fallback."""
        await self.log(AuditEventBuilder.role_fallback_applied(identity_id, reason))

    async def log_access_denied(
        self,
        identity_id: Optional[str],
        location: str,
        required_roles: list[str],
        current_role: Optional[str],
    ) -> None:
        """Log an access-denied guard decision."""
        await self.log(
            AuditEventBuilder.access_denied(
                identity_id=identity_id,
                location=location,
                required_roles=required_roles,
                current_role=current_role,
            )
        )

    async def log_transaction_created(
        self,
        transaction_id: str,
        actor_id: str,
        amount: str,
        payment_mode: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a ledger insert."""
        await self.log(
            AuditEventBuilder.transaction_created(
                transaction_id=transaction_id,
                actor_id=actor_id,
                amount=amount,
                payment_mode=payment_mode,
                correlation_id=correlation_id,
            )
        )

    async def log_transaction_deleted(self, transaction_id: str, actor_id: str) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(transaction_id, actor_id))

    async def log_ledger_exported(self, actor_id: Optional[str], fmt: str, row_count: int) -> None:
        await self.log(AuditEventBuilder.ledger_exported(actor_id, fmt, row_count))

    async def log_receipt_scanned(
        self,
        actor_id: Optional[str],
        amount: str,
        source: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.receipt_scanned(actor_id, amount, source, correlation_id)
        )

    async def log_ai_analysis(self, actor_id: Optional[str], kind: str, context_rows: int) -> None:
        await self.log(AuditEventBuilder.ai_analysis_requested(actor_id, kind, context_rows))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(
            AuditEventBuilder.system_error(
                error_type=error_type,
                error_message=error_message,
                details=details,
                correlation_id=correlation_id,
            )
        )

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(
            AuditEventBuilder.external_service_error(
                service=service,
                error_message=error_message,
                correlation_id=correlation_id,
            )
        )


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a receipt scan).
    Pass it through all subsequent operations.
    """
    return uuid4()
