"""
Main Orchestrator for Ledger Gate

This module ties together all the components and defines the
end-to-end flows for:
1. Authentication (credentials → session → role → guarded views)
2. Transaction entry (form → validate → confirm → save)
3. Ledger search (filters → page + metrics → insight → export)
4. Receipt scan (image → vision proposal → user commit → save)
5. Intelligence (question + recent ledger → forensic answer)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every protected action runs for the identity in the auth snapshot
- No AI output persists without an explicit user commit
- Every security and ledger event is audited

Components are built per application instance by create_app_components()
and passed to the UI explicitly. Nothing here is a module-level singleton.
"""

import secrets
from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from src.agents import (
    AuditConversation,
    ChatMessage,
    ForensicAuditAgent,
    LedgerInsightAgent,
    ReceiptScanAgent,
    ReceiptScanError,
)
from src.audit import AuditLogger, create_correlation_id
from src.auth import (
    AuthStateManager,
    GuardDecision,
    GuardOutcome,
    RoleResolver,
    RouteGuard,
    RouteMatch,
    evaluate_route,
)
from src.config import Settings, get_settings
from src.models.auth import AuthSnapshot
from src.models.transaction import (
    FieldError,
    LedgerPage,
    NewTransactionForm,
    ReceiptExtraction,
    Transaction,
    TransactionFilter,
)
from src.queries import LedgerQueryExecutor, QueryExecutionError
from src.services.auth import (
    AuthServiceError,
    SessionStoreInterface,
    SupabaseRoleStore,
    SupabaseSessionStore,
)
from src.services.export import export_transactions
from src.services.storage import (
    NotFoundError,
    SupabaseClient,
    SupabaseTransactionStorage,
    TransactionStorageInterface,
)
from src.validation import (
    TransactionValidator,
    describe_auth_error,
    validate_email,
    validate_password,
)


logger = structlog.get_logger(__name__)

SCAN_REFERENCE_PREFIX = "V-SCAN-"


def new_scan_reference() -> str:
    """Reference id for a committed receipt scan, e.g. V-SCAN-3FA91C0B."""
    return SCAN_REFERENCE_PREFIX + secrets.token_hex(4).upper()


class NotSignedInError(Exception):
    """A protected action was attempted without an identity."""
    pass


def _actor_id(snapshot: AuthSnapshot) -> str:
    if snapshot.identity is None:
        raise NotSignedInError("Sign in to continue")
    return snapshot.identity.id


class AuthFlow:
    """
    Orchestrates sign-in, sign-up, password reset and route access.

    Credentials are validated locally before any provider call. The auth
    state itself only changes through the AuthStateManager.
    """

    def __init__(
        self,
        session_store: SessionStoreInterface,
        manager: AuthStateManager,
        guard: RouteGuard,
        audit_logger: Optional[AuditLogger] = None,
        wait_timeout: Optional[float] = 10.0,
    ):
        self._session_store = session_store
        self._manager = manager
        self._guard = guard
        self._audit_logger = audit_logger
        # How long sign-in waits for the role before showing a loading state
        self._wait_timeout = wait_timeout

    @property
    def manager(self) -> AuthStateManager:
        return self._manager

    async def sign_in(self, email: str, password: str) -> AuthSnapshot:
        """
        Sign in and wait for the role to be resolved.

        Raises:
            CredentialValidationError: If the input is malformed
            AuthServiceError: If the provider rejects the credentials
        """
        email = validate_email(email)
        password = validate_password(password)

        try:
            session = await self._session_store.sign_in_with_password(email, password)
        except AuthServiceError as e:
            if self._audit_logger:
                await self._audit_logger.log_sign_in_failed(email, str(e))
            raise AuthServiceError(describe_auth_error(str(e))) from e

        self._manager.on_session_event(session)
        return await self._manager.wait_idle(self._wait_timeout)

    async def sign_up(self, email: str, password: str) -> Optional[AuthSnapshot]:
        """
        Register a new account.

        Returns:
            The signed-in snapshot, or None when the provider requires
            email confirmation first
        """
        email = validate_email(email)
        password = validate_password(password)

        try:
            session = await self._session_store.sign_up(email, password)
        except AuthServiceError as e:
            raise AuthServiceError(describe_auth_error(str(e))) from e

        if session is None:
            return None
        self._manager.on_session_event(session)
        return await self._manager.wait_idle(self._wait_timeout)

    async def request_password_reset(self, email: str) -> None:
        email = validate_email(email)
        try:
            await self._session_store.request_password_reset(email)
        except AuthServiceError as e:
            raise AuthServiceError(describe_auth_error(str(e))) from e
        if self._audit_logger:
            await self._audit_logger.log_password_reset_requested(email)

    async def update_password(self, new_password: str) -> None:
        new_password = validate_password(new_password)
        try:
            await self._session_store.update_password(new_password)
        except AuthServiceError as e:
            raise AuthServiceError(
                describe_auth_error(str(e) or "Failed to update password.")
            ) from e

    async def sign_out(self) -> AuthSnapshot:
        return await self._manager.sign_out()

    async def authorize(self, path: str) -> tuple[Optional[RouteMatch], GuardDecision]:
        """Guard decision for a path; denied access is audited."""
        snapshot = self._manager.snapshot
        match, decision = evaluate_route(self._guard, snapshot, path)

        if decision.outcome == GuardOutcome.ACCESS_DENIED and self._audit_logger:
            await self._audit_logger.log_access_denied(
                identity_id=snapshot.identity.id if snapshot.identity else None,
                location=path,
                required_roles=[role.value for role in decision.required_roles],
                current_role=decision.current_role.value if decision.current_role else None,
            )
        return match, decision


class TransactionEntryFlow:
    """
    Orchestrates manual entry and the transaction detail screen.

    Flow:
    1. Check → field errors shown inline
    2. Confirm → user reviews the amount in a dialog (UI)
    3. Save → insert, stamped with the signed-in identity
    """

    def __init__(
        self,
        storage: TransactionStorageInterface,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._validator = validator or TransactionValidator()
        self._audit_logger = audit_logger

    def check(self, form: NewTransactionForm) -> list[FieldError]:
        return self._validator.check(form)

    async def submit(
        self,
        form: NewTransactionForm,
        snapshot: AuthSnapshot,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[Transaction], list[FieldError]]:
        """
        Validate and save.

        CRITICAL: Called only after the user confirmed the entry.

        Returns:
            (saved transaction, []) or (None, field errors)
        """
        correlation_id = correlation_id or create_correlation_id()
        actor_id = _actor_id(snapshot)

        transaction, errors = self._validator.validate(form, created_by=actor_id)
        if errors:
            return None, errors

        saved = await self._storage.create(transaction)

        if self._audit_logger:
            await self._audit_logger.log_transaction_created(
                transaction_id=str(saved.id),
                actor_id=actor_id,
                amount=str(saved.amount),
                payment_mode=saved.payment_mode.value,
                correlation_id=correlation_id,
            )
        return saved, []

    async def get_detail(
        self,
        transaction_id: UUID,
        snapshot: AuthSnapshot,
    ) -> Optional[Transaction]:
        """A transaction created by the signed-in identity, or None."""
        return await self._storage.get(transaction_id, created_by=_actor_id(snapshot))

    async def delete(self, transaction_id: UUID, snapshot: AuthSnapshot) -> None:
        """
        Delete one of the signed-in identity's transactions.

        Raises:
            NotFoundError: If no such transaction belongs to the identity
        """
        actor_id = _actor_id(snapshot)
        existing = await self._storage.get(transaction_id, created_by=actor_id)
        if existing is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        await self._storage.delete(transaction_id)

        if self._audit_logger:
            await self._audit_logger.log_transaction_deleted(str(transaction_id), actor_id)


class LedgerSearchFlow:
    """Orchestrates the admin search screen: results, insight and export."""

    def __init__(
        self,
        executor: LedgerQueryExecutor,
        insight_agent: Optional[LedgerInsightAgent] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._executor = executor
        self._insight_agent = insight_agent
        self._audit_logger = audit_logger

    @property
    def page_size(self) -> int:
        return self._executor.page_size

    async def search(self, criteria: TransactionFilter) -> LedgerPage:
        return await self._executor.search(criteria)

    async def insight(self, page: LedgerPage) -> Optional[str]:
        """AI summary of the page's metrics; None when there is nothing to say."""
        if self._insight_agent is None or not page.rows:
            return None
        return await self._insight_agent.summarize(page.stats)

    async def export(self, page: LedgerPage, fmt: str, snapshot: AuthSnapshot) -> bytes:
        """
        Export the visible rows.

        Raises:
            ExportError: If the page is empty
        """
        data = export_transactions(page.rows, fmt)
        if self._audit_logger:
            await self._audit_logger.log_ledger_exported(
                _actor_id(snapshot), str(fmt), len(page.rows)
            )
        return data


class ReceiptScanFlow:
    """
    Orchestrates the receipt scanner.

    Flow:
    1. Scan → vision model proposes amount, source, mode, date
    2. Review → user may edit the proposal (UI)
    3. Commit → saved with a V-SCAN reference

    The system NEVER auto-saves a scan.
    """

    def __init__(
        self,
        scan_agent: ReceiptScanAgent,
        storage: TransactionStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._scan_agent = scan_agent
        self._storage = storage
        self._audit_logger = audit_logger

    async def scan(
        self,
        image_bytes: bytes,
        snapshot: AuthSnapshot,
        correlation_id: Optional[UUID] = None,
    ) -> ReceiptExtraction:
        correlation_id = correlation_id or create_correlation_id()
        actor_id = _actor_id(snapshot)

        try:
            extraction = await self._scan_agent.extract(image_bytes)
        except ReceiptScanError as e:
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="gemini-vision",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_receipt_scanned(
                actor_id=actor_id,
                amount=str(extraction.amount),
                source=extraction.source,
                correlation_id=correlation_id,
            )
        return extraction

    async def commit(
        self,
        extraction: ReceiptExtraction,
        snapshot: AuthSnapshot,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Save a reviewed proposal.

        CRITICAL: Called only after explicit user confirmation.
        """
        correlation_id = correlation_id or create_correlation_id()
        actor_id = _actor_id(snapshot)

        saved = await self._storage.create(
            extraction.to_transaction(created_by=actor_id, reference_id=new_scan_reference())
        )

        if self._audit_logger:
            await self._audit_logger.log_transaction_created(
                transaction_id=str(saved.id),
                actor_id=actor_id,
                amount=str(saved.amount),
                payment_mode=saved.payment_mode.value,
                correlation_id=correlation_id,
            )
        return saved


class IntelligenceFlow:
    """
    Orchestrates the forensic audit terminal.

    The agent only ever sees the most recent ledger rows fetched here.
    """

    def __init__(
        self,
        audit_agent: ForensicAuditAgent,
        executor: LedgerQueryExecutor,
        context_size: int = 30,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._audit_agent = audit_agent
        self._executor = executor
        self._context_size = context_size
        self._audit_logger = audit_logger

    async def ask(
        self,
        conversation: AuditConversation,
        question: str,
        snapshot: AuthSnapshot,
    ) -> ChatMessage:
        actor_id = _actor_id(snapshot)

        try:
            ledger = await self._executor.recent(self._context_size)
        except QueryExecutionError as e:
            logger.warning("ledger_context_unavailable", error=str(e))
            ledger = []

        if self._audit_logger and question.strip():
            await self._audit_logger.log_ai_analysis(actor_id, "forensic_audit", len(ledger))

        return await self._audit_agent.respond(conversation, question, ledger)


class AppComponents:
    """Everything one running application instance needs."""

    def __init__(
        self,
        auth: AuthFlow,
        entry: TransactionEntryFlow,
        search: LedgerSearchFlow,
        scan: Optional[ReceiptScanFlow] = None,
        intelligence: Optional[IntelligenceFlow] = None,
    ):
        self.auth = auth
        self.entry = entry
        self.search = search
        self.scan = scan
        self.intelligence = intelligence

    @property
    def manager(self) -> AuthStateManager:
        return self.auth.manager


def create_app_components(
    settings: Optional[Settings] = None,
    use_ai: bool = True,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Application settings (loaded from the environment if None)
        use_ai: Whether to build the Gemini-backed features. They are also
                skipped when Gemini is not configured.

    Returns:
        AppComponents with a fresh, not yet started AuthStateManager
    """
    settings = settings or get_settings()
    app_settings = settings.app
    audit_logger = AuditLogger()

    client = SupabaseClient(settings.supabase)
    session_store = SupabaseSessionStore(client)
    role_resolver = RoleResolver(SupabaseRoleStore(client), audit_logger)
    manager = AuthStateManager(session_store, role_resolver, audit_logger)
    guard = RouteGuard(
        login_path=app_settings.login_path,
        default_view=app_settings.default_view,
    )

    storage = SupabaseTransactionStorage(client)
    executor = LedgerQueryExecutor(storage, page_size=app_settings.page_size)

    insight_agent = None
    scan_flow = None
    intelligence_flow = None
    if use_ai:
        try:
            gemini = settings.gemini
            insight_agent = LedgerInsightAgent(gemini)
            scan_flow = ReceiptScanFlow(
                ReceiptScanAgent(gemini, max_upload_bytes=app_settings.max_upload_size_bytes),
                storage,
                audit_logger,
            )
            intelligence_flow = IntelligenceFlow(
                ForensicAuditAgent(gemini),
                executor,
                context_size=gemini.ledger_context_size,
                audit_logger=audit_logger,
            )
        except ValidationError as e:
            # Gemini not configured - continue without AI features
            logger.warning("ai_features_disabled", error=str(e))

    return AppComponents(
        auth=AuthFlow(session_store, manager, guard, audit_logger),
        entry=TransactionEntryFlow(storage, audit_logger=audit_logger),
        search=LedgerSearchFlow(executor, insight_agent, audit_logger),
        scan=scan_flow,
        intelligence=intelligence_flow,
    )
