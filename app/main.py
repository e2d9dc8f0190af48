"""
Streamlit Frontend for Ledger Gate

This is the console branch staff use to record and audit transactions.

DESIGN PRINCIPLES:
1. Every view goes through the route guard
2. Explicit confirmation before anything is saved
3. Clear error messages, never stack traces
4. Access problems show what is required, not a blank page
5. No hidden actions

Each browser session gets its own components and its own event loop,
kept in st.session_state. The loop outlives reruns so queued auth
transitions (session refreshes, sign-outs from another tab) are applied
on the next run instead of being lost.
"""

import asyncio
import time
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import streamlit as st

from src.agents import AuditConversation, ReceiptScanError
from src.audit import configure_logging, create_correlation_id
from src.auth import (
    DeniedAction,
    GuardDecision,
    GuardOutcome,
    RouteMatch,
    role_description,
    route_path,
    visible_nav_items,
)
from src.auth.navigation import (
    DASHBOARD,
    INTELLIGENCE,
    LEDGER_SEARCH,
    LOGIN,
    NEW_TRANSACTION,
    RECEIPT_SCAN,
    RESET_PASSWORD,
    TRANSACTION_DETAIL,
)
from src.config import get_settings, validate_all_settings
from src.models.auth import AuthSnapshot
from src.models.transaction import (
    ENTRY_PAYMENT_MODES,
    LedgerPage,
    NewTransactionForm,
    ReceiptExtraction,
    TransactionFilter,
)
from src.orchestrator import AppComponents, create_app_components
from src.queries import QueryExecutionError, SearchDebouncer, reset_page_on_change
from src.services.auth import AuthServiceError
from src.services.export import ExportError, ExportFormat, export_filename
from src.services.storage import NotFoundError, StorageError
from src.validation import CredentialValidationError, clean_amount


# Page configuration
st.set_page_config(
    page_title="FinTrack Pro",
    page_icon="💼",
    layout="wide",
    initial_sidebar_state="expanded",
)

configure_logging(get_settings().app.log_level)

# How long a rerun waits for auth transitions before showing the loading view
AUTH_WAIT_SECONDS = 5.0


# =============================================================================
# SESSION PLUMBING
# =============================================================================

def get_loop() -> asyncio.AbstractEventLoop:
    if "event_loop" not in st.session_state:
        st.session_state.event_loop = asyncio.new_event_loop()
    return st.session_state.event_loop


def run_async(coro):
    """Run a coroutine on this browser session's event loop."""
    loop = get_loop()
    asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


def get_components() -> AppComponents:
    """Get or create this browser session's components."""
    if "components" not in st.session_state:
        st.session_state.components = create_app_components()
    return st.session_state.components


def current_path() -> str:
    if "path" not in st.session_state:
        st.session_state.path = st.query_params.get("view", DASHBOARD.path)
    return st.session_state.path


def navigate(path: str, remember: bool = True):
    """Switch view and rerun."""
    if remember and st.session_state.get("path") not in (None, path):
        st.session_state.setdefault("history", []).append(st.session_state.path)
    st.session_state.path = path
    st.query_params["view"] = path
    st.rerun()


def go_back(default_view: str):
    history = st.session_state.get("history", [])
    navigate(history.pop() if history else default_view, remember=False)


# =============================================================================
# MAIN
# =============================================================================

def main():
    """Main application entry point."""
    try:
        components = get_components()
    except Exception as e:
        st.error(f"Failed to initialize: {e}")
        render_settings_status()
        st.stop()

    manager = components.manager
    run_async(manager.start())
    snapshot = run_async(manager.wait_idle(timeout=AUTH_WAIT_SECONDS))

    path = current_path()
    match, decision = run_async(components.auth.authorize(path))

    if decision.outcome == GuardOutcome.LOADING:
        render_loading()
        return

    if decision.outcome == GuardOutcome.REDIRECT_LOGIN:
        if decision.return_to:
            st.session_state.return_to = decision.return_to
        navigate(decision.redirect_to, remember=False)

    if snapshot.role is not None:
        if match is not None and match.route == LOGIN:
            # Already signed in
            navigate(st.session_state.pop("return_to", None) or DASHBOARD.path, remember=False)
        render_sidebar(components, snapshot, path)

    if decision.outcome == GuardOutcome.ACCESS_DENIED:
        render_access_denied(decision)
        return

    render_route(components, snapshot, match)


def render_route(components: AppComponents, snapshot: AuthSnapshot, match: RouteMatch):
    route = match.route
    if route == LOGIN:
        render_login_page(components)
    elif route == RESET_PASSWORD:
        render_reset_password_page(components)
    elif route == DASHBOARD:
        render_dashboard_page(snapshot)
    elif route == NEW_TRANSACTION:
        render_new_transaction_page(components, snapshot)
    elif route == LEDGER_SEARCH:
        render_search_page(components, snapshot)
    elif route == TRANSACTION_DETAIL:
        render_detail_page(components, snapshot, match.params["id"])
    elif route == RECEIPT_SCAN:
        render_scan_page(components, snapshot)
    elif route == INTELLIGENCE:
        render_intelligence_page(components, snapshot)


def render_loading():
    with st.spinner("Verifying access..."):
        time.sleep(0.5)
    st.info("Verifying your access level. This page refreshes automatically.")
    st.rerun()


def render_sidebar(components: AppComponents, snapshot: AuthSnapshot, path: str):
    st.sidebar.title("💼 FinTrack Pro")
    st.sidebar.caption(snapshot.identity.email or snapshot.identity.id)
    st.sidebar.caption(f"Role: {snapshot.role.value.upper()}")
    st.sidebar.markdown("---")

    items = visible_nav_items(snapshot.role)
    paths = [item.path for item in items]
    selected = st.sidebar.radio(
        "Navigate to:",
        paths,
        index=paths.index(path) if path in paths else 0,
        format_func=lambda p: next(item.title for item in items if item.path == p),
        key=f"nav_{path}",
    )
    if selected != path and path in paths:
        navigate(selected)
    if path not in paths and st.sidebar.button("🏠 Back to Pulse"):
        navigate(DASHBOARD.path)

    st.sidebar.markdown("---")
    if st.sidebar.button("🚪 Sign Out"):
        run_async(components.auth.sign_out())
        for key in ("conversation", "scan_proposal", "pending_entry", "history", "return_to"):
            st.session_state.pop(key, None)
        navigate(LOGIN.path, remember=False)


def render_access_denied(decision: GuardDecision):
    """Access-denied view with remediation actions."""
    st.title("⛔ Access Denied")
    required = ", ".join(role.value for role in decision.required_roles)
    current = decision.current_role.value if decision.current_role else "none"
    st.error(f"This view requires one of: **{required}**. Your role: **{current}**.")

    col1, col2 = st.columns(2)
    with col1:
        if DeniedAction.GO_BACK in decision.actions and st.button("← Go Back"):
            go_back(decision.default_view or DASHBOARD.path)
    with col2:
        if DeniedAction.GO_TO_DEFAULT_VIEW in decision.actions and st.button("🏠 Go to Pulse"):
            navigate(decision.default_view or DASHBOARD.path)


# =============================================================================
# PUBLIC PAGES
# =============================================================================

def render_login_page(components: AppComponents):
    """Sign in, sign up and password reset request."""
    st.title("🔐 FinTrack Pro")

    mode = st.radio(
        "Mode",
        ["Sign In", "Create Account", "Forgot Password"],
        horizontal=True,
        label_visibility="collapsed",
    )

    with st.form("auth_form"):
        email = st.text_input("Email address")
        password = ""
        if mode != "Forgot Password":
            password = st.text_input("Password", type="password")
        submitted = st.form_submit_button(mode, type="primary")

    if not submitted:
        return

    try:
        if mode == "Forgot Password":
            run_async(components.auth.request_password_reset(email))
            st.success("Password reset link sent! Please check your email inbox.")
        elif mode == "Create Account":
            with st.spinner("Creating account..."):
                snapshot = run_async(components.auth.sign_up(email, password))
            if snapshot is None:
                st.success(
                    "Account created successfully! Please check your email to "
                    "confirm your registration before logging in."
                )
            else:
                navigate(DASHBOARD.path, remember=False)
        else:
            with st.spinner("Signing in..."):
                run_async(components.auth.sign_in(email, password))
            navigate(st.session_state.pop("return_to", None) or DASHBOARD.path, remember=False)
    except CredentialValidationError as e:
        st.error(e.message)
    except AuthServiceError as e:
        st.error(str(e))


def render_reset_password_page(components: AppComponents):
    st.title("🔑 Set New Password")

    if not components.manager.snapshot.is_authenticated:
        st.error("Invalid or expired password reset link. Please request a new one.")
        if st.button("Back to Sign In"):
            navigate(LOGIN.path, remember=False)
        return

    st.markdown("Please enter your new password below.")
    with st.form("reset_form"):
        password = st.text_input("New password", type="password")
        submitted = st.form_submit_button("Update Password", type="primary")

    if submitted:
        try:
            run_async(components.auth.update_password(password))
            st.success("Password updated.")
            navigate(DASHBOARD.path, remember=False)
        except CredentialValidationError as e:
            st.error(e.message)
        except AuthServiceError as e:
            st.error(str(e))


# =============================================================================
# PROTECTED PAGES
# =============================================================================

def render_dashboard_page(snapshot: AuthSnapshot):
    st.title("📈 Pulse")
    st.markdown("### Welcome back!")
    st.markdown(
        f"You are logged in as a **{snapshot.role.value}**. "
        f"{role_description(snapshot.role)}"
    )
    st.info("Connected to Supabase. Row level security policies are active.")


def render_new_transaction_page(components: AppComponents, snapshot: AuthSnapshot):
    """Manual entry with a confirmation step."""
    st.title("➕ Record Entry")

    mode = st.selectbox(
        "Payment mode",
        ENTRY_PAYMENT_MODES,
        format_func=lambda m: m.value.upper(),
    )
    amount = st.text_input("Amount (₹)", placeholder="e.g. 1,25,000.50")
    source = st.text_input("Entity / source")
    reference = ""
    if mode.needs_reference:
        reference = st.text_input("Network UTR / Ref ID")

    form = NewTransactionForm(
        amount=amount,
        payment_mode=mode,
        source=source,
        reference_id=reference,
    )

    if st.button("Authorize Entry", type="primary"):
        errors = components.entry.check(form)
        if errors:
            for error in errors:
                st.error(f"**{error.field}**: {error.message}")
            st.session_state.pop("pending_entry", None)
        else:
            st.session_state.pending_entry = form

    pending: Optional[NewTransactionForm] = st.session_state.get("pending_entry")
    if pending is None:
        return

    st.markdown("---")
    st.subheader("Confirm settlement")
    st.markdown(
        f"**₹{clean_amount(pending.amount):,.2f}** via **{pending.payment_mode.value.upper()}** "
        f"from **{pending.source.strip()}**"
    )

    col1, col2 = st.columns(2)
    with col1:
        if st.button("✅ Confirm & Save", type="primary"):
            try:
                saved, errors = run_async(
                    components.entry.submit(pending, snapshot, create_correlation_id())
                )
            except StorageError as e:
                st.error(f"Transaction authorization failed: {e}")
                return
            st.session_state.pop("pending_entry", None)
            if errors:
                for error in errors:
                    st.error(f"**{error.field}**: {error.message}")
                return
            st.success(f"Saved transaction {saved.id}")
            navigate(DASHBOARD.path, remember=False)
    with col2:
        if st.button("Cancel"):
            st.session_state.pop("pending_entry", None)
            st.rerun()


def _search_debouncer() -> SearchDebouncer:
    if "search_debouncer" not in st.session_state:
        st.session_state.search_debouncer = SearchDebouncer(
            get_settings().app.search_debounce_ms
        )
    return st.session_state.search_debouncer


def render_search_page(components: AppComponents, snapshot: AuthSnapshot):
    """Ledger search with metrics, AI insight and export."""
    st.title("🔎 Ledger")

    previous: TransactionFilter = st.session_state.get(
        "search_filter",
        TransactionFilter.from_query_params(dict(st.query_params)),
    )
    debouncer = _search_debouncer()

    text = st.text_input("Search source or reference", value=previous.query)
    debouncer.push(text)

    col1, col2, col3, col4, col5 = st.columns(5)
    with col1:
        modes = [None] + list(ENTRY_PAYMENT_MODES)
        mode = st.selectbox(
            "Mode",
            modes,
            index=modes.index(previous.payment_mode) if previous.payment_mode in modes else 0,
            format_func=lambda m: "ALL" if m is None else m.value.upper(),
        )
    with col2:
        start = st.date_input("From", value=previous.start_date)
    with col3:
        end = st.date_input("To", value=previous.end_date)
    with col4:
        min_amount = st.text_input(
            "Min ₹", value="" if previous.min_amount is None else str(previous.min_amount)
        )
    with col5:
        max_amount = st.text_input(
            "Max ₹", value="" if previous.max_amount is None else str(previous.max_amount)
        )

    try:
        criteria = reset_page_on_change(
            previous,
            TransactionFilter(
                query=debouncer.released,
                payment_mode=mode,
                start_date=start if isinstance(start, date) else None,
                end_date=end if isinstance(end, date) else None,
                min_amount=min_amount,
                max_amount=max_amount,
                page=previous.page,
            ),
        )
    except ValueError as e:
        st.error(f"Invalid filter: {e}")
        return

    if criteria != previous:
        # Prepared exports belong to the old result set
        for fmt in ExportFormat:
            st.session_state.pop(f"export_{fmt.value}", None)
    st.session_state.search_filter = criteria
    for key, value in criteria.to_query_params().items():
        st.query_params[key] = value

    try:
        page = run_async(components.search.search(criteria))
    except QueryExecutionError as e:
        st.error(f"Forensic fetch error: {e}")
        return

    render_search_metrics(components, page)
    render_search_results(components, snapshot, page)

    if debouncer.is_pending:
        time.sleep(debouncer.remaining())
        st.rerun()


def render_search_metrics(components: AppComponents, page: LedgerPage):
    col1, col2, col3 = st.columns(3)
    col1.metric("Matches", page.total_count)
    col2.metric("Filtered value", f"₹{page.stats.total_value:,.2f}")
    col3.metric("Average", f"₹{round(page.stats.average_value):,}")

    if page.rows:
        with st.spinner("Analyzing patterns..."):
            insight = run_async(components.search.insight(page))
        if insight:
            st.info(f"🧠 {insight}")
    else:
        st.caption("Neural bridge standby. Filter data to generate forensic narrative.")


def render_search_results(components: AppComponents, snapshot: AuthSnapshot, page: LedgerPage):
    if not page.rows:
        st.info("No transactions match these filters.")
        return

    for tx in page.rows:
        col1, col2, col3, col4 = st.columns([3, 2, 2, 1])
        col1.markdown(f"**{tx.source}**  \n{tx.created_at:%d %b %Y, %H:%M}")
        col2.markdown(f"{tx.payment_mode.value.upper()}  \n`{tx.reference_id or 'LOCAL'}`")
        col3.markdown(f"**₹{tx.amount:,.2f}**")
        if col4.button("Open", key=f"open_{tx.id}"):
            navigate(route_path(TRANSACTION_DETAIL, id=str(tx.id)))

    st.caption(f"Displaying {len(page.rows)} of {page.total_count} archive units")

    col1, col2, col3 = st.columns([1, 2, 1])
    with col1:
        if page.has_previous and st.button("← Previous"):
            _set_page(page.filter.page - 1)
    with col2:
        st.markdown(f"Page {page.filter.page} of {page.page_count}")
    with col3:
        if page.has_next and st.button("Next →"):
            _set_page(page.filter.page + 1)

    st.markdown("---")
    col1, col2 = st.columns(2)
    for column, fmt in ((col1, ExportFormat.XLSX), (col2, ExportFormat.CSV)):
        with column:
            if st.button(f"📦 Prepare {fmt.value.upper()}", key=f"prepare_{fmt.value}"):
                try:
                    st.session_state[f"export_{fmt.value}"] = run_async(
                        components.search.export(page, fmt, snapshot)
                    )
                except ExportError as e:
                    st.warning(str(e))
            data = st.session_state.get(f"export_{fmt.value}")
            if data:
                st.download_button(
                    f"⬇️ Download {fmt.value.upper()}",
                    data=data,
                    file_name=export_filename(fmt),
                    mime=fmt.mime_type,
                )


def _set_page(page: int):
    criteria: TransactionFilter = st.session_state.search_filter
    st.session_state.search_filter = criteria.model_copy(update={"page": page})
    st.rerun()


def render_detail_page(components: AppComponents, snapshot: AuthSnapshot, raw_id: str):
    st.title("🧾 Transaction Detail")

    try:
        transaction_id = UUID(raw_id)
    except ValueError:
        st.error("Malformed transaction id.")
        return

    try:
        tx = run_async(components.entry.get_detail(transaction_id, snapshot))
    except StorageError as e:
        st.error(f"Could not load transaction: {e}")
        return

    if tx is None:
        st.warning("Transaction not found, or it was recorded by another user.")
        if st.button("← Back to Ledger"):
            navigate(LEDGER_SEARCH.path)
        return

    st.metric("Value", f"₹{tx.amount:,.2f}")
    st.markdown(f"**Entity:** {tx.source}")
    st.markdown(f"**Mode:** {tx.payment_mode.value.upper()}")
    st.markdown(f"**Reference ID:** `{tx.reference_id or 'LOCAL'}`")
    st.markdown(f"**Recorded:** {tx.created_at:%d %b %Y, %H:%M}")
    st.markdown(f"**Trace ID:** `{tx.id}`")

    st.markdown("---")
    confirm = st.checkbox("I understand this permanently deletes the record")
    if st.button("🗑️ Delete", disabled=not confirm):
        try:
            run_async(components.entry.delete(tx.id, snapshot))
        except NotFoundError:
            st.error("Transaction no longer exists.")
            return
        except StorageError as e:
            st.error(f"Delete failed: {e}")
            return
        st.success("Transaction deleted.")
        navigate(LEDGER_SEARCH.path, remember=False)


def render_scan_page(components: AppComponents, snapshot: AuthSnapshot):
    """Receipt scanner: propose, review, commit."""
    st.title("📷 Scanner")

    if components.scan is None:
        st.warning("Gemini is not configured; the scanner is unavailable.")
        return

    app_settings = get_settings().app
    uploaded = st.file_uploader(
        "Receipt image",
        type=app_settings.supported_formats_list,
        help=f"Up to {app_settings.max_upload_size_mb}MB",
    )

    if uploaded and st.button("🔍 Analyze", type="primary"):
        with st.spinner("Reading receipt..."):
            try:
                st.session_state.scan_proposal = run_async(
                    components.scan.scan(uploaded.getvalue(), snapshot)
                )
            except ReceiptScanError as e:
                st.session_state.pop("scan_proposal", None)
                st.error(str(e))

    proposal: Optional[ReceiptExtraction] = st.session_state.get("scan_proposal")
    if proposal is None:
        return

    st.markdown("---")
    st.subheader("📋 Review Proposal")
    amount = st.text_input("Amount (₹)", value=str(proposal.amount))
    source = st.text_input("Entity / source", value=proposal.source)
    mode = st.selectbox(
        "Payment mode",
        ENTRY_PAYMENT_MODES,
        index=ENTRY_PAYMENT_MODES.index(proposal.payment_mode),
        format_func=lambda m: m.value.upper(),
    )
    st.caption(
        f"Date: {proposal.date:%d %b %Y}" if proposal.date else "Date: Auto-Now"
    )

    col1, col2 = st.columns(2)
    with col1:
        if st.button("✅ Commit to Ledger", type="primary"):
            try:
                reviewed = ReceiptExtraction(
                    amount=clean_amount(amount) or Decimal("0"),
                    source=source,
                    payment_mode=mode.value,
                    date=proposal.date,
                )
            except ValueError as e:
                st.error(f"Please correct the proposal: {e}")
                return
            try:
                saved = run_async(components.scan.commit(reviewed, snapshot))
            except StorageError as e:
                st.error(str(e))
                return
            st.session_state.pop("scan_proposal", None)
            st.success(f"Saved with reference {saved.reference_id}")
    with col2:
        if st.button("Discard"):
            st.session_state.pop("scan_proposal", None)
            st.rerun()


def render_intelligence_page(components: AppComponents, snapshot: AuthSnapshot):
    """Forensic audit terminal."""
    st.title("🧠 Intelligence")

    if components.intelligence is None:
        st.warning("Gemini is not configured; the audit terminal is unavailable.")
        return

    if "conversation" not in st.session_state:
        st.session_state.conversation = AuditConversation()
    conversation: AuditConversation = st.session_state.conversation

    if st.button("🧹 Clear terminal"):
        conversation.clear()

    for message in conversation.messages:
        with st.chat_message(message.role):
            st.markdown(message.content)

    question = st.chat_input("Ask about recent ledger activity")
    if question:
        with st.spinner("Analyzing ledger..."):
            run_async(components.intelligence.ask(conversation, question, snapshot))
        st.rerun()


def render_settings_status():
    """Connection status, shown when startup fails."""
    st.markdown("### Connection Status")
    status = validate_all_settings()

    services = [
        ("Supabase (Auth & Ledger)", "supabase"),
        ("Gemini (AI)", "gemini"),
        ("Application", "app"),
    ]
    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown(
        "To configure the application, create a `.env` file with your keys. "
        "See `.env.example` for the required variables."
    )


if __name__ == "__main__":
    main()
