"""
Shared fakes for the test suite.

The hosted backend is replaced by in-memory implementations of the
storage and identity interfaces, so every test runs without a network.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import pytest

from src.models.auth import Identity, RoleRecord, Session
from src.models.transaction import (
    PaymentMode,
    Transaction,
    TransactionCreate,
    TransactionFilter,
)
from src.services.auth.interface import (
    AuthServiceError,
    RoleStoreInterface,
    SessionStoreInterface,
)
from src.services.storage.interface import (
    NotFoundError,
    TransactionStorageInterface,
)


def make_session(identity_id: str = "user-1", email: Optional[str] = None) -> Session:
    return Session(
        identity=Identity(id=identity_id, email=email or f"{identity_id}@example.com"),
        access_token=f"token-{identity_id}",
    )


def make_transaction(
    amount: str = "100.00",
    source: str = "Acme Traders",
    payment_mode: PaymentMode = PaymentMode.UPI,
    reference_id: Optional[str] = "UTR123",
    created_by: str = "user-1",
    created_at: Optional[datetime] = None,
) -> Transaction:
    return Transaction(
        id=uuid4(),
        amount=Decimal(amount),
        payment_mode=payment_mode,
        source=source,
        reference_id=None if payment_mode is PaymentMode.CASH else reference_id,
        created_by=created_by,
        created_at=created_at or datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc),
    )


class FakeSessionStore(SessionStoreInterface):
    """Session store that emits notifications only when told to."""

    def __init__(self, current: Optional[Session] = None):
        self.current = current
        self.probe_error: Optional[Exception] = None
        self.sign_in_error: Optional[Exception] = None
        self.sign_out_error: Optional[Exception] = None
        self.sign_up_returns_session = True
        self.callbacks = []
        self.calls: list[tuple] = []

    async def get_current_session(self) -> Optional[Session]:
        self.calls.append(("get_current_session",))
        if self.probe_error is not None:
            raise self.probe_error
        return self.current

    def subscribe(self, callback):
        self.callbacks.append(callback)

        def _unsubscribe():
            if callback in self.callbacks:
                self.callbacks.remove(callback)

        return _unsubscribe

    def emit(self, session: Optional[Session]) -> None:
        self.current = session
        for callback in list(self.callbacks):
            callback(session)

    async def sign_out(self) -> None:
        self.calls.append(("sign_out",))
        if self.sign_out_error is not None:
            raise self.sign_out_error
        self.current = None

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        self.calls.append(("sign_in", email))
        if self.sign_in_error is not None:
            raise self.sign_in_error
        self.current = make_session(email.split("@")[0], email)
        return self.current

    async def sign_up(self, email: str, password: str) -> Optional[Session]:
        self.calls.append(("sign_up", email))
        if not self.sign_up_returns_session:
            return None
        self.current = make_session(email.split("@")[0], email)
        return self.current

    async def request_password_reset(self, email: str) -> None:
        self.calls.append(("request_password_reset", email))

    async def update_password(self, new_password: str) -> None:
        if self.current is None:
            raise AuthServiceError("Auth session missing!")
        self.calls.append(("update_password",))


class FakeRoleStore(RoleStoreInterface):
    """
    Role store backed by a dict.

    gate(identity_id) returns an asyncio.Event; lookups for that identity
    block until it is set, which lets tests control completion order.
    """

    def __init__(self, roles: Optional[dict[str, Optional[str]]] = None):
        self.roles = dict(roles or {})
        self.errors: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.lookups: list[str] = []

    def gate(self, identity_id: str) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[identity_id] = event
        return event

    async def find_role_record(self, identity_id: str) -> Optional[RoleRecord]:
        self.lookups.append(identity_id)
        gate = self.gates.get(identity_id)
        if gate is not None:
            await gate.wait()
        if identity_id in self.errors:
            raise self.errors[identity_id]
        if identity_id not in self.roles:
            return None
        return RoleRecord(id=identity_id, role=self.roles[identity_id])


class InMemoryTransactionStorage(TransactionStorageInterface):
    """Transaction storage over a dict, mirroring the hosted table's filters."""

    def __init__(self, rows: Optional[list[Transaction]] = None):
        self.rows: dict[UUID, Transaction] = {row.id: row for row in rows or []}
        self.fail_with: Optional[Exception] = None

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def create(self, transaction: TransactionCreate) -> Transaction:
        self._check()
        stored = Transaction(
            id=uuid4(),
            amount=transaction.amount,
            payment_mode=transaction.payment_mode,
            source=transaction.source,
            reference_id=transaction.reference_id,
            created_by=transaction.created_by,
            created_at=transaction.created_at,
        )
        self.rows[stored.id] = stored
        return stored

    async def get(self, transaction_id, created_by=None):
        self._check()
        row = self.rows.get(transaction_id)
        if row is None or (created_by is not None and row.created_by != created_by):
            return None
        return row

    async def delete(self, transaction_id) -> bool:
        self._check()
        if transaction_id not in self.rows:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        del self.rows[transaction_id]
        return True

    def _matching(self, criteria: TransactionFilter) -> list[Transaction]:
        query = criteria.query.lower()
        matched = []
        for row in self.rows.values():
            if query and query not in row.source.lower() and query not in (row.reference_id or "").lower():
                continue
            if criteria.payment_mode and row.payment_mode != criteria.payment_mode:
                continue
            if criteria.start_date and row.created_at.date() < criteria.start_date:
                continue
            if criteria.end_date and row.created_at.date() > criteria.end_date:
                continue
            if criteria.min_amount is not None and row.amount < criteria.min_amount:
                continue
            if criteria.max_amount is not None and row.amount > criteria.max_amount:
                continue
            matched.append(row)
        return sorted(matched, key=lambda r: r.created_at, reverse=True)

    async def search(self, criteria, offset, limit):
        self._check()
        matched = self._matching(criteria)
        return matched[offset:offset + limit], len(matched)

    async def matching_amounts(self, criteria):
        self._check()
        return [(r.amount, r.payment_mode.value, r.source) for r in self._matching(criteria)]

    async def recent(self, limit: int = 30):
        self._check()
        rows = sorted(self.rows.values(), key=lambda r: r.created_at, reverse=True)
        return rows[:limit]


class RecordingAuditLogger:
    """Stands in for AuditLogger; records method names and arguments."""

    def __init__(self):
        self.events: list[tuple[str, tuple, dict]] = []

    def __getattr__(self, name):
        if not name.startswith("log_"):
            raise AttributeError(name)

        async def _record(*args, **kwargs):
            self.events.append((name, args, kwargs))
            return True

        return _record

    def names(self) -> list[str]:
        return [name for name, _, _ in self.events]


class FakeResponse:
    def __init__(self, text):
        self.text = text


class FakeModel:
    """Minimal stand-in for genai.GenerativeModel."""

    def __init__(self, text: Optional[str] = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.prompts: list = []

    async def generate_content_async(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return FakeResponse(self.text)


@pytest.fixture
def session_store():
    return FakeSessionStore()


@pytest.fixture
def role_store():
    return FakeRoleStore({"admin-1": "admin", "user-1": "user", "boss-1": "super_admin"})


@pytest.fixture
def audit():
    return RecordingAuditLogger()


@pytest.fixture
def ledger_rows():
    base = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
    return [
        make_transaction("1500.00", "Acme Traders", PaymentMode.UPI, "UTR001",
                         created_at=base + timedelta(days=3)),
        make_transaction("250.50", "Corner Store", PaymentMode.CASH,
                         created_at=base + timedelta(days=2)),
        make_transaction("9999.99", "Acme Logistics", PaymentMode.BANK, "NEFT77",
                         created_by="admin-1", created_at=base + timedelta(days=1)),
        make_transaction("40.00", "Tea Stall", PaymentMode.CASH,
                         created_by="admin-1", created_at=base),
    ]


@pytest.fixture
def storage(ledger_rows):
    return InMemoryTransactionStorage(ledger_rows)
