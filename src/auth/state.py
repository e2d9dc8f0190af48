"""
Auth State Manager

Owns the application's single auth state {session, identity, role, resolving}
and drives it from session-change notifications.

STATE MACHINE:
    Initializing --probe: no session--> Unauthenticated
    Initializing --probe: session-----> ResolvingRole
    ResolvingRole --role resolved-----> Authenticated
    Authenticated --different identity-> ResolvingRole
    Authenticated|ResolvingRole --no session / sign_out--> Unauthenticated

There is no terminal state. close() only unsubscribes from the session store.

CONCURRENCY: transitions run as coroutines on one event loop and may
interleave at their await points. Every role resolution is stamped with a
generation number and the identity it was issued for; its result is
committed only if both still match the live state (last identity wins,
not last completion). Sign-out bumps the generation, so a lookup that
finishes afterwards cannot bring stale role data back. Queued notifications
are stamped with the sign-out count when scheduled: a session queued before
the latest sign-out is dropped, and a probe still running at sign-out is
treated as superseded. No locks are needed because only the coroutine
currently running writes the snapshot.

There is no timeout on role resolution. A hung lookup keeps resolving=True,
which the route guard shows as a loading state.
"""

import asyncio
from typing import Callable, Optional

import structlog

from src.audit import AuditLogger
from src.auth.role_resolver import RoleResolver
from src.models.auth import AuthPhase, AuthSnapshot, Identity, Session
from src.services.auth.interface import (
    AuthServiceError,
    SessionStoreInterface,
    Unsubscribe,
)


logger = structlog.get_logger(__name__)

SnapshotListener = Callable[[AuthSnapshot], None]


class AuthStateManager:
    """
    Single owner of the auth state.

    Read through `snapshot` / `subscribe()`. Written only by
    handle_session_change() and sign_out().
    """

    def __init__(
        self,
        session_store: SessionStoreInterface,
        role_resolver: RoleResolver,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._session_store = session_store
        self._role_resolver = role_resolver
        self._audit_logger = audit_logger

        self._snapshot = AuthSnapshot.initializing()
        self._generation = 0
        self._event_seq = 0
        self._sign_outs = 0

        self._listeners: list[SnapshotListener] = []
        self._store_unsubscribe: Optional[Unsubscribe] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: set[asyncio.Task] = set()
        self._started = False

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> AuthSnapshot:
        return self._snapshot

    @property
    def phase(self) -> AuthPhase:
        return self._snapshot.phase

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call listener with every new snapshot. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _commit(self, snapshot: AuthSnapshot) -> None:
        self._snapshot = snapshot
        logger.debug("auth_state_changed", **snapshot.to_log_dict())
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("auth_listener_failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> AuthSnapshot:
        """
        Subscribe to session changes and probe for an existing session.

        The probe result is queued like any other notification; await
        wait_idle() for the resulting role resolution. A failed probe counts
        as "no session". Calling start() twice is a no-op.
        """
        if self._started:
            return self._snapshot
        self._started = True
        self._loop = asyncio.get_running_loop()
        self._store_unsubscribe = self._session_store.subscribe(self.on_session_event)

        seq_at_probe = self._event_seq
        try:
            session = await self._session_store.get_current_session()
        except Exception as e:
            logger.error("session_probe_failed", error=str(e))
            session = None

        if self._event_seq != seq_at_probe:
            # A change notification was applied while probing; it is newer
            logger.debug("session_probe_superseded")
            return self._snapshot

        self._schedule(session)
        return self._snapshot

    def close(self) -> None:
        """Stop listening to the session store and drop queued transitions."""
        if self._store_unsubscribe is not None:
            self._store_unsubscribe()
            self._store_unsubscribe = None
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def on_session_event(self, session: Optional[Session]) -> None:
        """
        Session store callback.

        Queues handle_session_change() on the manager's loop, preserving
        notification order. Safe to call from another thread.
        """
        self._event_seq += 1
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning("session_event_dropped", reason="manager not started")
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._schedule(session)
        else:
            loop.call_soon_threadsafe(self._schedule, session)

    def _schedule(self, session: Optional[Session]) -> None:
        task = self._loop.create_task(self._apply_queued(session, self._sign_outs))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _apply_queued(self, session: Optional[Session], sign_outs: int) -> AuthSnapshot:
        if session is not None and sign_outs != self._sign_outs:
            # Queued before a sign-out; it must not bring the session back
            logger.debug("queued_session_discarded", identity_id=session.identity.id)
            return self._snapshot
        return await self.handle_session_change(session)

    async def wait_idle(self, timeout: Optional[float] = None) -> AuthSnapshot:
        """
        Wait until every queued session change has been applied.

        With a timeout, return the current snapshot once it elapses. Queued
        transitions are never cancelled by this; they keep running.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while self._pending:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                break
            done, _ = await asyncio.wait(list(self._pending), timeout=remaining)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error("session_change_failed", error=str(task.exception()))
        return self._snapshot

    async def handle_session_change(self, session: Optional[Session]) -> AuthSnapshot:
        """
        Apply a session-change notification.

        - None: reset to signed out
        - same identity as held: refresh the session reference only
        - new identity: resolve its role, commit unless superseded
        """
        self._event_seq += 1
        current = self._snapshot

        if session is None:
            if current.session is not None or current.resolving:
                previous = current.identity
                self._reset()
                if previous is not None and self._audit_logger:
                    await self._audit_logger.log_session_ended(previous.id)
            return self._snapshot

        identity = session.identity
        if current.identity is not None and current.identity.id == identity.id:
            # Token refresh: role already held or already being resolved
            self._commit(current.model_copy(update={"session": session}))
            return self._snapshot

        self._generation += 1
        generation = self._generation
        self._commit(
            AuthSnapshot(session=session, identity=identity, role=None, resolving=True)
        )
        if self._audit_logger:
            await self._audit_logger.log_session_established(identity.id, identity.email)

        role = await self._role_resolver.resolve(identity.id)

        if not self._is_current(generation, identity):
            logger.debug(
                "stale_role_resolution_discarded",
                identity_id=identity.id,
                role=role.value,
            )
            return self._snapshot

        self._commit(
            AuthSnapshot(
                session=self._snapshot.session,
                identity=identity,
                role=role,
                resolving=False,
            )
        )
        if self._audit_logger:
            await self._audit_logger.log_role_resolved(identity.id, role.value)
        return self._snapshot

    async def sign_out(self) -> AuthSnapshot:
        """
        Reset the state, then revoke the session with the provider.

        The reset happens before anything is awaited, so the state is
        signed out even if the provider call fails or an old role lookup
        is still running.
        """
        previous = self._snapshot.identity
        # Supersede a running probe and anything queued before this point
        self._sign_outs += 1
        self._event_seq += 1
        self._reset()

        try:
            await self._session_store.sign_out()
        except AuthServiceError as e:
            logger.warning("remote_sign_out_failed", error=str(e))

        if self._audit_logger:
            await self._audit_logger.log_signed_out(previous.id if previous else None)
        return self._snapshot

    def _reset(self) -> None:
        self._generation += 1
        self._commit(AuthSnapshot.signed_out())

    def _is_current(self, generation: int, identity: Identity) -> bool:
        live = self._snapshot.identity
        return (
            generation == self._generation
            and live is not None
            and live.id == identity.id
        )
