"""
Tests for the auth state machine.

Test strategy:
- Drive the manager with a fake session store that only emits when told
- Hold role lookups open with per-identity gates to force interleavings
- Assert on the committed snapshot, never on timing

Properties covered:
- Probe outcomes (no session, session, failure)
- Last identity wins, whatever order lookups complete in
- Sign-out wins over an in-flight lookup
- Token refreshes for the same identity do not re-resolve
- Listeners see every transition in order
"""

import asyncio

import pytest

from src.auth import AuthStateManager, RoleResolver
from src.models.auth import AuthPhase, Role
from src.services.auth.interface import AuthServiceError, RoleLookupError

from conftest import FakeRoleStore, FakeSessionStore, RecordingAuditLogger, make_session


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _manager(store, roles, audit=None):
    return AuthStateManager(store, RoleResolver(roles, audit), audit)


ROLES = {"admin-1": "admin", "user-1": "user", "boss-1": "super_admin"}


class TestProbe:
    """Tests for start() and the initial probe."""

    def test_initial_phase_is_initializing(self):
        """Test a fresh manager is initializing."""
        manager = _manager(FakeSessionStore(), FakeRoleStore(ROLES))
        assert manager.phase == AuthPhase.INITIALIZING
        assert manager.snapshot.resolving is True

    def test_no_session_becomes_unauthenticated(self):
        """Test an empty probe ends in Unauthenticated."""
        async def scenario():
            manager = _manager(FakeSessionStore(), FakeRoleStore(ROLES))
            await manager.start()
            return await manager.wait_idle()

        snapshot = asyncio.run(scenario())
        assert snapshot.phase == AuthPhase.UNAUTHENTICATED
        assert snapshot.role is None

    def test_existing_session_resolves_role(self):
        """Test a probed session goes through role resolution."""
        async def scenario():
            manager = _manager(FakeSessionStore(make_session("admin-1")), FakeRoleStore(ROLES))
            await manager.start()
            return await manager.wait_idle()

        snapshot = asyncio.run(scenario())
        assert snapshot.phase == AuthPhase.AUTHENTICATED
        assert snapshot.role is Role.ADMIN
        assert snapshot.identity.id == "admin-1"

    def test_probe_failure_counts_as_no_session(self):
        """Test a failing probe ends in Unauthenticated."""
        async def scenario():
            store = FakeSessionStore(make_session("admin-1"))
            store.probe_error = AuthServiceError("network down")
            manager = _manager(store, FakeRoleStore(ROLES))
            await manager.start()
            return await manager.wait_idle()

        assert asyncio.run(scenario()).phase == AuthPhase.UNAUTHENTICATED

    def test_notification_during_probe_wins(self):
        """Test a change delivered while probing supersedes the probe result."""
        class RacingStore(FakeSessionStore):
            async def get_current_session(self):
                self.emit(make_session("boss-1"))
                return None

        async def scenario():
            manager = _manager(RacingStore(), FakeRoleStore(ROLES))
            await manager.start()
            return await manager.wait_idle()

        snapshot = asyncio.run(scenario())
        assert snapshot.role is Role.SUPER_ADMIN

    def test_start_twice_is_noop(self):
        """Test start() subscribes and probes only once."""
        async def scenario():
            store = FakeSessionStore()
            manager = _manager(store, FakeRoleStore(ROLES))
            await manager.start()
            await manager.start()
            await manager.wait_idle()
            return store

        store = asyncio.run(scenario())
        assert len(store.callbacks) == 1
        assert store.calls.count(("get_current_session",)) == 1


class TestSessionChanges:
    """Tests for notifications after start."""

    def test_role_lookup_failure_fails_closed(self):
        """Test an authenticated identity with a failed lookup gets USER."""
        async def scenario():
            roles = FakeRoleStore(ROLES)
            roles.errors["admin-1"] = RoleLookupError("timeout")
            audit = RecordingAuditLogger()
            manager = _manager(FakeSessionStore(make_session("admin-1")), roles, audit)
            await manager.start()
            return await manager.wait_idle(), audit

        snapshot, audit = asyncio.run(scenario())
        assert snapshot.phase == AuthPhase.AUTHENTICATED
        assert snapshot.role is Role.USER
        assert "log_role_fallback" in audit.names()

    def test_last_identity_wins_when_first_lookup_finishes_last(self):
        """Test a slow lookup for A cannot overwrite B's role."""
        async def scenario():
            store = FakeSessionStore()
            roles = FakeRoleStore(ROLES)
            manager = _manager(store, roles)
            await manager.start()
            await manager.wait_idle()

            gate_a = roles.gate("user-1")
            store.emit(make_session("user-1"))
            store.emit(make_session("admin-1"))
            await _settle()
            during = manager.snapshot

            gate_a.set()
            return during, await manager.wait_idle()

        during, final = asyncio.run(scenario())
        assert during.identity.id == "admin-1"
        assert during.role is Role.ADMIN
        assert final.identity.id == "admin-1"
        assert final.role is Role.ADMIN

    def test_last_identity_wins_when_second_lookup_finishes_last(self):
        """Test B's role is committed once B's lookup completes."""
        async def scenario():
            store = FakeSessionStore()
            roles = FakeRoleStore(ROLES)
            manager = _manager(store, roles)
            await manager.start()
            await manager.wait_idle()

            gate_a = roles.gate("user-1")
            gate_b = roles.gate("boss-1")
            store.emit(make_session("user-1"))
            store.emit(make_session("boss-1"))
            await _settle()

            gate_a.set()
            await _settle()
            during = manager.snapshot

            gate_b.set()
            return during, await manager.wait_idle()

        during, final = asyncio.run(scenario())
        assert during.phase == AuthPhase.RESOLVING_ROLE
        assert during.identity.id == "boss-1"
        assert during.role is None
        assert final.role is Role.SUPER_ADMIN

    def test_session_lost_resets_state(self):
        """Test a None notification signs the identity out."""
        async def scenario():
            store = FakeSessionStore(make_session("admin-1"))
            audit = RecordingAuditLogger()
            manager = _manager(store, FakeRoleStore(ROLES), audit)
            await manager.start()
            await manager.wait_idle()

            store.emit(None)
            return await manager.wait_idle(), audit

        snapshot, audit = asyncio.run(scenario())
        assert snapshot.phase == AuthPhase.UNAUTHENTICATED
        assert snapshot.identity is None
        assert "log_session_ended" in audit.names()

    def test_session_after_queued_loss_still_applies(self):
        """Test a provider sign-out followed by a new sign-in ends authenticated."""
        async def scenario():
            store = FakeSessionStore(make_session("admin-1"))
            manager = _manager(store, FakeRoleStore(ROLES))
            await manager.start()
            await manager.wait_idle()

            store.emit(None)
            store.emit(make_session("boss-1"))
            return await manager.wait_idle()

        snapshot = asyncio.run(scenario())
        assert snapshot.identity.id == "boss-1"
        assert snapshot.role is Role.SUPER_ADMIN

    def test_same_identity_refresh_skips_resolution(self):
        """Test a token refresh keeps the role and swaps the session."""
        async def scenario():
            store = FakeSessionStore(make_session("admin-1"))
            roles = FakeRoleStore(ROLES)
            manager = _manager(store, roles)
            await manager.start()
            await manager.wait_idle()

            refreshed = make_session("admin-1").model_copy(update={"access_token": "fresh"})
            store.emit(refreshed)
            return await manager.wait_idle(), roles

        snapshot, roles = asyncio.run(scenario())
        assert roles.lookups == ["admin-1"]
        assert snapshot.role is Role.ADMIN
        assert snapshot.session.access_token == "fresh"

    def test_hung_lookup_stays_resolving(self):
        """Test a lookup that never returns keeps the loading state."""
        async def scenario():
            store = FakeSessionStore()
            roles = FakeRoleStore(ROLES)
            manager = _manager(store, roles)
            await manager.start()
            await manager.wait_idle()

            roles.gate("admin-1")
            store.emit(make_session("admin-1"))
            snapshot = await manager.wait_idle(timeout=0.05)
            manager.close()
            return snapshot

        snapshot = asyncio.run(scenario())
        assert snapshot.resolving is True
        assert snapshot.phase == AuthPhase.RESOLVING_ROLE

    def test_event_before_start_is_dropped(self):
        """Test notifications without a running manager change nothing."""
        manager = _manager(FakeSessionStore(), FakeRoleStore(ROLES))
        manager.on_session_event(make_session("admin-1"))
        assert manager.phase == AuthPhase.INITIALIZING


class TestSignOut:
    """Tests for sign_out()."""

    def test_sign_out_during_resolution(self):
        """Test a lookup finishing after sign-out is discarded."""
        async def scenario():
            store = FakeSessionStore()
            roles = FakeRoleStore(ROLES)
            manager = _manager(store, roles)
            await manager.start()
            await manager.wait_idle()

            gate = roles.gate("admin-1")
            store.emit(make_session("admin-1"))
            await _settle()
            assert manager.phase == AuthPhase.RESOLVING_ROLE

            await manager.sign_out()
            gate.set()
            return await manager.wait_idle(), store

        snapshot, store = asyncio.run(scenario())
        assert snapshot.phase == AuthPhase.UNAUTHENTICATED
        assert snapshot.role is None
        assert ("sign_out",) in store.calls

    @pytest.mark.parametrize("identity_id", [None, "admin-1"])
    def test_state_cleared_before_remote_call(self, identity_id):
        """Test the reset is visible before the provider is contacted."""
        class ObservingStore(FakeSessionStore):
            async def sign_out(self):
                self.phase_at_remote = manager.phase
                self.snapshot_at_remote = manager.snapshot
                await super().sign_out()

        store = ObservingStore(make_session(identity_id) if identity_id else None)
        manager = _manager(store, FakeRoleStore(ROLES))

        async def scenario():
            if identity_id:
                await manager.start()
                await manager.wait_idle()
            await manager.sign_out()

        asyncio.run(scenario())
        assert store.phase_at_remote == AuthPhase.UNAUTHENTICATED
        snapshot = store.snapshot_at_remote
        assert (snapshot.session, snapshot.identity, snapshot.role, snapshot.resolving) == (
            None, None, None, False,
        )

    def test_sign_out_survives_provider_failure(self):
        """Test local state is cleared even if revocation fails."""
        async def scenario():
            store = FakeSessionStore(make_session("admin-1"))
            store.sign_out_error = AuthServiceError("503")
            audit = RecordingAuditLogger()
            manager = _manager(store, FakeRoleStore(ROLES), audit)
            await manager.start()
            await manager.wait_idle()
            return await manager.sign_out(), audit

        snapshot, audit = asyncio.run(scenario())
        assert snapshot.phase == AuthPhase.UNAUTHENTICATED
        assert audit.names()[-1] == "log_signed_out"

    def test_sign_out_while_probing(self):
        """Test a probe answering after sign-out does not restore the session."""
        class SlowProbeStore(FakeSessionStore):
            async def get_current_session(self):
                # The answer is fixed when the request goes out
                session = self.current
                await self.probe_gate.wait()
                return session

        async def scenario():
            store = SlowProbeStore(make_session("admin-1"))
            store.probe_gate = asyncio.Event()
            roles = FakeRoleStore(ROLES)
            manager = _manager(store, roles)

            starting = asyncio.ensure_future(manager.start())
            await _settle()
            assert manager.phase == AuthPhase.INITIALIZING

            await manager.sign_out()
            store.probe_gate.set()
            await starting
            return await manager.wait_idle(), roles

        snapshot, roles = asyncio.run(scenario())
        assert (snapshot.session, snapshot.identity, snapshot.role, snapshot.resolving) == (
            None, None, None, False,
        )
        assert roles.lookups == []

    def test_sign_out_before_probe_result_applied(self):
        """Test a probed session still queued at sign-out is dropped."""
        async def scenario():
            roles = FakeRoleStore(ROLES)
            manager = _manager(FakeSessionStore(make_session("admin-1")), roles)
            await manager.start()
            await manager.sign_out()
            return await manager.wait_idle(), roles

        snapshot, roles = asyncio.run(scenario())
        assert (snapshot.session, snapshot.identity, snapshot.role, snapshot.resolving) == (
            None, None, None, False,
        )
        assert roles.lookups == []

    def test_sign_in_after_sign_out_resolves_again(self):
        """Test the machine has no terminal state."""
        async def scenario():
            store = FakeSessionStore(make_session("admin-1"))
            roles = FakeRoleStore(ROLES)
            manager = _manager(store, roles)
            await manager.start()
            await manager.wait_idle()
            await manager.sign_out()

            store.emit(make_session("admin-1"))
            return await manager.wait_idle(), roles

        snapshot, roles = asyncio.run(scenario())
        assert snapshot.role is Role.ADMIN
        assert roles.lookups == ["admin-1", "admin-1"]


class TestObservers:
    """Tests for subscribe() and close()."""

    def test_listeners_see_transitions_in_order(self):
        """Test listeners get every committed snapshot."""
        async def scenario():
            manager = _manager(FakeSessionStore(make_session("boss-1")), FakeRoleStore(ROLES))
            phases = []
            manager.subscribe(lambda snapshot: phases.append(snapshot.phase))
            await manager.start()
            await manager.wait_idle()
            await manager.sign_out()
            return phases

        assert asyncio.run(scenario()) == [
            AuthPhase.RESOLVING_ROLE,
            AuthPhase.AUTHENTICATED,
            AuthPhase.UNAUTHENTICATED,
        ]

    def test_failing_listener_does_not_break_transitions(self):
        """Test one bad listener cannot stop the others."""
        async def scenario():
            manager = _manager(FakeSessionStore(make_session("user-1")), FakeRoleStore(ROLES))
            seen = []

            def broken(snapshot):
                raise RuntimeError("listener bug")

            manager.subscribe(broken)
            manager.subscribe(seen.append)
            await manager.start()
            return await manager.wait_idle(), seen

        snapshot, seen = asyncio.run(scenario())
        assert snapshot.role is Role.USER
        assert seen[-1] == snapshot

    def test_unsubscribe_stops_notifications(self):
        """Test the returned unsubscribe function."""
        async def scenario():
            manager = _manager(FakeSessionStore(make_session("user-1")), FakeRoleStore(ROLES))
            seen = []
            unsubscribe = manager.subscribe(seen.append)
            unsubscribe()
            await manager.start()
            await manager.wait_idle()
            return seen

        assert asyncio.run(scenario()) == []

    def test_close_unsubscribes_from_store(self):
        """Test close() detaches from the session store."""
        async def scenario():
            store = FakeSessionStore()
            manager = _manager(store, FakeRoleStore(ROLES))
            await manager.start()
            await manager.wait_idle()
            manager.close()
            return store

        assert asyncio.run(scenario()).callbacks == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
