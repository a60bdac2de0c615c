"""
Tests for the session reconciler: session mirroring, role resolution,
retry with backoff and identity-change safety.
"""
import asyncio
from datetime import timedelta

import pytest

from app.core.errors import BackendError, RecordNotFoundError
from app.services.reconciler import AuthState, RetryPolicy, SessionReconciler
from app.services.role_router import ViewId
from conftest import BASE_TIME, GatedClock, drain, make_session


class TestSessionChanges:
    """Mirroring identity store sessions into the reconciliation state."""

    @pytest.mark.asyncio
    async def test_sign_in_resolves_existing_role(self, reconciler, roles):
        roles.add("u1", "seller")

        reconciler.on_session_changed(make_session("u1", name="Ada"))
        assert reconciler.state.auth_state is AuthState.AUTHENTICATED
        assert reconciler.state.identity.display_name == "Ada"

        role = await reconciler.wait_until_settled()

        assert role == "seller"
        assert reconciler.state.role == "seller"
        assert reconciler.state.role_fetch_attempts == 0
        assert reconciler.destination() is ViewId.SELLER_HOME

    @pytest.mark.asyncio
    async def test_sign_in_without_role_creates_default(self, reconciler, roles):
        reconciler.on_session_changed(make_session("u1"))
        role = await reconciler.wait_until_settled()

        assert role == "customer"
        assert roles.roles_for("u1") == ["customer"]

    @pytest.mark.asyncio
    async def test_sign_out_clears_identity_and_role(self, reconciler, roles):
        roles.add("u1", "admin")
        reconciler.on_session_changed(make_session("u1"))
        await reconciler.wait_until_settled()
        assert reconciler.state.role == "admin"

        reconciler.on_session_changed(None)

        assert reconciler.state.auth_state is AuthState.UNAUTHENTICATED
        assert reconciler.state.identity is None
        assert reconciler.state.role is None
        assert reconciler.state.role_fetch_attempts == 0
        assert reconciler.destination() is ViewId.CUSTOMER_HOME

    @pytest.mark.asyncio
    async def test_redelivered_session_is_idempotent(self, reconciler, roles):
        session = make_session("u1")

        reconciler.on_session_changed(session)
        reconciler.on_session_changed(session)
        await reconciler.wait_until_settled()
        reconciler.on_session_changed(session)
        await reconciler.wait_until_settled()

        assert roles.find_calls == ["u1"]
        assert roles.insert_calls == 1
        assert reconciler.state.role == "customer"

    @pytest.mark.asyncio
    async def test_redelivery_refreshes_mirrored_identity(self, reconciler, roles):
        roles.add("u1", "customer")
        reconciler.on_session_changed(make_session("u1", name="Old"))
        await reconciler.wait_until_settled()

        reconciler.on_session_changed(make_session("u1", name="New"))

        assert reconciler.state.identity.display_name == "New"
        assert reconciler.state.role == "customer"

    @pytest.mark.asyncio
    async def test_start_without_session_is_unauthenticated(self, reconciler, identity_store):
        await reconciler.start()

        assert reconciler.state.auth_state is AuthState.UNAUTHENTICATED
        assert len(identity_store.handlers) == 1

        await reconciler.stop()
        assert identity_store.handlers == []

    @pytest.mark.asyncio
    async def test_start_picks_up_existing_session(self, reconciler, identity_store, roles):
        roles.add("u1", "delivery")
        identity_store.session = make_session("u1")

        await reconciler.start()
        role = await reconciler.wait_until_settled()

        assert reconciler.state.auth_state is AuthState.AUTHENTICATED
        assert role == "delivery"
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_pushed_events_drive_state(self, reconciler, identity_store, roles):
        roles.add("u1", "seller")
        await reconciler.start()

        identity_store.emit("SIGNED_IN", make_session("u1"))
        await reconciler.wait_until_settled()
        assert reconciler.state.role == "seller"

        identity_store.emit("SIGNED_OUT", None)
        assert reconciler.state.auth_state is AuthState.UNAUTHENTICATED
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_initial_check_failure_enters_error_state(self, reconciler, identity_store):
        identity_store.get_session_error = BackendError("network unreachable")

        await reconciler.start()

        assert reconciler.state.auth_state is AuthState.ERROR
        assert "network unreachable" in reconciler.state.last_error

        # Not left automatically, even if a session shows up.
        reconciler.on_session_changed(make_session("u1"))
        assert reconciler.state.auth_state is AuthState.ERROR
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_retry_initialization_leaves_error_state(self, reconciler, identity_store, roles):
        identity_store.get_session_error = BackendError("network unreachable")
        await reconciler.start()

        identity_store.get_session_error = None
        identity_store.session = make_session("u1")
        state = await reconciler.retry_initialization()
        await reconciler.wait_until_settled()

        assert state is AuthState.AUTHENTICATED
        assert reconciler.state.role == "customer"
        assert reconciler.state.last_error is None
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_clear_errors_keeps_role_and_identity(self, reconciler, roles):
        roles.add("u1", "admin")
        reconciler.on_session_changed(make_session("u1"))
        await reconciler.wait_until_settled()
        reconciler.state.last_error = "something broke"

        reconciler.clear_errors()

        assert reconciler.state.last_error is None
        assert reconciler.state.role == "admin"
        assert reconciler.state.identity.id == "u1"


class TestResolveRole:
    """Single role resolution."""

    @pytest.mark.asyncio
    async def test_newest_duplicate_wins_regardless_of_order(self, reconciler, roles):
        roles.add("u1", "customer", created_at=BASE_TIME)
        roles.add("u1", "seller", created_at=BASE_TIME + timedelta(days=1))
        assert await reconciler.resolve_role("u1") == "seller"

        roles.rows.reverse()
        assert await reconciler.resolve_role("u1") == "seller"

    @pytest.mark.asyncio
    async def test_not_found_error_is_treated_as_missing(self, reconciler, roles):
        roles.find_error = RecordNotFoundError()

        role = await reconciler.resolve_role("u1")

        assert role == "customer"
        assert roles.insert_calls == 1

    @pytest.mark.asyncio
    async def test_lookup_failure_returns_none(self, reconciler, roles):
        roles.find_error = BackendError("timeout")

        assert await reconciler.resolve_role("u1") is None
        assert roles.insert_calls == 0

    @pytest.mark.asyncio
    async def test_insert_failure_returns_none(self, reconciler, roles):
        roles.insert_error = BackendError("permission denied", code="42501")

        assert await reconciler.resolve_role("u1") is None

    @pytest.mark.asyncio
    async def test_empty_user_id(self, reconciler, roles):
        assert await reconciler.resolve_role("") is None
        assert roles.find_calls == []

    @pytest.mark.asyncio
    async def test_concurrent_resolution_creates_one_row(self, reconciler, roles):
        results = await asyncio.gather(
            reconciler.resolve_role("u1"),
            reconciler.resolve_role("u1"),
        )

        assert results == ["customer", "customer"]
        assert roles.roles_for("u1") == ["customer"]

    @pytest.mark.asyncio
    async def test_role_for_other_user_is_not_stored(self, reconciler, roles):
        roles.add("u1", "admin")
        roles.add("u2", "seller")
        reconciler.on_session_changed(make_session("u1"))
        await reconciler.wait_until_settled()

        assert await reconciler.resolve_role("u2") == "seller"
        assert reconciler.state.role == "admin"


class TestRetry:
    """Background retry with capped exponential backoff."""

    def test_delay_is_capped(self):
        policy = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=8.0)

        delays = [policy.delay_for(n) for n in range(6)]

        assert delays == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]

    @pytest.mark.asyncio
    async def test_stops_after_three_failed_attempts(self, reconciler, roles, clock):
        roles.find_error = BackendError("connection reset")

        reconciler.on_session_changed(make_session("u1"))
        role = await reconciler.wait_until_settled()

        assert role is None
        assert len(roles.find_calls) == 3
        assert reconciler.state.role_fetch_attempts == 3
        assert clock.delays == [1.0, 2.0]
        assert clock.elapsed < 7.0
        assert reconciler.state.auth_state is AuthState.AUTHENTICATED
        assert reconciler.state.last_error is not None

        # Nothing else is scheduled.
        await drain()
        assert len(roles.find_calls) == 3

    @pytest.mark.asyncio
    async def test_recovers_on_a_later_attempt(self, reconciler, roles, clock):
        roles.add("u1", "delivery")
        roles.find_failures = 1

        reconciler.on_session_changed(make_session("u1"))
        role = await reconciler.wait_until_settled()

        assert role == "delivery"
        assert clock.delays == [1.0]
        assert reconciler.state.role_fetch_attempts == 0

    @pytest.mark.asyncio
    async def test_manual_refresh_after_exhaustion(self, reconciler, roles):
        roles.add("u1", "seller")
        roles.find_error = BackendError("connection reset")
        reconciler.on_session_changed(make_session("u1"))
        await reconciler.wait_until_settled()
        assert reconciler.state.role_fetch_attempts == 3

        roles.find_error = None
        role = await reconciler.refresh_role()

        assert role == "seller"
        assert reconciler.state.role_fetch_attempts == 0

    @pytest.mark.asyncio
    async def test_refresh_role_requires_a_session(self, reconciler):
        assert await reconciler.refresh_role() is None

    @pytest.mark.asyncio
    async def test_identity_change_discards_pending_retry(self, identity_store, roles, locks):
        clock = GatedClock()
        reconciler = SessionReconciler(
            identity_store, roles, locks=locks, sleep=clock.sleep
        )
        roles.failing_users.add("u1")

        reconciler.on_session_changed(make_session("u1"))
        await drain()
        assert clock.delays == [1.0]  # u1's retry is waiting

        reconciler.on_session_changed(None)
        reconciler.on_session_changed(make_session("u2"))
        await reconciler.wait_until_settled()

        clock.release()
        await drain()

        assert reconciler.state.identity.id == "u2"
        assert reconciler.state.role == "customer"
        assert reconciler.state.role_fetch_attempts == 0
        assert roles.find_calls.count("u1") == 1
