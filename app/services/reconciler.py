# app/services/reconciler.py
import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from app.core.config import Settings
from app.core.errors import BackendError, RecordNotFoundError
from app.repositories.identity_store import IdentityStore, Unsubscribe
from app.repositories.role_repo import RoleRepository
from app.schemas.auth import AuthSession, Identity, IdentityRead, SessionStateRead
from app.schemas.role import DEFAULT_ROLE, RoleRecord
from app.services.locks import UserLocks
from app.services.role_router import ViewId, destination_for

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"
    ERROR = "error"


@dataclass
class ReconciliationState:
    """
    Who is logged in and which role they resolved to.

    Invariants:
      - auth_state == AUTHENTICATED implies identity is not None
      - role_fetch_attempts is 0 after an identity change or a resolved role
    """

    auth_state: AuthState = AuthState.INITIALIZING
    identity: Identity | None = None
    role: str | None = None
    role_fetch_attempts: int = 0
    last_error: str | None = None


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff for role resolution."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0

    def delay_for(self, attempts: int) -> float:
        """Delay before the next try, given the failures counted so far."""
        return min(self.base_delay * 2**attempts, self.max_delay)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.ROLE_FETCH_MAX_ATTEMPTS,
            base_delay=settings.ROLE_FETCH_BASE_DELAY,
            max_delay=settings.ROLE_FETCH_MAX_DELAY,
        )


def latest_record(rows: list[RoleRecord]) -> RoleRecord | None:
    """Most recently created row; duplicates resolve to the newest."""
    if not rows:
        return None
    return sorted(rows, key=lambda r: r.created_at, reverse=True)[0]


class SessionReconciler:
    """
    Keeps the session identity and its resolved role consistent.

    Responsibilities:
      - mirror the identity store's session into ReconciliationState
      - resolve the user's role, creating the default row when missing
      - retry failed resolution with capped backoff, in a background task
        tied to the identity's tenure (a generation counter)

    Repository failures never escape: they show up as a None role, a
    bumped attempt counter and `last_error`.
    """

    def __init__(
        self,
        identity_store: IdentityStore,
        roles: RoleRepository,
        *,
        policy: RetryPolicy | None = None,
        locks: UserLocks | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.identity_store = identity_store
        self.roles = roles
        self.policy = policy or RetryPolicy()
        self.locks = locks or UserLocks()
        self.state = ReconciliationState()

        self._sleep = sleep
        self._generation = 0
        self._task: asyncio.Task | None = None
        self._unsubscribe: Unsubscribe | None = None

    # -------- Lifecycle --------

    async def start(self) -> None:
        """Subscribe to session events, then run the initial session check."""
        if self._unsubscribe is None:
            self._unsubscribe = self.identity_store.on_session_change(
                self._handle_session_event
            )
        await self._check_initial_session()

    async def stop(self) -> None:
        """Unsubscribe and discard any pending role resolution."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        task = self._task
        self._end_tenure()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def retry_initialization(self) -> AuthState:
        """
        Explicit way out of the `error` state: run the initial check again.
        No-op in any other state.
        """
        if self.state.auth_state is not AuthState.ERROR:
            return self.state.auth_state
        self._reset(AuthState.INITIALIZING)
        await self._check_initial_session()
        return self.state.auth_state

    async def _check_initial_session(self) -> None:
        try:
            session = await self.identity_store.get_session()
        except BackendError as exc:
            logger.error(f"Initial session check failed: {exc}")
            self.state.auth_state = AuthState.ERROR
            self.state.last_error = f"Session check failed: {exc}"
            return
        self.on_session_changed(session)

    def _handle_session_event(self, event: str, session: AuthSession | None) -> None:
        logger.debug(f"Session event {event}")
        self.on_session_changed(session)

    # -------- Session mirroring --------

    def on_session_changed(self, session: AuthSession | None) -> None:
        """
        Apply a session transition reported by the identity store.

        Safe under redelivery: the same identity arriving again only
        refreshes the mirrored identity.
        """
        state = self.state
        if state.auth_state is AuthState.ERROR:
            logger.warning("Ignoring session change: initial session check failed")
            return

        identity = session.identity if session is not None else None

        if identity is None:
            if state.auth_state is AuthState.UNAUTHENTICATED:
                return
            logger.info("Session ended, clearing identity and role")
            self._end_tenure()
            self._reset(AuthState.UNAUTHENTICATED)
            return

        current = state.identity
        if (
            state.auth_state is AuthState.AUTHENTICATED
            and current is not None
            and current.id == identity.id
        ):
            state.identity = identity
            return

        logger.info(f"Session started for user {identity.id}")
        self._end_tenure()
        self._reset(AuthState.AUTHENTICATED, identity)
        self._start_resolution(identity.id)

    def clear_errors(self) -> None:
        self.state.last_error = None

    def _reset(self, auth_state: AuthState, identity: Identity | None = None) -> None:
        self.state.auth_state = auth_state
        self.state.identity = identity
        self.state.role = None
        self.state.role_fetch_attempts = 0
        self.state.last_error = None

    def _end_tenure(self) -> None:
        # Any in-flight retry belongs to the previous identity.
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    # -------- Role resolution --------

    async def resolve_role(self, user_id: str) -> str | None:
        """
        Resolve `user_id`'s role, creating the default row when none exists.

        Returns the role, or None when the lookup or the insert failed.
        Concurrent calls for the same user produce at most one new row.
        """
        if not user_id:
            return None

        async with self.locks.for_user(user_id):
            try:
                rows = await self.roles.find(user_id)
            except RecordNotFoundError:
                rows = []
            except BackendError as exc:
                logger.error(f"Error fetching role for user {user_id}: {exc}")
                self._note_error(user_id, f"Role lookup failed: {exc}")
                return None

            latest = latest_record(rows)
            if latest is not None:
                role = latest.role
            else:
                logger.warning(f"No role found for user {user_id}, creating default role")
                try:
                    await self.roles.insert(RoleRecord(user_id=user_id, role=DEFAULT_ROLE))
                except BackendError as exc:
                    logger.error(f"Error creating default role for user {user_id}: {exc}")
                    self._note_error(user_id, f"Default role creation failed: {exc}")
                    return None
                role = DEFAULT_ROLE

        identity = self.state.identity
        if identity is not None and identity.id == user_id:
            self.state.role = role
            self.state.role_fetch_attempts = 0
        logger.info(f"Role for user {user_id}: {role}")
        return role

    async def refresh_role(self) -> str | None:
        """
        Manual refresh: restart resolution for the current identity with a
        fresh attempt budget and wait for it to settle.
        """
        identity = self.state.identity
        if self.state.auth_state is not AuthState.AUTHENTICATED or identity is None:
            return None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self.state.role_fetch_attempts = 0
        self._start_resolution(identity.id)
        return await self.wait_until_settled()

    async def wait_until_settled(self) -> str | None:
        """Wait for the pending resolution (if any) and return the role held."""
        task = self._task
        if task is not None and not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self.state.role

    def _start_resolution(self, user_id: str) -> None:
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(
            self._resolve_until_settled(self._generation, user_id)
        )

    async def _resolve_until_settled(self, generation: int, user_id: str) -> str | None:
        while True:
            role = await self.resolve_role(user_id)
            if generation != self._generation:
                return None
            if role is not None:
                return role

            attempts = self.state.role_fetch_attempts
            self.state.role_fetch_attempts = attempts + 1
            if self.state.role_fetch_attempts >= self.policy.max_attempts:
                logger.warning(
                    f"Giving up on role for user {user_id} after "
                    f"{self.state.role_fetch_attempts} attempts"
                )
                self.state.last_error = (
                    "Could not load your account role. Try repairing your account."
                )
                return None

            delay = self.policy.delay_for(attempts)
            logger.info(f"Retrying role fetch for user {user_id} in {delay:.1f}s")
            await self._sleep(delay)

            if generation != self._generation:
                return None
            if self.state.role is not None:
                return self.state.role

    def _note_error(self, user_id: str, message: str) -> None:
        identity = self.state.identity
        if identity is not None and identity.id == user_id:
            self.state.last_error = message

    # -------- Read side --------

    def destination(self) -> ViewId:
        return destination_for(self.state.role)

    def snapshot(self) -> SessionStateRead:
        identity = self.state.identity
        return SessionStateRead(
            auth_state=self.state.auth_state.value,
            user=(
                IdentityRead(
                    id=identity.id,
                    email=identity.email,
                    display_name=identity.display_name,
                )
                if identity is not None
                else None
            ),
            role=self.state.role,
            role_fetch_attempts=self.state.role_fetch_attempts,
            last_error=self.state.last_error,
        )
