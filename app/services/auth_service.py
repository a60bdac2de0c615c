# app/services/auth_service.py
import logging
from typing import Awaitable, Callable

from fastapi import HTTPException, status

from app.core.errors import AuthenticationError, BackendError, to_http_exception
from app.repositories.identity_store import IdentityStore
from app.schemas.auth import (
    ConsistencyRead,
    IdentityRead,
    LandingRead,
    LoginRead,
    LoginRequest,
    RegisterRequest,
    RegistrationRead,
    SessionStateRead,
)
from app.services.consistency import ConsistencyRepairer
from app.services.reconciler import AuthState, SessionReconciler
from app.services.role_router import path_for

logger = logging.getLogger(__name__)

# access token (None for the anon key) -> repairer acting under that token
RepairerFactory = Callable[[str | None], Awaitable[ConsistencyRepairer]]


class AuthService:
    """
    Credential flows for the service session.

    Responsibilities:
      - sign in / up / out, refresh, password reset via the identity store
      - feed resulting sessions to the reconciler
      - map authentication failures to HTTP errors (401), backend
        failures to 502
    """

    def __init__(
        self,
        identity_store: IdentityStore,
        reconciler: SessionReconciler,
        repairer: ConsistencyRepairer,
        repairer_for: RepairerFactory,
        redirect_url: str | None = None,
    ):
        self.identity_store = identity_store
        self.reconciler = reconciler
        self.repairer = repairer
        self.repairer_for = repairer_for
        self.redirect_url = redirect_url

    # -------- Credentials --------

    async def login(self, payload: LoginRequest) -> LoginRead:
        """
        Sign in with email + password, then wait for the role to resolve
        (or for its retries to run out).
        """
        try:
            session = await self.identity_store.sign_in_with_password(
                payload.email, payload.password
            )
        except BackendError as exc:
            logger.warning(f"Login failed for {payload.email}: {exc}")
            raise to_http_exception(exc)

        self.reconciler.on_session_changed(session)
        await self.reconciler.wait_until_settled()
        return LoginRead(
            **self.reconciler.snapshot().model_dump(),
            access_token=session.access_token,
            refresh_token=session.refresh_token,
        )

    async def register(self, payload: RegisterRequest) -> RegistrationRead:
        """
        Sign up, then create the role / profile rows.

        Rows are written as the new account (its own session when sign-up
        returns one, the anon key while email confirmation is pending),
        never through the service session.

        The chosen role travels in the sign-up metadata as `role_request`,
        so later repairs can recover it.
        """
        metadata = {"name": payload.name, "role_request": payload.role}
        try:
            result = await self.identity_store.sign_up(
                payload.email,
                payload.password,
                metadata,
                redirect_to=self._redirect("/auth-confirmation"),
            )
        except BackendError as exc:
            logger.warning(f"Registration failed for {payload.email}: {exc}")
            raise to_http_exception(exc)

        identity = result.identity
        if identity is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Registration did not return a user",
            )

        token = result.session.access_token if result.session is not None else None
        repairer = await self.repairer_for(token)
        ready = await repairer.verify_consistency(identity.id, identity)

        if payload.role_questions:
            try:
                await repairer.profiles.update(
                    identity.id, {"question_responses": payload.role_questions}
                )
            except BackendError as exc:
                logger.error(f"Error saving role questions for {identity.id}: {exc}")

        return RegistrationRead(
            user=IdentityRead(
                id=identity.id,
                email=identity.email,
                display_name=identity.display_name,
            ),
            requested_role=payload.role,
            records_ready=ready,
        )

    async def logout(self) -> SessionStateRead:
        try:
            await self.identity_store.sign_out()
        except BackendError as exc:
            logger.error(f"Logout failed: {exc}")
            raise to_http_exception(exc)
        self.reconciler.on_session_changed(None)
        return self.reconciler.snapshot()

    async def refresh(self) -> SessionStateRead:
        """Refresh the session tokens; a rejected refresh ends the session."""
        try:
            session = await self.identity_store.refresh_session()
        except AuthenticationError as exc:
            logger.warning(f"Session refresh rejected: {exc}")
            self.reconciler.on_session_changed(None)
            raise to_http_exception(exc)
        except BackendError as exc:
            raise to_http_exception(exc)

        self.reconciler.on_session_changed(session)
        return self.reconciler.snapshot()

    async def send_password_reset(self, email: str) -> None:
        try:
            await self.identity_store.reset_password_for_email(
                email, redirect_to=self._redirect("/reset-password")
            )
        except BackendError as exc:
            logger.warning(f"Password reset failed for {email}: {exc}")
            raise to_http_exception(exc)

    # -------- Session state --------

    def state(self) -> SessionStateRead:
        return self.reconciler.snapshot()

    def landing(self) -> LandingRead:
        self._require_session()
        view = self.reconciler.destination()
        return LandingRead(role=self.reconciler.state.role, view=view.value, path=path_for(view))

    async def refresh_role(self) -> SessionStateRead:
        self._require_session()
        await self.reconciler.refresh_role()
        return self.reconciler.snapshot()

    async def repair(self) -> ConsistencyRead:
        """Repair the signed-in user's rows, then resolve the role again."""
        identity = self._require_session()
        ok = await self.repairer.repair_entries(identity.id, identity)
        if ok:
            await self.reconciler.refresh_role()
        return ConsistencyRead(user_id=identity.id, ok=ok)

    async def retry_initialization(self) -> SessionStateRead:
        await self.reconciler.retry_initialization()
        return self.reconciler.snapshot()

    def clear_errors(self) -> SessionStateRead:
        self.reconciler.clear_errors()
        return self.reconciler.snapshot()

    # -------- Helpers --------

    def _require_session(self):
        state = self.reconciler.state
        if state.auth_state is not AuthState.AUTHENTICATED or state.identity is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not signed in",
            )
        return state.identity

    def _redirect(self, path: str) -> str | None:
        if not self.redirect_url:
            return None
        return self.redirect_url.rstrip("/") + path
