# app/repositories/identity_store.py
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

import httpx
from supabase import AsyncClient, AuthError

from app.core.errors import AuthenticationError, BackendError
from app.schemas.auth import AuthSession, Identity, SignUpResult

logger = logging.getLogger(__name__)

# (event_kind, session) -> None; event_kind is e.g. "SIGNED_IN", "SIGNED_OUT"
SessionHandler = Callable[[str, AuthSession | None], None]
Unsubscribe = Callable[[], None]


class IdentityStore(ABC):
    """
    Authoritative store of credentials and sessions.

    Responsibilities:
      - one-shot session lookup and push-style session change events
      - credential operations (sign in / up / out, refresh, password reset)

    Implementations raise AuthenticationError for bad credentials or
    invalid tokens and BackendError for transport failures.
    """

    @abstractmethod
    async def get_session(self) -> AuthSession | None: ...

    @abstractmethod
    def on_session_change(self, handler: SessionHandler) -> Unsubscribe: ...

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> AuthSession: ...

    @abstractmethod
    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any],
        redirect_to: str | None = None,
    ) -> SignUpResult: ...

    @abstractmethod
    async def sign_out(self) -> None: ...

    @abstractmethod
    async def refresh_session(self) -> AuthSession | None: ...

    @abstractmethod
    async def reset_password_for_email(
        self, email: str, redirect_to: str | None = None
    ) -> None: ...


def identity_from_user(user: Any) -> Identity | None:
    """Map a Supabase auth user object to an Identity."""
    if user is None:
        return None
    return Identity.from_claims(
        str(user.id),
        getattr(user, "email", None),
        getattr(user, "user_metadata", None) or {},
    )


def session_from_supabase(session: Any) -> AuthSession | None:
    """Map a Supabase auth session object to an AuthSession."""
    if session is None:
        return None
    return AuthSession(
        access_token=session.access_token,
        refresh_token=getattr(session, "refresh_token", None),
        expires_at=getattr(session, "expires_at", None),
        identity=identity_from_user(getattr(session, "user", None)),
    )


class SupabaseIdentityStore(IdentityStore):
    """IdentityStore backed by Supabase Auth (async client)."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def get_session(self) -> AuthSession | None:
        try:
            session = await self.client.auth.get_session()
        except AuthError as exc:
            raise AuthenticationError(str(exc), code=getattr(exc, "code", None)) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Session lookup failed: {exc}") from exc
        return session_from_supabase(session)

    def on_session_change(self, handler: SessionHandler) -> Unsubscribe:
        def _callback(event: Any, session: Any) -> None:
            logger.info(f"Auth state change: {event}")
            handler(str(event), session_from_supabase(session))

        subscription = self.client.auth.on_auth_state_change(_callback)
        return subscription.unsubscribe

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        try:
            response = await self.client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except AuthError as exc:
            raise AuthenticationError(str(exc), code=getattr(exc, "code", None)) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Sign-in failed: {exc}") from exc

        session = session_from_supabase(response.session)
        if session is None or session.identity is None:
            raise AuthenticationError("Sign-in returned no session")
        return session

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any],
        redirect_to: str | None = None,
    ) -> SignUpResult:
        options: dict[str, Any] = {"data": metadata}
        if redirect_to:
            options["email_redirect_to"] = redirect_to
        try:
            response = await self.client.auth.sign_up(
                {"email": email, "password": password, "options": options}
            )
        except AuthError as exc:
            raise AuthenticationError(str(exc), code=getattr(exc, "code", None)) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Sign-up failed: {exc}") from exc
        return SignUpResult(
            identity=identity_from_user(response.user),
            session=session_from_supabase(response.session),
        )

    async def sign_out(self) -> None:
        try:
            await self.client.auth.sign_out()
        except AuthError as exc:
            raise AuthenticationError(str(exc), code=getattr(exc, "code", None)) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Sign-out failed: {exc}") from exc

    async def refresh_session(self) -> AuthSession | None:
        try:
            response = await self.client.auth.refresh_session()
        except AuthError as exc:
            raise AuthenticationError(str(exc), code=getattr(exc, "code", None)) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Session refresh failed: {exc}") from exc
        return session_from_supabase(response.session)

    async def reset_password_for_email(
        self, email: str, redirect_to: str | None = None
    ) -> None:
        options = {"redirect_to": redirect_to} if redirect_to else {}
        try:
            await self.client.auth.reset_password_for_email(email, options)
        except AuthError as exc:
            raise AuthenticationError(str(exc), code=getattr(exc, "code", None)) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Password reset failed: {exc}") from exc
