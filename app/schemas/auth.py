# app/schemas/auth.py
from typing import Any

from pydantic import EmailStr, ConfigDict, field_validator
from sqlmodel import SQLModel, Field

from app.schemas.role import Role, is_valid_role

DEFAULT_DISPLAY_NAME = "User"

# Metadata keys checked, in order, for a human-readable name.
# Different sign-in providers fill different keys.
_NAME_KEYS = ("name", "full_name", "preferred_username")


def derive_display_name(user_metadata: dict[str, Any] | None, email: str | None) -> str:
    """
    Pick a display name for an authenticated user.

    Fallback chain:
      name -> full_name -> preferred_username -> email local part -> "User"
    """
    metadata = user_metadata or {}
    for key in _NAME_KEYS:
        value = metadata.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()

    if email and "@" in email:
        local = email.split("@", 1)[0]
        if local:
            return local

    return DEFAULT_DISPLAY_NAME


class Identity(SQLModel):
    """
    Authenticated principal, mirrored from the identity store.

    `user_metadata` is the free-form registration metadata; the only key the
    session layer reads is `role_request` (the role picked at sign-up).
    """

    id: str
    email: str = ""
    display_name: str = DEFAULT_DISPLAY_NAME
    user_metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_claims(
        cls,
        user_id: str,
        email: str | None,
        user_metadata: dict[str, Any] | None = None,
    ) -> "Identity":
        metadata = dict(user_metadata or {})
        return cls(
            id=user_id,
            email=email or "",
            display_name=derive_display_name(metadata, email),
            user_metadata=metadata,
        )

    @property
    def requested_role(self) -> str | None:
        """Role requested at sign-up, if it is a valid application role."""
        value = self.user_metadata.get("role_request")
        return value if is_valid_role(value) else None


class AuthSession(SQLModel):
    """Live authentication context: token material plus its identity."""

    access_token: str = ""
    refresh_token: str | None = None
    expires_at: int | None = None
    identity: Identity | None = None


class SignUpResult(SQLModel):
    """New account; `session` is None while email confirmation is pending."""

    identity: Identity | None = None
    session: AuthSession | None = None


# -------- Request bodies --------


class LoginRequest(SQLModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1)


class RegisterRequest(SQLModel):
    """
    Sign-up payload.

    `role` is stored as `role_request` in the sign-up metadata and used
    when the user's role row is first created.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(max_length=200)
    email: EmailStr
    password: str = Field(min_length=6)
    role: Role = "customer"
    role_questions: dict[str, Any] | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be empty")
        return v


class PasswordResetRequest(SQLModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr


# -------- Response bodies --------


class IdentityRead(SQLModel):
    id: str
    email: str
    display_name: str


class SessionStateRead(SQLModel):
    """Snapshot of the reconciliation state."""

    auth_state: str
    user: IdentityRead | None = None
    role: str | None = None
    role_fetch_attempts: int = 0
    last_error: str | None = None


class LoginRead(SessionStateRead):
    """Session state after sign-in, plus the bearer token for later calls."""

    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"


class LandingRead(SQLModel):
    """Where a user with `role` should land."""

    role: str | None
    view: str
    path: str


class ConsistencyRead(SQLModel):
    user_id: str
    ok: bool


class ExistsRead(SQLModel):
    user_id: str
    exists: bool


class MessageRead(SQLModel):
    detail: str


class RegistrationRead(SQLModel):
    """Result of sign-up: the new identity and whether its rows are ready."""

    user: IdentityRead
    requested_role: str
    records_ready: bool
