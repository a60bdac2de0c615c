# app/core/auth.py
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt, JWTError

from app.core.config import get_settings
from app.dependencies import bearer_scheme, get_caller_role_service, get_reconciler
from app.schemas.auth import Identity
from app.services.reconciler import SessionReconciler
from app.services.role_router import is_role_allowed
from app.services.role_service import RoleService

settings = get_settings()


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Decode and verify a Supabase access token (JWT).

    Verification:
      - signature (HS256 using SUPABASE_JWT_SECRET)
      - expiration time (exp)
      - audience is NOT verified (Supabase 'aud' may vary)

    Args:
        token: raw JWT from the Authorization header.

    Returns:
        Decoded JWT claims.

    Raises:
        HTTPException(401): if token is invalid/expired.
    """
    try:
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.SUPABASE_JWT_ALG],
            options={"verify_aud": False},
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Identity | None:
    """
    Resolve the caller's identity from a Supabase JWT.

    Flow:
      1. If no Authorization header => guest => return None.
      2. Decode JWT => extract 'sub' (auth user id), 'email' and
         'user_metadata' (carries the sign-up role_request).
      3. Build the Identity (display name derived from metadata / email).

    Returns:
        Identity if authenticated, else None for guests.

    Raises:
        HTTPException(401): if token is malformed or missing required claims.
    """
    if credentials is None:
        return None  # guest mode

    payload = decode_access_token(credentials.credentials)
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing sub",
        )

    metadata = payload.get("user_metadata")
    return Identity.from_claims(
        str(sub),
        payload.get("email"),
        metadata if isinstance(metadata, dict) else {},
    )


def require_auth(identity: Identity | None = Depends(get_current_identity)) -> Identity:
    """
    Enforce authentication.

    If attached to a route, guests (missing/invalid JWT)
    will be rejected with 401.

    Raises:
        HTTPException(401): if identity is None.
    """
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return identity


def require_session_owner(
    identity: Identity = Depends(require_auth),
    reconciler: SessionReconciler = Depends(get_reconciler),
) -> Identity:
    """
    Admit only the user the service session belongs to.

    Any authenticated caller passes while no session is held (e.g. to
    retry a failed initial check); once a user is signed in, other
    callers are refused.

    Raises:
        HTTPException(401): guest.
        HTTPException(403): the session belongs to another user.
    """
    held = reconciler.state.identity
    if held is not None and held.id != identity.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="The active session belongs to another user",
        )
    return identity


def require_role(*allowed_roles: str):
    """
    Build a dependency that admits only callers whose role is in
    `allowed_roles` (any role if none are given).

    Usage:

        @router.get("/x", dependencies=[Depends(require_role("admin"))])

    Raises:
        HTTPException(403): if the caller's role is not allowed.
    """

    async def _check(
        identity: Identity = Depends(require_auth),
        roles: RoleService = Depends(get_caller_role_service),
    ) -> Identity:
        role = await roles.role_for(identity.id)
        if not is_role_allowed(role, allowed_roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role for this resource",
            )
        return identity

    return _check


require_admin = require_role("admin")
