# app/dependencies.py
"""
FastAPI dependency providers.

Process-wide services are built once in the application lifespan (see
app/main.py) and stored on `app.state`. Per-caller services are built on
each request by factories on `app.state`, bound to the caller's bearer
token. Tests swap in fakes by setting the same attributes.
"""
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.services.auth_service import AuthService
from app.services.consistency import ConsistencyRepairer
from app.services.reconciler import SessionReconciler
from app.services.role_service import RoleService

# HTTP Bearer scheme:
# - auto_error=False => missing Authorization header will NOT raise immediately
#   so we can support "guest" mode (unauthenticated).
bearer_scheme = HTTPBearer(auto_error=False)


def get_reconciler(request: Request) -> SessionReconciler:
    return request.app.state.reconciler


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_caller_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Raw bearer token of the caller (401 for guests)."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return credentials.credentials


async def get_caller_repairer(
    request: Request,
    token: str = Depends(get_caller_token),
) -> ConsistencyRepairer:
    """Consistency repairer whose repositories act as the caller."""
    return await request.app.state.caller_repairer(token)


async def get_caller_role_service(
    request: Request,
    token: str = Depends(get_caller_token),
) -> RoleService:
    """Role service for the caller (service-role client when configured)."""
    return await request.app.state.caller_role_service(token)
