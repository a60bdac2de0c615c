# app/routers/auth.py
from fastapi import APIRouter, Depends, status

from app.core.auth import require_session_owner
from app.dependencies import get_auth_service
from app.schemas.auth import (
    ConsistencyRead,
    LandingRead,
    LoginRead,
    LoginRequest,
    MessageRead,
    PasswordResetRequest,
    RegisterRequest,
    RegistrationRead,
    SessionStateRead,
)
from app.services.auth_service import AuthService

router = APIRouter(prefix="/auth", tags=["Auth"])

# Routes acting on the service session: only its owner may call them.
owner_only = [Depends(require_session_owner)]


# -------- Credentials --------


@router.post("/login", response_model=LoginRead)
async def login(
    payload: LoginRequest,
    service: AuthService = Depends(get_auth_service),
):
    """
    Sign in with email + password.

    Returns the session state once the role has been resolved (or its
    retries exhausted), with the access token to send as a bearer token
    on the session routes below.
    """
    return await service.login(payload)


@router.post(
    "/register",
    response_model=RegistrationRead,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    payload: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
):
    """
    Create an account.

    The requested role is stored in the sign-up metadata and used to
    create the user's role row.
    """
    return await service.register(payload)


@router.post("/logout", response_model=SessionStateRead, dependencies=owner_only)
async def logout(service: AuthService = Depends(get_auth_service)):
    return await service.logout()


@router.post("/refresh", response_model=SessionStateRead, dependencies=owner_only)
async def refresh(service: AuthService = Depends(get_auth_service)):
    """Refresh session tokens."""
    return await service.refresh()


@router.post("/password-reset", response_model=MessageRead)
async def password_reset(
    payload: PasswordResetRequest,
    service: AuthService = Depends(get_auth_service),
):
    await service.send_password_reset(payload.email)
    return MessageRead(detail="Password reset email sent")


# -------- Session state --------


@router.get("/state", response_model=SessionStateRead, dependencies=owner_only)
def read_state(service: AuthService = Depends(get_auth_service)):
    """Current auth state, user, role and last error."""
    return service.state()


@router.get("/landing", response_model=LandingRead, dependencies=owner_only)
def read_landing(service: AuthService = Depends(get_auth_service)):
    """Where the signed-in user should be sent, based on their role."""
    return service.landing()


@router.post("/role/refresh", response_model=SessionStateRead, dependencies=owner_only)
async def refresh_role(service: AuthService = Depends(get_auth_service)):
    """Manually re-run role resolution with a fresh retry budget."""
    return await service.refresh_role()


@router.post("/repair", response_model=ConsistencyRead, dependencies=owner_only)
async def repair(service: AuthService = Depends(get_auth_service)):
    """
    Repair the signed-in user's role / profile rows.

    Meant for users whose role could not be resolved.
    """
    return await service.repair()


@router.post("/retry", response_model=SessionStateRead, dependencies=owner_only)
async def retry_initialization(service: AuthService = Depends(get_auth_service)):
    """Re-run the initial session check after it failed."""
    return await service.retry_initialization()


@router.delete("/errors", response_model=SessionStateRead, dependencies=owner_only)
def clear_errors(service: AuthService = Depends(get_auth_service)):
    return service.clear_errors()
