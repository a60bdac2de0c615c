# app/routers/users.py
from fastapi import APIRouter, Depends

from app.core.auth import require_admin, require_auth
from app.dependencies import get_caller_repairer, get_caller_role_service
from app.schemas.auth import ConsistencyRead, ExistsRead, Identity, LandingRead
from app.schemas.role import RoleRead, RoleUpdate
from app.services.consistency import ConsistencyRepairer
from app.services.role_router import destination_for, path_for
from app.services.role_service import RoleService

router = APIRouter(prefix="/users", tags=["Users"])

# Repositories behind these routes act under the caller's own token.


# -------- Self --------


@router.get("/me/exists", response_model=ExistsRead)
async def read_exists(
    identity: Identity = Depends(require_auth),
    repairer: ConsistencyRepairer = Depends(get_caller_repairer),
):
    """
    Lightweight check: does the caller have a profile row?

    Auth:
      - Requires valid Supabase JWT.
    """
    exists = await repairer.check_exists(identity.id)
    return ExistsRead(user_id=identity.id, exists=exists)


@router.post("/me/consistency", response_model=ConsistencyRead)
async def verify_consistency(
    identity: Identity = Depends(require_auth),
    repairer: ConsistencyRepairer = Depends(get_caller_repairer),
):
    """
    Make sure the caller has a role row and a profile row, creating
    whatever is missing. Safe to call on every page load.

    Auth:
      - Requires valid Supabase JWT.
    """
    ok = await repairer.verify_consistency(identity.id, identity)
    return ConsistencyRead(user_id=identity.id, ok=ok)


@router.post("/me/repair", response_model=ConsistencyRead)
async def repair_entries(
    identity: Identity = Depends(require_auth),
    repairer: ConsistencyRepairer = Depends(get_caller_repairer),
):
    """
    Aggressive repair of the caller's rows (for users who cannot log in).

    Auth:
      - Requires valid Supabase JWT.
    """
    ok = await repairer.repair_entries(identity.id, identity)
    return ConsistencyRead(user_id=identity.id, ok=ok)


@router.get("/me/landing", response_model=LandingRead)
async def read_landing(
    identity: Identity = Depends(require_auth),
    roles: RoleService = Depends(get_caller_role_service),
):
    """
    Landing view for the caller's role.
    Users without a resolvable role land on the customer home.
    """
    role = await roles.role_for(identity.id)
    view = destination_for(role)
    return LandingRead(role=role, view=view.value, path=path_for(view))


# -------- Admin endpoints --------


@router.get(
    "/{user_id}/role",
    response_model=RoleRead,
    dependencies=[Depends(require_admin)],
)
async def get_role(
    user_id: str,
    roles: RoleService = Depends(get_caller_role_service),
):
    """
    Get a specific user's role (admin only).
    """
    return await roles.get_role(user_id)


@router.patch(
    "/{user_id}/role",
    response_model=RoleRead,
    dependencies=[Depends(require_admin)],
)
async def change_role(
    user_id: str,
    payload: RoleUpdate,
    roles: RoleService = Depends(get_caller_role_service),
):
    """
    Update a user's role (admin only).

    Allowed roles: admin, seller, delivery, customer.
    """
    return await roles.update_role(user_id, payload)
