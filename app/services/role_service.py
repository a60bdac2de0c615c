# app/services/role_service.py
import logging

from fastapi import HTTPException, status

from app.core.errors import BackendError, to_http_exception
from app.repositories.role_repo import RoleRepository
from app.schemas.role import RoleRead, RoleRecord, RoleUpdate, is_valid_role
from app.services.reconciler import latest_record

logger = logging.getLogger(__name__)


class RoleService:
    """
    Role lookups for guards and admin role management.

    Responsibilities:
      - read a user's effective role (newest row wins)
      - change a user's role (admin only)
      - map backend errors to HTTP errors
    """

    def __init__(self, repo: RoleRepository):
        self.repo = repo

    async def role_for(self, user_id: str) -> str | None:
        """
        Effective role for `user_id`, or None if it has none.
        Read failures count as "no role" so guards fail closed.
        """
        try:
            latest = latest_record(await self.repo.find(user_id))
        except BackendError as exc:
            logger.error(f"Error reading role for {user_id}: {exc}")
            return None
        return latest.role if latest is not None else None

    async def get_role(self, user_id: str) -> RoleRead:
        """
        Get a user's role row (admin only).

        Raises:
            HTTPException(404): if the user has no valid role.
        """
        try:
            latest = latest_record(await self.repo.find(user_id))
        except BackendError as exc:
            raise to_http_exception(exc)

        if latest is None or not is_valid_role(latest.role):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Role not found",
            )
        return RoleRead(user_id=latest.user_id, role=latest.role, created_at=latest.created_at)

    async def update_role(self, user_id: str, payload: RoleUpdate) -> RoleRead:
        """
        Change user's role (admin only).

        Users without a role row get one; otherwise every row for the user
        is updated so duplicates cannot disagree.
        Role validation is enforced by the schema (Literal).
        """
        try:
            rows = await self.repo.find(user_id)
            if rows:
                await self.repo.update(user_id, {"role": payload.role})
            else:
                await self.repo.insert(RoleRecord(user_id=user_id, role=payload.role))
        except BackendError as exc:
            raise to_http_exception(exc)

        logger.info(f"Role for user {user_id} set to '{payload.role}'")
        return await self.get_role(user_id)
