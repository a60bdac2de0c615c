# app/services/consistency.py
import logging

from app.core.errors import BackendError, RecordNotFoundError
from app.repositories.identity_store import IdentityStore
from app.repositories.profile_repo import ProfileRepository
from app.repositories.repair_repo import RepairProcedure
from app.repositories.role_repo import RoleRepository
from app.schemas.auth import Identity
from app.schemas.role import DEFAULT_ROLE, RoleRecord, is_valid_role
from app.services.locks import UserLocks
from app.services.reconciler import latest_record

logger = logging.getLogger(__name__)


class ConsistencyRepairer:
    """
    Makes sure a user id has both a role row and a profile row.

    Responsibilities:
      - verify_consistency: cheap check, creates whatever is missing
      - repair_entries: heavier recovery for users who cannot log in
      - check_exists: profile existence probe, creates nothing

    Every operation is re-entrant (inserts are preceded by a lookup under
    the user's lock, or replace what was there) and reports failure as
    False instead of raising.
    """

    def __init__(
        self,
        roles: RoleRepository,
        profiles: ProfileRepository,
        repair_procedure: RepairProcedure,
        identity_store: IdentityStore,
        *,
        locks: UserLocks | None = None,
    ):
        self.roles = roles
        self.profiles = profiles
        self.repair_procedure = repair_procedure
        self.identity_store = identity_store
        self.locks = locks or UserLocks()

    # -------- Public operations --------

    async def verify_consistency(self, user_id: str, identity: Identity | None = None) -> bool:
        """
        Ensure role and profile rows exist for `user_id`.

        A missing role is created from the sign-up role hint (or the
        default). Failed inserts fall back to the server-side repair
        procedure. Returns True only if both rows are present at the end.
        """
        if not user_id:
            return False

        logger.info(f"Verifying user consistency for {user_id}")
        async with self.locks.for_user(user_id):
            if not await self._ensure_role(user_id, identity):
                return False
            return await self._ensure_profile(user_id)

    async def repair_entries(self, user_id: str, identity: Identity | None = None) -> bool:
        """
        Aggressive recovery: run the repair procedure, or rebuild the role
        row (delete + insert) and the profile row by hand if it fails.

        A valid role that existed before the repair is kept; the sign-up
        hint only applies when the user had no role at all.
        Returns True if the user ends up with a usable role.
        """
        if not user_id:
            return False

        logger.info(f"Attempting to repair entries for user {user_id}")
        requested = await self._requested_role(user_id, identity)

        async with self.locks.for_user(user_id):
            existing = await self._current_role(user_id)

            if await self._run_repair(user_id):
                if existing is None and requested and requested != DEFAULT_ROLE:
                    logger.info(f"Setting role '{requested}' from sign-up metadata")
                    try:
                        await self.roles.update(user_id, {"role": requested})
                    except BackendError as exc:
                        logger.error(f"Failed to apply requested role after repair: {exc}")
                        return False
            else:
                role = existing or requested or DEFAULT_ROLE
                if not await self._rebuild(user_id, role):
                    return False

            final = await self._current_role(user_id)

        if final is None:
            logger.error(f"Repair finished but user {user_id} still has no usable role")
            return False
        logger.info(f"Repair completed for user {user_id} (role: {final})")
        return True

    async def check_exists(self, user_id: str) -> bool:
        """True if a profile row exists for `user_id`."""
        if not user_id:
            return False
        try:
            return await self.profiles.find(user_id) is not None
        except RecordNotFoundError:
            return False
        except BackendError as exc:
            logger.error(f"Error checking if user exists: {exc}")
            return False

    # -------- Steps --------

    async def _ensure_role(self, user_id: str, identity: Identity | None) -> bool:
        try:
            rows = await self.roles.find(user_id)
        except RecordNotFoundError:
            rows = []
        except BackendError as exc:
            logger.error(f"Error checking user role: {exc}")
            return False

        if rows:
            return True

        role = await self._requested_role(user_id, identity) or DEFAULT_ROLE
        logger.info(f"No role found for user {user_id}, assigning '{role}'")
        try:
            await self.roles.insert(RoleRecord(user_id=user_id, role=role))
            return True
        except BackendError as exc:
            logger.error(f"Error creating role, falling back to repair procedure: {exc}")

        if not await self._run_repair(user_id):
            return False

        # The procedure only guarantees the default role.
        if role != DEFAULT_ROLE:
            try:
                await self.roles.update(user_id, {"role": role})
            except BackendError as exc:
                logger.error(f"Error updating role after repair: {exc}")
                return False
        return True

    async def _ensure_profile(self, user_id: str) -> bool:
        try:
            profile = await self.profiles.find(user_id)
        except RecordNotFoundError:
            profile = None
        except BackendError as exc:
            logger.error(f"Error checking user profile: {exc}")
            return False

        if profile is not None:
            return True

        logger.info(f"No profile found for user {user_id}, creating profile")
        try:
            await self.profiles.upsert({"id": user_id})
            return True
        except BackendError as exc:
            logger.error(f"Error creating profile, falling back to repair procedure: {exc}")

        return await self._run_repair(user_id)

    async def _rebuild(self, user_id: str, role: str) -> bool:
        try:
            await self.roles.delete_all(user_id)
            await self.roles.insert(RoleRecord(user_id=user_id, role=role))
        except BackendError as exc:
            logger.error(f"Manual role repair failed: {exc}")
            return False

        try:
            await self.profiles.upsert({"id": user_id})
        except BackendError as exc:
            logger.error(f"Manual profile repair failed: {exc}")
            return False
        return True

    async def _run_repair(self, user_id: str) -> bool:
        try:
            repaired = await self.repair_procedure.run(user_id)
        except BackendError as exc:
            logger.error(f"Repair procedure failed: {exc}")
            return False
        if not repaired:
            logger.warning(f"Repair procedure reported no repair for user {user_id}")
        return repaired

    async def _current_role(self, user_id: str) -> str | None:
        try:
            rows = await self.roles.find(user_id)
        except RecordNotFoundError:
            return None
        except BackendError as exc:
            logger.error(f"Error reading role for user {user_id}: {exc}")
            return None
        latest = latest_record(rows)
        if latest is None or not is_valid_role(latest.role):
            return None
        return latest.role

    async def _requested_role(self, user_id: str, identity: Identity | None) -> str | None:
        """Role hint from sign-up metadata, if valid."""
        if identity is not None and identity.id == user_id:
            return identity.requested_role

        try:
            session = await self.identity_store.get_session()
        except BackendError as exc:
            logger.warning(f"Could not read session metadata: {exc}")
            return None

        if session is None or session.identity is None or session.identity.id != user_id:
            return None
        return session.identity.requested_role
