# app/repositories/role_repo.py
from abc import ABC, abstractmethod
from typing import Any

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient

from app.core.errors import BackendError, NOT_FOUND_CODE
from app.schemas.role import RoleRecord

TABLE = "user_roles"


class RoleRepository(ABC):
    """
    Data access for `user_roles`.

    Responsibilities:
      - Pure data operations keyed by user id
      - No FastAPI, no HTTP, no business logic

    `find` returns every row for the user, most recent first; an empty
    list means the user has no role yet.
    """

    @abstractmethod
    async def find(self, user_id: str) -> list[RoleRecord]: ...

    @abstractmethod
    async def insert(self, row: RoleRecord) -> None: ...

    @abstractmethod
    async def update(self, user_id: str, fields: dict[str, Any]) -> None: ...

    @abstractmethod
    async def delete_all(self, user_id: str) -> None: ...


def backend_error(exc: APIError | httpx.HTTPError, action: str) -> BackendError:
    """Wrap a PostgREST / transport error raised while performing `action`."""
    if isinstance(exc, APIError):
        return BackendError(f"{action} failed: {exc.message}", code=exc.code)
    return BackendError(f"{action} failed: {exc}")


class SupabaseRoleRepository(RoleRepository):
    """RoleRepository backed by the Supabase REST API."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def find(self, user_id: str) -> list[RoleRecord]:
        try:
            response = await (
                self.client.table(TABLE)
                .select("user_id, role, created_at")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .execute()
            )
        except APIError as exc:
            if exc.code == NOT_FOUND_CODE:
                return []
            raise backend_error(exc, "Role lookup") from exc
        except httpx.HTTPError as exc:
            raise backend_error(exc, "Role lookup") from exc
        return [RoleRecord.model_validate(row) for row in response.data or []]

    async def insert(self, row: RoleRecord) -> None:
        try:
            await (
                self.client.table(TABLE)
                .insert({"user_id": row.user_id, "role": row.role})
                .execute()
            )
        except (APIError, httpx.HTTPError) as exc:
            raise backend_error(exc, "Role insert") from exc

    async def update(self, user_id: str, fields: dict[str, Any]) -> None:
        try:
            await (
                self.client.table(TABLE)
                .update(fields)
                .eq("user_id", user_id)
                .execute()
            )
        except (APIError, httpx.HTTPError) as exc:
            raise backend_error(exc, "Role update") from exc

    async def delete_all(self, user_id: str) -> None:
        try:
            await self.client.table(TABLE).delete().eq("user_id", user_id).execute()
        except (APIError, httpx.HTTPError) as exc:
            raise backend_error(exc, "Role delete") from exc
