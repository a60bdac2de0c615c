# app/repositories/profile_repo.py
from abc import ABC, abstractmethod
from typing import Any

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient

from app.core.errors import NOT_FOUND_CODE
from app.repositories.role_repo import backend_error
from app.schemas.profile import ProfileRecord

TABLE = "profiles"


class ProfileRepository(ABC):
    """Data access for `profiles` (primary key = auth user id)."""

    @abstractmethod
    async def find(self, profile_id: str) -> ProfileRecord | None: ...

    @abstractmethod
    async def upsert(self, row: dict[str, Any]) -> None: ...

    @abstractmethod
    async def update(self, profile_id: str, fields: dict[str, Any]) -> None: ...


class SupabaseProfileRepository(ProfileRepository):
    """ProfileRepository backed by the Supabase REST API."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def find(self, profile_id: str) -> ProfileRecord | None:
        try:
            response = await (
                self.client.table(TABLE)
                .select("id, name, email, question_responses")
                .eq("id", profile_id)
                .limit(1)
                .execute()
            )
        except APIError as exc:
            if exc.code == NOT_FOUND_CODE:
                return None
            raise backend_error(exc, "Profile lookup") from exc
        except httpx.HTTPError as exc:
            raise backend_error(exc, "Profile lookup") from exc

        rows = response.data or []
        if not rows:
            return None
        return ProfileRecord.model_validate(rows[0])

    async def upsert(self, row: dict[str, Any]) -> None:
        try:
            await self.client.table(TABLE).upsert(row).execute()
        except (APIError, httpx.HTTPError) as exc:
            raise backend_error(exc, "Profile upsert") from exc

    async def update(self, profile_id: str, fields: dict[str, Any]) -> None:
        try:
            await self.client.table(TABLE).update(fields).eq("id", profile_id).execute()
        except (APIError, httpx.HTTPError) as exc:
            raise backend_error(exc, "Profile update") from exc
