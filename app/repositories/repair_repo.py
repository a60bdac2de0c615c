# app/repositories/repair_repo.py
from abc import ABC, abstractmethod

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient

from app.repositories.role_repo import backend_error


class RepairProcedure(ABC):
    """
    Server-side atomic repair of a user's role + profile pair.

    The procedure guarantees *a* valid role (the default) and a profile row
    in one transaction. It does not know which role the user asked for.
    """

    @abstractmethod
    async def run(self, user_id: str) -> bool: ...


class SupabaseRepairProcedure(RepairProcedure):
    """Calls the `repair_user_entries` Postgres function through RPC."""

    def __init__(self, client: AsyncClient, function_name: str = "repair_user_entries"):
        self.client = client
        self.function_name = function_name

    async def run(self, user_id: str) -> bool:
        try:
            response = await self.client.rpc(
                self.function_name, {"user_id": user_id}
            ).execute()
        except (APIError, httpx.HTTPError) as exc:
            raise backend_error(exc, "Repair procedure") from exc
        return response.data is True
