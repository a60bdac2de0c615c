# app/core/supabase_client.py
from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from app.core.config import get_settings

settings = get_settings()

# Async clients are created lazily on first use (inside the running loop)
# and reused for the lifetime of the process.
_clients: dict[str, AsyncClient] = {}


async def supabase_public() -> AsyncClient:
    """
    Return the Supabase client built with the anon/public key.

    Use cases:
      - auth (sign in / sign up / session events) for the service session
      - role / profile access for the service session itself

    Note: This client still respects RLS.
    """
    if "public" not in _clients:
        _clients["public"] = await acreate_client(
            settings.SUPABASE_URL, settings.SUPABASE_KEY
        )
    return _clients["public"]


async def supabase_admin() -> AsyncClient:
    """
    Return the Supabase client built with the service role key.

    Use cases:
      - admin role management on behalf of other users
      - any operation that needs to bypass RLS

    WARNING:
      - Never expose service role key to frontend.
      - Only backend should call this.

    Raises:
        RuntimeError: if SUPABASE_SERVICE_ROLE_KEY is not set.
    """
    if not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("Missing SUPABASE_SERVICE_ROLE_KEY in .env")
    if "admin" not in _clients:
        _clients["admin"] = await acreate_client(
            settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY
        )
    return _clients["admin"]


async def supabase_for_token(access_token: str | None) -> AsyncClient:
    """
    Return a fresh client whose PostgREST calls carry `access_token`.

    Use cases:
      - role / profile reads and writes on behalf of one API caller,
        so RLS sees the caller and not the service session
      - registration writes for a new account (anon key when the sign-up
        returned no session yet)

    Never cached: the shared public client follows whoever signed in
    last, this one is bound to a single token.
    """
    if not access_token:
        return await acreate_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    return await acreate_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_KEY,
        options=AsyncClientOptions(
            headers={"Authorization": f"Bearer {access_token}"},
            auto_refresh_token=False,
            persist_session=False,
        ),
    )
