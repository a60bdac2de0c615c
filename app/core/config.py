# app/core/config.py
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application settings loaded from environment.

    Required env vars (.env):
      - SUPABASE_URL
      - SUPABASE_KEY (anon key)
      - DATABASE_URL (Supabase Postgres connection string)
      - SUPABASE_JWT_SECRET (JWT signing secret from Supabase project settings)

    Optional:
      - SUPABASE_SERVICE_ROLE_KEY (only used for admin Supabase client)
      - ROLE_FETCH_* (role resolution retry policy)
      - AUTH_REDIRECT_URL (link target for confirmation / reset emails)
    """

    PROJECT_NAME: str = "Storefront Session Service"
    API_V1_STR: str = "/api/v1"

    # Supabase / DB config
    SUPABASE_URL: str
    SUPABASE_KEY: str
    DATABASE_URL: str

    # JWT verification (backend-side)
    SUPABASE_JWT_SECRET: str
    SUPABASE_JWT_ALG: str = "HS256"

    # Service role key bypasses RLS (backend only)
    SUPABASE_SERVICE_ROLE_KEY: str | None = None

    # Role resolution retry policy:
    #   delay = min(BASE * 2 ** attempts, MAX), stop after MAX_ATTEMPTS failures
    ROLE_FETCH_MAX_ATTEMPTS: int = 3
    ROLE_FETCH_BASE_DELAY: float = 1.0
    ROLE_FETCH_MAX_DELAY: float = 8.0

    # Server-side atomic repair function (see migrations/001_user_roles.sql)
    REPAIR_RPC_NAME: str = "repair_user_entries"

    AUTH_REDIRECT_URL: str | None = None

    # create_all for user_roles / profiles on startup (local databases)
    CREATE_TABLES_ON_STARTUP: bool = True

    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader.
    Ensures we don't re-parse .env on every import / request.
    """
    return Settings()
