# app/database.py
from sqlalchemy import text
from sqlmodel import SQLModel, create_engine

from app.core.config import get_settings
from app.models.profile import Profile
from app.models.role import UserRole

settings = get_settings()

# -------- Engine --------
# Startup-only connection: checks the database is reachable and that the
# user_roles / profiles tables exist. Runtime reads and writes go through
# the Supabase REST API, so one pooled connection is enough.

SESSION_TABLES = [UserRole.__table__, Profile.__table__]


def with_ssl_mode(url: str, mode: str = "require") -> str:
    """Append `sslmode` to a Postgres URL unless it already sets one."""
    if "sslmode=" in url:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}sslmode={mode}"


engine = create_engine(
    with_ssl_mode(settings.DATABASE_URL),
    echo=False,
    pool_pre_ping=True,
    pool_size=1,
    max_overflow=0,
)


def create_db_and_tables() -> None:
    """
    Ping the database, then create the role and profile tables if missing.

    The SQL migration remains the source of truth for the enum, the
    repair function and grants; this only covers a bare local database.
    """
    with engine.connect() as conn:
        conn.execute(text("select 1"))
    SQLModel.metadata.create_all(engine, tables=SESSION_TABLES)
