# app/models/role.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class UserRole(SQLModel, table=True):
    """
    Application role assigned to an authenticated user.

    Identity:
      - user_id: MUST match Supabase auth.users.id (JWT "sub")

    Role:
      - "admin" | "seller" | "delivery" | "customer"

    There should be one row per user. Duplicates are tolerated: readers
    pick the most recently created row (created_at DESC).
    """

    __tablename__ = "user_roles"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )

    user_id: str = Field(
        index=True,
        description="Matches Supabase auth.users.id",
    )

    role: str = Field(
        default="customer",
        index=True,
        description="Application role: admin | seller | delivery | customer",
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )
