# app/models/profile.py
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field


class Profile(SQLModel, table=True):
    """
    Persistent profile row, keyed by the Supabase auth user id.

    Only existence matters to the session layer. The remaining columns are
    owned by the profile-editing screens (contact info, preferences and the
    role-specific questions answered at registration).
    """

    __tablename__ = "profiles"

    id: str = Field(
        primary_key=True,
        description="Matches Supabase auth.users.id",
    )

    name: str | None = Field(default=None, max_length=200)
    email: str | None = Field(default=None, index=True)
    phone: str | None = Field(default=None, max_length=50)
    address: str | None = Field(default=None)

    question_responses: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON),
        description="Answers to role-specific registration questions",
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
