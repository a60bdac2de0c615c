# app/schemas/profile.py
from typing import Any

from sqlmodel import SQLModel


class ProfileRecord(SQLModel):
    """Row of `profiles` as returned by the profile repository."""

    id: str
    name: str | None = None
    email: str | None = None
    question_responses: dict[str, Any] | None = None
