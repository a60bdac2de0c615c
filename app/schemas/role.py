# app/schemas/role.py
from datetime import datetime, timezone
from typing import Literal

from pydantic import ConfigDict
from sqlmodel import SQLModel, Field

# App-level roles. Anonymous visitors have no session, so no role row.
Role = Literal["admin", "seller", "delivery", "customer"]

VALID_ROLES: tuple[str, ...] = ("admin", "seller", "delivery", "customer")
DEFAULT_ROLE = "customer"


def is_valid_role(value: object) -> bool:
    """True if `value` is one of the four application roles."""
    return isinstance(value, str) and value in VALID_ROLES


class RoleRecord(SQLModel):
    """
    One row of `user_roles` as returned by the role repository.

    `role` is kept as a plain string: rows written by other tools may carry
    values outside the enumeration and readers decide how to treat them.
    """

    user_id: str
    role: str
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


class RoleRead(SQLModel):
    """Response schema for a user's current role."""

    user_id: str
    role: Role
    created_at: datetime


class RoleUpdate(SQLModel):
    """
    Admin-only role update schema.
    """

    model_config = ConfigDict(extra="forbid")
    role: Role
