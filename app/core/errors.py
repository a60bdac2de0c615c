# app/core/errors.py
"""
Error types raised by the repository adapters.

The session core never lets these escape: each operation catches them at
its boundary and reports failure through a None/False result or through the
reconciliation state. Services in front of HTTP routes map them to
HTTPException.
"""
from fastapi import HTTPException, status

# PostgREST code for "query returned no rows" (single / maybe_single)
NOT_FOUND_CODE = "PGRST116"


class BackendError(Exception):
    """A read or write against the hosted backend failed."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        if self.code:
            return f"{self.message} ({self.code})"
        return self.message


class RecordNotFoundError(BackendError):
    """Expected absence: the role or profile row does not exist."""

    def __init__(self, message: str = "Record not found"):
        super().__init__(message, code=NOT_FOUND_CODE)


class AuthenticationError(BackendError):
    """Bad credentials or an invalid / expired token."""


def to_http_exception(exc: BackendError) -> HTTPException:
    """Map a backend error to the HTTP error returned by the API."""
    if isinstance(exc, AuthenticationError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
        )
    if isinstance(exc, RecordNotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=exc.message,
        )
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="Upstream service error",
    )
