from __future__ import annotations

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError


class AppError(HTTPException):
    """Base application error."""

    def __init__(self, detail: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(status_code=status_code, detail=detail)


class BadRequestError(AppError):
    def __init__(self, detail: str = "Bad request") -> None:
        super().__init__(detail=detail, status_code=status.HTTP_400_BAD_REQUEST)


class ParleyError(Exception):
    """Base class for client-side errors (store, relay)."""


class StoreUnavailableError(ParleyError):
    """Raised when the message store is used outside its open/close lifecycle."""

    def __init__(self, detail: str = "Message store is not open") -> None:
        super().__init__(detail)
        self.detail = detail


# Failures a store call may raise: a closed store, or the database itself
# (locked, disk full, constraint violations).
STORE_ERRORS: tuple[type[Exception], ...] = (StoreUnavailableError, SQLAlchemyError)


class RelayError(ParleyError):
    """Raised when the relay answers with an error or an unusable body.

    ``status_code`` is the HTTP status returned by the relay (``None`` when the
    failure happened after a successful status line, e.g. a missing body).
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ProviderError(ParleyError):
    """Raised by the relay when the language-model provider rejects a request.

    ``code`` carries the provider's machine-readable error code when present
    (``insufficient_quota``, ``rate_limit_exceeded``...).
    """

    def __init__(self, status_code: int, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code
