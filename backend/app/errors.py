"""Application error taxonomy.

Services raise these; routers turn them into ``HTTPException`` with
:func:`to_http_exception`. The chat socket never surfaces them to the
sender; inbound frame failures are logged and dropped instead.
"""
from fastapi import HTTPException, status


class AppError(Exception):
    """Base class for errors with a matching HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class Unauthorized(AppError):
    """Missing, malformed or expired credentials."""
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class StorageError(AppError):
    """Persistence or object-storage failure."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "STORAGE_ERROR"


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


def to_http_exception(exc: AppError) -> HTTPException:
    """Render an :class:`AppError` as the JSON error body the API returns."""
    headers = None
    if isinstance(exc, Unauthorized):
        headers = {"WWW-Authenticate": "Bearer"}
    return HTTPException(
        status_code=exc.status_code,
        detail={"code": exc.code, "message": exc.message},
        headers=headers,
    )
