"""Error taxonomy, backend failure classification, and the JSON error envelope.

Every failure leaves the API as ``{"error": {"code", "message", "details"?}}``.
Backend (SQLAlchemy/DBAPI) errors are classified into a small closed set of
categories at the call site and never reach the client raw.
"""

import enum
from typing import Any

import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, NoResultFound, SQLAlchemyError

logger = structlog.get_logger()


class ApiError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL"

    def __init__(self, message: str, details: Any = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return {"error": body}


class ValidationError(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class InvalidCursor(ValidationError):
    """Malformed or tampered pagination token."""


class Unauthenticated(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHENTICATED"


class Forbidden(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class NotFound(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class Conflict(ApiError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class Internal(ApiError):
    """Unexpected backend failure; ``cause`` is for diagnostics only."""

    def __init__(self, message: str, cause: BaseException | str | None = None) -> None:
        super().__init__(message, details={"cause": str(cause)} if cause is not None else None)
        self.cause = cause


class BackendFailure(enum.Enum):
    UNIQUE_VIOLATION = "unique_violation"
    FOREIGN_KEY_VIOLATION = "foreign_key_violation"
    NOT_FOUND = "not_found"
    OTHER = "other"


_SQLSTATE = {
    "23505": BackendFailure.UNIQUE_VIOLATION,
    "23503": BackendFailure.FOREIGN_KEY_VIOLATION,
}

_MESSAGE_MARKERS = (
    ("duplicate key value violates unique constraint", BackendFailure.UNIQUE_VIOLATION),
    ("unique constraint failed", BackendFailure.UNIQUE_VIOLATION),
    ("violates foreign key constraint", BackendFailure.FOREIGN_KEY_VIOLATION),
    ("foreign key constraint failed", BackendFailure.FOREIGN_KEY_VIOLATION),
)


def classify_backend_error(exc: BaseException) -> BackendFailure:
    """Map a SQLAlchemy/DBAPI exception onto a ``BackendFailure`` category."""
    if isinstance(exc, NoResultFound):
        return BackendFailure.NOT_FOUND
    orig = exc.orig if isinstance(exc, DBAPIError) else exc
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _SQLSTATE:
        return _SQLSTATE[sqlstate]
    message = str(orig).lower()
    for marker, failure in _MESSAGE_MARKERS:
        if marker in message:
            return failure
    return BackendFailure.OTHER


def translate_backend_error(
    exc: SQLAlchemyError,
    message: str,
    conflicts: dict[BackendFailure, Conflict] | None = None,
    not_found: NotFound | None = None,
) -> ApiError:
    """Turn a backend exception into the API error the caller should raise."""
    failure = classify_backend_error(exc)
    if conflicts and failure in conflicts:
        return conflicts[failure]
    if failure is BackendFailure.NOT_FOUND and not_found is not None:
        return not_found
    logger.error("backend_error", failure=failure.value, message=message, exc_info=exc)
    return Internal(message, cause=exc.orig if isinstance(exc, DBAPIError) else exc)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("api_error", code=exc.code, message=exc.message, path=request.url.path)
    else:
        logger.info("api_error", code=exc.code, status_code=exc.status_code, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if any(err.get("type") == "json_invalid" for err in errors):
        error = ValidationError("Invalid JSON body.")
    else:
        error = ValidationError("Invalid request.", details=jsonable_encoder(errors, exclude={"ctx", "url"}))
    return await api_error_handler(request, error)


async def unhandled_backend_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    return await api_error_handler(request, translate_backend_error(exc, "Database request failed."))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, unhandled_backend_handler)  # type: ignore[arg-type]
