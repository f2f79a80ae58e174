"""Application exceptions and the handlers that render them.

Every error leaves the API in the same envelope:

    {
        "error": {
            "code": "ERROR_CODE",
            "message": "Human-readable error message",
            "details": {...}  // Optional additional details
        }
    }
"""

import logging
import traceback
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class MedStintException(Exception):
    """Base exception for MedStint application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


# ── Onboarding error taxonomy ───────────────────────────────

class StepValidationError(MedStintException):
    """Submitted step data failed validation.  Carries every field error."""

    def __init__(self, field_errors: dict[str, str], session=None):
        self.field_errors = field_errors
        self.session = session
        super().__init__(
            message="Submitted data is invalid",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_FAILED",
            details={"field_errors": field_errors},
        )


class SessionExpiredError(MedStintException):
    """The session passed its expiry; `session` is the replacement."""

    def __init__(self, expired_session_id: str, session=None):
        self.expired_session_id = expired_session_id
        self.session = session
        details = {"expired_session_id": expired_session_id}
        if session is not None:
            details.update(
                session_id=session.session_id,
                current_step=session.current_step.value,
                expires_at=session.expires_at.isoformat(),
            )
        super().__init__(
            message="Onboarding session expired; progress was reset",
            status_code=status.HTTP_410_GONE,
            error_code="SESSION_EXPIRED",
            details=details,
        )


class SessionNotFoundError(MedStintException):
    def __init__(self, session_id: str):
        super().__init__(
            message=f"Onboarding session not found: {session_id}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="SESSION_NOT_FOUND",
        )


class DependencyViolationError(MedStintException):
    """A step was submitted out of order or outside the role's flow."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="DEPENDENCY_VIOLATION",
            details={"missing_steps": missing} if missing else None,
        )


class VersionConflictError(MedStintException):
    def __init__(self, expected: int, actual: int):
        super().__init__(
            message="Session was modified elsewhere; reload and retry",
            status_code=status.HTTP_409_CONFLICT,
            error_code="VERSION_CONFLICT",
            details={"expected_version": expected, "current_version": actual},
        )


class PersistenceError(MedStintException):
    """Session store unavailable.  Safe to retry: submissions are idempotent."""

    def __init__(self, message: str = "Onboarding storage temporarily unavailable"):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="PERSISTENCE_UNAVAILABLE",
            details={"retryable": True},
        )


class CollaboratorError(MedStintException):
    """Principal or billing update failed during finalization."""

    def __init__(self, message: str, collaborator: str = "unknown", session_id: str | None = None):
        self.collaborator = collaborator
        details = {"collaborator": collaborator, "retryable": True}
        if session_id:
            details["session_id"] = session_id
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="COMPLETION_FAILED",
            details=details,
        )


class CompletionInProgressError(MedStintException):
    def __init__(self, session_id: str):
        super().__init__(
            message="Completion is already in progress for this session",
            status_code=status.HTTP_409_CONFLICT,
            error_code="COMPLETION_IN_PROGRESS",
            details={"session_id": session_id, "retryable": True},
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    """Create standardized error response."""
    content = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if details:
        content["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content,
    )


async def medstint_exception_handler(
    request: Request,
    exc: MedStintException,
) -> JSONResponse:
    """Handle custom MedStint exceptions."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "MedStint exception: %s - %s",
        exc.error_code,
        exc.message,
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    if exc.status_code >= 500:
        logger.error(
            "HTTP %s: %s",
            exc.status_code,
            exc.detail,
            extra={
                "path": request.url.path,
                "method": request.method,
            },
        )

    response = create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
    )
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Handle malformed request bodies (not step data, see StepValidationError)."""
    logger.warning(
        "Validation error on %s",
        request.url.path,
        extra={
            "path": request.url.path,
            "method": request.method,
            "errors": exc.errors(),
        },
    )

    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


async def database_exception_handler(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Handle database integrity errors (unique violations, foreign key, etc.)."""
    logger.error(
        "Database integrity error on %s: %s",
        request.url.path,
        exc,
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    error_msg = str(exc.orig) if hasattr(exc, "orig") else str(exc)

    if "unique" in error_msg.lower():
        message = "A record with this value already exists"
        error_code = "DUPLICATE_RECORD"
    elif "foreign key" in error_msg.lower():
        message = "Referenced record does not exist"
        error_code = "FOREIGN_KEY_VIOLATION"
    else:
        message = "Database constraint violation"
        error_code = "INTEGRITY_ERROR"

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message=message,
        error_code=error_code,
    )


async def operational_exception_handler(
    request: Request,
    exc: OperationalError,
) -> JSONResponse:
    """Handle database operational errors (connection issues, etc.)."""
    logger.error(
        "Database operational error on %s: %s",
        request.url.path,
        exc,
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    logger.error(
        "Unhandled exception on %s: %s",
        request.url.path,
        exc,
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
        exc_info=True,
    )

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(MedStintException, medstint_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
