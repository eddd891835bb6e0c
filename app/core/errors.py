"""
Central error handling for the absence workflow service

Workflow services raise the typed errors below; the FastAPI handlers at the
bottom turn them (and framework errors) into one JSON envelope.
"""
import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi import HTTPException

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """Base class for every error the workflow core reports to callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False

    def __init__(self, detail: str, **context: Any):
        super().__init__(detail)
        self.detail = detail
        self.context: Dict[str, Any] = context

    @property
    def error_type(self) -> str:
        return type(self).__name__


class ConfigurationError(WorkflowError):
    """No valid approver set exists for a stage the request must pass."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ConflictError(WorkflowError):
    """The request changed since it was read; reload and retry."""

    status_code = status.HTTP_409_CONFLICT
    retryable = True


class AuthorizationError(WorkflowError):
    """The actor may not perform this action on this request."""

    status_code = status.HTTP_403_FORBIDDEN


class ValidationError(WorkflowError):
    """Malformed input, rejected before any state is touched."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(WorkflowError):
    """Request does not exist or is outside the actor's scope."""

    status_code = status.HTTP_404_NOT_FOUND


def _envelope(request: Request, status_code: int, detail: Any, **extra: Any) -> Dict[str, Any]:
    content = {
        "error": True,
        "status_code": status_code,
        "detail": detail,
        "path": str(request.url.path),
    }
    content.update(extra)
    return content


async def workflow_exception_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    """
    Handle WorkflowError subclasses

    Adds error_type and retryable so clients can tell a conflict (reload and
    retry) from errors that will never succeed as sent.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(
            request,
            exc.status_code,
            exc.detail,
            error_type=exc.error_type,
            retryable=exc.retryable,
        ),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """
    Handle HTTPException with consistent JSON response format

    Args:
        request: FastAPI request object
        exc: HTTPException instance

    Returns:
        JSONResponse with error details
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(request, exc.status_code, exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle RequestValidationError with consistent JSON response format

    Does not leak internal validation details in production.
    """
    from app.core.config import settings

    if settings.APP_ENV == "prod":
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_envelope(request, 422, "Validation error: Invalid request data"),
        )

    # Sanitize for JSON: e.g. ctx.error ValueError -> str
    errors = []
    for e in exc.errors():
        err = dict(e)
        if "ctx" in err and isinstance(err["ctx"], dict):
            err["ctx"] = {
                k: (str(v) if not isinstance(v, (str, int, float, bool, type(None))) else v)
                for k, v in err["ctx"].items()
            }
        errors.append(err)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_envelope(request, 422, "Validation error", errors=errors),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions with consistent JSON response format

    Does not leak internal error details in production.
    """
    from app.core.config import settings

    logger.error("Unhandled exception: %s", exc, exc_info=True)

    if settings.APP_ENV == "prod":
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_envelope(request, 500, "Internal server error"),
        )

    trace: Optional[str] = traceback.format_exc() if settings.APP_ENV == "local" else None
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope(request, 500, str(exc), traceback=trace),
    )


def _is_missing_schema(err: BaseException) -> bool:
    msg = str(err).lower()
    return "no such table" in msg or "does not exist" in msg


async def operational_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Point operators at the migrations when the workflow tables are missing

    Any other database operational error goes through the generic handler.
    """
    if _is_missing_schema(exc):
        logger.error("Workflow schema missing: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=_envelope(
                request,
                503,
                "Workflow tables are missing. Run: alembic upgrade head",
                error_type="SchemaMissing",
                retryable=False,
            ),
        )
    return await generic_exception_handler(request, exc)
