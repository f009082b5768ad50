"""Error taxonomy and HTTP error rendering."""

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Wire-level error codes used in rich error bodies."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    BAD_GATEWAY = "BAD_GATEWAY"


class ApiError(Exception):
    """
    Base class for errors that map onto an HTTP response.

    `simple=True` renders `{"error": message}`; otherwise the rich shape
    `{"error": {"code", "message", "details", "requestId"}}` is used.
    """
    status_code: int = 500
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        simple: bool = False,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.details = details
        self.simple = simple
        self.headers = headers
        super().__init__(message)


class ValidationFailed(ApiError):
    """Malformed request: bad body, missing token, unsupported platform."""
    status_code = 400
    code = ErrorCode.VALIDATION_ERROR


class Unauthenticated(ApiError):
    status_code = 401
    code = ErrorCode.UNAUTHORIZED


class AccessDenied(ApiError):
    """Authenticated but not allowed (subscription, override, admin)."""
    status_code = 403
    code = ErrorCode.FORBIDDEN


class NotFound(ApiError):
    status_code = 404
    code = ErrorCode.NOT_FOUND


class Conflict(ApiError):
    status_code = 409
    code = ErrorCode.CONFLICT


class RateLimited(ApiError):
    """Fixed-window limit reached; retriable once `reset_at` has passed."""
    status_code = 429
    code = ErrorCode.RATE_LIMITED

    def __init__(self, reset_at: datetime, headers: Optional[Dict[str, str]] = None):
        self.reset_at = reset_at
        super().__init__(
            f"Rate limit exceeded. Resets at {reset_at.isoformat()}",
            details={"resetAt": reset_at.isoformat()},
            headers=headers,
        )


class UpstreamFailure(ApiError):
    """An upstream connector call failed; never retried."""
    status_code = 502
    code = ErrorCode.BAD_GATEWAY


class AdminRedirect(Exception):
    """Raised by page gates; rendered as a 303 to `location` instead of an error body."""

    def __init__(self, location: str):
        self.location = location
        super().__init__(location)


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def render_error(request: Request, exc: ApiError) -> JSONResponse:
    """Render an ApiError into its JSON response."""
    request_id = get_request_id(request)
    log_extra = {
        "request_id": request_id,
        "code": exc.code.value,
        "status_code": exc.status_code,
        "path": request.url.path,
    }
    if exc.status_code >= 500:
        logger.error(exc.message, extra=log_extra)
    else:
        logger.warning(exc.message, extra=log_extra)

    if exc.simple:
        content: Dict[str, Any] = {"error": exc.message}
    else:
        body: Dict[str, Any] = {
            "code": exc.code.value,
            "message": exc.message,
            "requestId": request_id,
        }
        if exc.details:
            body["details"] = exc.details
        content = {"error": body}

    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=exc.headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    """Install exception handlers on the application."""

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return render_error(request, exc)

    @app.exception_handler(AdminRedirect)
    async def admin_redirect_handler(request: Request, exc: AdminRedirect):
        return RedirectResponse(exc.location, status_code=303)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors."""
        return render_error(
            request,
            ValidationFailed(
                "Invalid request",
                details={"errors": jsonable_errors(exc)},
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions raised by the framework (404 routes, 405, ...)."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other exceptions without leaking internals."""
        request_id = get_request_id(request)
        logger.error(
            f"Unhandled exception: {exc}",
            exc_info=exc,
            extra={"request_id": request_id, "path": request.url.path},
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": ErrorCode.INTERNAL_ERROR.value,
                    "message": "Internal server error",
                    "requestId": request_id,
                }
            },
        )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Strip non-serializable context from pydantic error entries."""
    return [
        {
            "loc": list(error.get("loc", ())),
            "msg": error.get("msg"),
            "type": error.get("type"),
        }
        for error in exc.errors()
    ]
