"""Request middleware: request ids, access logging, body size limits and CORS."""

import logging
import time
import uuid
from typing import Any, Callable, Dict

from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tenant_gateway.infra.config import config

logger = logging.getLogger("tenant_gateway.request")

# Probe endpoints are logged at DEBUG to keep access logs readable
QUIET_PATHS = frozenset({"/health", "/health/live", "/health/ready", "/metrics"})

DEFAULT_MAX_REQUEST_BYTES = 1024 * 1024  # 1MB


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach an X-Request-ID to the request state and the response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def _request_extra(request: Request) -> Dict[str, Any]:
    # Path only: OAuth callbacks carry tokens in the query string
    return {
        "request_id": getattr(request.state, "request_id", "unknown"),
        "method": request.method,
        "path": request.url.path,
    }


def _elapsed_ms(start_time: float) -> int:
    return int((time.time() - start_time) * 1000)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log request start, completion and failure with durations."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        extra = _request_extra(request)
        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO

        start_time = time.time()
        logger.log(
            level,
            "Request started",
            extra={**extra, "client": request.client.host if request.client else None},
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={**extra, "error": str(e), "duration_ms": _elapsed_ms(start_time)},
                exc_info=True,
            )
            raise

        duration_ms = _elapsed_ms(start_time)
        logger.log(
            level,
            "Request completed",
            extra={**extra, "status_code": response.status_code, "duration_ms": duration_ms},
        )
        response.headers["X-Response-Time-Ms"] = str(duration_ms)
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject bodies whose declared Content-Length exceeds `max_bytes` with 413."""

    def __init__(self, app, max_bytes: int = DEFAULT_MAX_REQUEST_BYTES):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_bytes:
            logger.warning(
                "Request body too large",
                extra={**_request_extra(request), "content_length": int(content_length)},
            )
            return JSONResponse(
                status_code=413,
                content={"error": f"Request too large. Maximum size: {self.max_bytes} bytes"},
            )
        return await call_next(request)


def setup_cors(app):
    """
    Allow the dashboard origin to call the API with credentials.

    CORS_ORIGINS overrides the default of APP_URL; wildcards are dropped in
    production.
    """
    allowed_origins = list(config.CORS_ORIGINS) or [config.APP_URL]
    if config.APP_ENV == "production":
        allowed_origins = [origin for origin in allowed_origins if origin != "*"]
        allowed_methods = ["GET", "POST", "PATCH", "DELETE", "OPTIONS"]
        allowed_headers = ["Content-Type", "Authorization", "X-Profile-Id", "X-Request-ID"]
    else:
        allowed_methods = ["*"]
        allowed_headers = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=allowed_methods,
        allow_headers=allowed_headers,
        expose_headers=[
            "X-Request-ID",
            "X-Response-Time-Ms",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )
