"""
Application Middleware and Error Handlers for the Gallery API.

Cross-cutting request processing. Every response leaves through this module,
which is where correlation IDs, timing, security and caching headers and the
uniform error body are applied.

Key Middleware Components:
- `CorrelationMiddleware`: Assigns or propagates `X-Correlation-ID`.
- `ErrorHandlingMiddleware`: Last-resort handler turning unexpected exceptions
  into a 500 JSON error body.
- `PerformanceMiddleware`: Logs each request, records it in the metrics
  collector and sets `X-Process-Time`.
- `SecurityHeadersMiddleware`: Standard hardening headers.
- `RequestValidationMiddleware`: Rejects oversized bodies and unsupported
  content types before routing.
- `CacheControlMiddleware`: Marks API responses as never cacheable by
  intermediaries.

Exception handlers (`register_exception_handlers`) translate
`GalleryAPIException` and `HTTPException` into the same body shape:
`{"error": "<message>", "code": "<CODE>", "correlation_id": "..."}`.
"""

import time
import uuid
from datetime import datetime
from typing import Callable, Optional
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .logging_config import set_correlation_id, get_logger
from .exceptions import GalleryAPIException
from .performance import get_metrics_collector, RequestMetrics

logger = get_logger("core.middleware")

NO_CACHE_PREFIXES = ("/gallery", "/names", "/generate", "/guesses", "/me")


def create_error_response(
    message: str,
    code: str,
    status_code: int,
    correlation_id: Optional[str] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    """Create standardized error response"""
    content = {"error": message, "code": code}
    if correlation_id:
        content["correlation_id"] = correlation_id
    return JSONResponse(status_code=status_code, content=content, headers=headers)


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation IDs to requests"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = (
            request.headers.get("X-Correlation-ID")
            or request.headers.get("X-Request-ID")
            or str(uuid.uuid4())
        )

        set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware converting unexpected exceptions into 500 responses"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(
                f"Unexpected error: {str(e)}",
                extra={
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                },
                exc_info=True,
            )
            return create_error_response(
                "Internal server error",
                "INTERNAL_ERROR",
                500,
                getattr(request.state, "correlation_id", None),
            )


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Middleware for performance monitoring and logging"""

    def __init__(self, app: ASGIApp, slow_request_seconds: float = 1.0):
        super().__init__(app)
        self.slow_request_seconds = slow_request_seconds

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        logger.info(
            f"Request started: {request.method} {request.url.path}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "query_params": dict(request.query_params),
                "client_ip": request.client.host if request.client else None,
            },
        )

        response = await call_next(request)

        process_time = time.time() - start_time
        process_time_ms = round(process_time * 1000, 2)
        response.headers["X-Process-Time"] = str(process_time_ms)

        get_metrics_collector().record_request(
            RequestMetrics(
                endpoint=request.url.path,
                method=request.method,
                status_code=response.status_code,
                duration_ms=process_time_ms,
                timestamp=datetime.utcnow(),
            )
        )

        logger.info(
            f"Request completed: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "status_code": response.status_code,
                "process_time_ms": process_time_ms,
            },
        )

        if process_time > self.slow_request_seconds:
            logger.warning(
                f"Slow request detected: {request.method} {request.url.path}",
                extra={"process_time_ms": process_time_ms, "threshold_exceeded": True},
            )

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware adding standard security headers"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


class RequestValidationMiddleware(BaseHTTPMiddleware):
    """Middleware for request size and content type checks"""

    ALLOWED_CONTENT_TYPES = ("application/json",)

    def __init__(self, app: ASGIApp, max_request_size: int = 10 * 1024 * 1024):
        super().__init__(app)
        self.max_request_size = max_request_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = getattr(request.state, "correlation_id", None)

        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_request_size:
            logger.warning(
                f"Request too large: {content_length} bytes",
                extra={"max_size": self.max_request_size, "path": request.url.path},
            )
            return create_error_response(
                f"Request size exceeds maximum allowed size of {self.max_request_size} bytes",
                "REQUEST_TOO_LARGE",
                413,
                correlation_id,
            )

        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if not any(allowed in content_type for allowed in self.ALLOWED_CONTENT_TYPES):
                logger.warning(
                    f"Invalid content type: {content_type}",
                    extra={"path": request.url.path, "method": request.method},
                )
                return create_error_response(
                    f"Content type '{content_type}' is not supported",
                    "INVALID_CONTENT_TYPE",
                    415,
                    correlation_id,
                )

        return await call_next(request)


class CacheControlMiddleware(BaseHTTPMiddleware):
    """Middleware forbidding intermediary caching of API responses"""

    def __init__(self, app: ASGIApp, prefixes=NO_CACHE_PREFIXES):
        super().__init__(app)
        self.prefixes = tuple(prefixes)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        if request.url.path.startswith(self.prefixes):
            response.headers["Cache-Control"] = "no-store, must-revalidate"
        return response


async def gallery_exception_handler(request: Request, exc: GalleryAPIException):
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"Application error: {exc.message}",
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return create_error_response(
        exc.message,
        exc.error_code,
        exc.status_code,
        getattr(request.state, "correlation_id", None),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(
        f"HTTP exception: {exc.status_code} - {exc.detail}",
        extra={"path": request.url.path, "method": request.method},
    )
    return create_error_response(
        str(exc.detail),
        f"HTTP_{exc.status_code}",
        exc.status_code,
        getattr(request.state, "correlation_id", None),
        headers=getattr(exc, "headers", None),
    )


def register_exception_handlers(app: FastAPI):
    """Attach the application's exception handlers"""
    app.add_exception_handler(GalleryAPIException, gallery_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
