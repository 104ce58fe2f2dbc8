"""
Custom Exception Classes for the Gallery API.

This module defines the exception hierarchy used throughout the Gallery API.
Every failure that can reach an HTTP caller is expressed as a subclass of
`GalleryAPIException`, so the error handlers can translate it into the
uniform `{"error": ..., "code": ...}` response body.

Key Components:
- `GalleryAPIException`: The base class. Carries a human-readable message, a
  stable `error_code` and an optional `details` dictionary.
- Specific Exception Classes: `AuthenticationError`, `ValidationError`,
  `ItemNotFoundError` and `DatabaseQueryError` cover the error taxonomy of the
  application (unauthenticated writes, rejected input, unknown items and
  storage/query failures).
- `to_http_exception`: Maps an application exception to FastAPI's
  `HTTPException` using the error code.

Architectural Design:
- The HTTP status lives next to the error code in a single map, so handlers
  and middleware never hard-code status numbers.
- "Empty result" is never an exception; an empty page is a normal response.
"""

from typing import Optional, Dict, Any
from fastapi import HTTPException


class GalleryAPIException(Exception):
    """Base exception class for Gallery API"""

    def __init__(
        self,
        message: str,
        error_code: str = "GALLERY_API_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_CODE_MAP.get(self.error_code, 500)


class AuthenticationError(GalleryAPIException):
    """Raised when a request requires a signed-in caller"""

    def __init__(self, reason: str):
        super().__init__(
            f"Authentication failed: {reason}",
            "AUTHENTICATION_ERROR",
            {"reason": reason},
        )


class ValidationError(GalleryAPIException):
    """Raised when input validation fails"""

    def __init__(self, field: str, value: Any, reason: str):
        # Data URIs can be megabytes long
        shown = str(value)
        if len(shown) > 100:
            shown = shown[:100] + "..."
        super().__init__(
            f"Validation failed for field '{field}': {reason}",
            "VALIDATION_ERROR",
            {"field": field, "value": shown, "reason": reason},
        )


class ItemNotFoundError(GalleryAPIException):
    """Raised when a gallery item does not exist or is not public"""

    def __init__(self, item_id: str):
        super().__init__(
            f"Gallery item not found: {item_id}",
            "ITEM_NOT_FOUND",
            {"item_id": item_id},
        )


class DatabaseQueryError(GalleryAPIException):
    """Raised when a database query or write fails"""

    def __init__(self, operation: str, reason: str):
        super().__init__(
            f"Database operation '{operation}' failed: {reason}",
            "DATABASE_ERROR",
            {"operation": operation, "reason": reason},
        )


STATUS_CODE_MAP = {
    "VALIDATION_ERROR": 400,
    "AUTHENTICATION_ERROR": 401,
    "ITEM_NOT_FOUND": 404,
    "DATABASE_ERROR": 500,
}


def to_http_exception(exc: GalleryAPIException) -> HTTPException:
    """Convert GalleryAPIException to FastAPI HTTPException"""
    return HTTPException(
        status_code=exc.status_code,
        detail={
            "error": exc.message,
            "code": exc.error_code,
            "details": exc.details,
        },
    )
