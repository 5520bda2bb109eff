"""
Specialist Marketplace Backend — Custom Exception Hierarchy
============================================================

What:  Application-specific exceptions for the different error scenarios.
Why:   Services raise typed errors; global handlers (main.py) turn them into
       the `{status, message}` envelope with the right HTTP status code.
How:   Each exception carries a user-facing message and an optional context
       dict that is logged but never returned to the client.

Exception Hierarchy:
    MarketplaceError (base)
    ├── ValidationError            → 400 Bad Request (client can fix)
    ├── ConflictError              → 400 Bad Request (slug taken by a concurrent write)
    ├── NotFoundError              → 404 Not Found
    ├── DatabaseError              → 500 Internal Server Error
    ├── StorageConfigurationError  → 500 Internal Server Error
    ├── StorageServiceError        → 503 Service Unavailable (retry later)
    └── CircuitBreakerOpenError    → 503 Service Unavailable (circuit open)
"""

from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    status_code = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(MarketplaceError):
    """
    Raised when client input fails validation.

    When:    Missing title, non-numeric price, malformed `data` JSON,
             unsupported image type, too many files.
    HTTP:    400 Bad Request
    """

    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class ConflictError(MarketplaceError):
    """
    Raised when the storage layer rejects a write on a uniqueness constraint.

    When:    Two requests derived the same slug, both passed the existence
             check, and the second insert hit the unique index.
    HTTP:    400 Bad Request. The client should simply retry; the retry
             will see the committed row and pick the next suffix.
    """

    status_code = 400

    def __init__(
        self,
        message: str = "The listing conflicts with an existing one. Please retry.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(MarketplaceError):
    """
    Raised when a requested resource does not exist (or was soft-deleted).

    HTTP:    404 Not Found
    """

    status_code = 404

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"{resource.capitalize()} not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class DatabaseError(MarketplaceError):
    """
    Raised when database operations fail unexpectedly.

    HTTP:    500 Internal Server Error

    Security Note:
        The message returned to the client is always generic. The original
        exception type is kept in `context` and logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class StorageConfigurationError(MarketplaceError):
    """
    Raised when an operation needs the media storage provider but it is not
    configured (e.g. signing a direct upload without Cloudinary credentials).

    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "Cloudinary is not configured",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class StorageServiceError(MarketplaceError):
    """
    Raised when the media storage provider fails after all retries,
    or a local file write fails.

    HTTP:    503 Service Unavailable
    """

    status_code = 503

    def __init__(
        self,
        message: str = "Image storage is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(MarketplaceError):
    """
    Raised when the storage circuit breaker is OPEN.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all calls for M seconds)
        → After M seconds → HALF-OPEN (allow one test call)
        → If test succeeds → CLOSED; if it fails → OPEN again

    HTTP:    503 Service Unavailable
    """

    status_code = 503

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Image storage is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time
