"""
Service Errors

Domain error taxonomy shared by services and the HTTP layer.

Each error carries the HTTP status it maps to:
- ValidationError (400): rejected before touching the store or cache
- AuthenticationRequiredError (401)
- PermissionDeniedError (403)
- NotFoundError (404)
- ConflictError (409): duplicate post, already-resolved report
- StoreUnavailableError (503): retryable, carries a Retry-After hint

Raised inside a transaction they roll it back and propagate to the caller.
"""

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "message": self.message,
            "error": self.error_code,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ServiceError):
    status_code = 400
    error_code = "validation_error"


class AuthenticationRequiredError(ServiceError):
    status_code = 401
    error_code = "authentication_required"


class PermissionDeniedError(ServiceError):
    status_code = 403
    error_code = "permission_denied"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    status_code = 409
    error_code = "conflict"


class StoreUnavailableError(ServiceError):
    """The relational store could not be reached. Safe to retry."""

    status_code = 503
    error_code = "store_unavailable"

    def __init__(
        self,
        message: str = "Database temporarily unavailable",
        retry_after: int = 5,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.retry_after = retry_after
