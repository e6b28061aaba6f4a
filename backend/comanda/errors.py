# Overview: Typed error kinds raised by services and mapped to HTTP status codes at the routes.

"""
Error taxonomy

WHY: Business rules fail at the point of detection with a typed error.
The boundary layer maps kind -> status code without inspecting messages,
so callers can tell "fix your input" from "retry with the same key".

NOT_FOUND covers both "missing" and "belongs to another tenant"; callers
must not be able to tell the two apart.
"""

from __future__ import annotations


class ApiError(Exception):
    """Base class for every error that is safe to show to a client."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ApiError, ValueError):
    """400-level input problem (bad amounts, missing fields, unknown codes)."""

    code = "VALIDATION_ERROR"
    status_code = 400


class UnauthorizedError(ApiError):
    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(ApiError):
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(ApiError):
    """Entity absent or owned by a different tenant (same response for both)."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, *, details: dict | None = None):
        super().__init__(f"{entity} not found", details=details)
        self.entity = entity


class ConflictError(ApiError, ValueError):
    """409-level business rule conflict (cancelled, already paid, duplicate)."""

    code = "CONFLICT"
    status_code = 409


class RetryableError(ApiError):
    """Transient contention persisted after internal retries; resubmit with the same key."""

    code = "RETRYABLE"
    status_code = 503


class InternalError(ApiError):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str = "Internal server error", *, details: dict | None = None):
        super().__init__(message, details=details)
