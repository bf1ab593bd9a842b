"""
Error taxonomy shared by the repositories, the task engine and the routes.

Each error carries the HTTP status it maps to so the boundary handler in
``coursetasks.middleware.error_handler`` can render the response envelope
without a lookup table.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class AppError(Exception):
    status_code: int = 500
    default_message: str = "Server error"

    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class UnauthorizedError(AppError):
    status_code = 401
    default_message = "Not authorized"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Forbidden"

    def __init__(self, message: Optional[str] = None, *, reason: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.reason = reason
        if reason:
            self.details.setdefault("reason", reason)


class NotAvailableError(ForbiddenError):
    """Raised when a learner opens a task whose availability forbids it."""

    default_message = "Task is not available"

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or f"Task is not available ({reason})", reason=reason)


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict"


class UnexpectedError(AppError):
    status_code = 500
    default_message = "Server error"


class ConditionFailedError(Exception):
    """A conditional write was rejected by the store."""
