"""
core/errors.py -- Domain error taxonomy.

Every anticipated failure in Forsetti is one of the classes below. Each class
fixes its HTTP status and a stable machine-readable code, so the API layer
renders all of them through a single exception handler. Anything that is not
an AppError is, by definition, unexpected and becomes a generic 500.

Layer rule: core/ is the kernel. No imports from other project packages.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for anticipated domain failures."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(AppError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class TokenInvalid(AppError):
    status_code = 400
    code = "token_invalid"
    default_message = "Token is invalid."


class TokenExpired(AppError):
    status_code = 400
    code = "token_expired"
    default_message = "Token has expired."


class TokenAlreadyUsed(AppError):
    status_code = 409
    code = "token_already_used"
    default_message = "Token has already been used."


class InvalidCredentials(AppError):
    status_code = 400
    code = "invalid_credentials"
    default_message = "Invalid Credentials"


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"
    default_message = "Request validation failed."


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "You are not allowed to perform this action."


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class ParentNotFound(NotFound):
    code = "parent_not_found"
    default_message = "The comment you are replying to does not exist."


class Conflict(AppError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists."
