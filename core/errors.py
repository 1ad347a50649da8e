"""
core/errors.py -- Error taxonomy shared by the stores, auth/, and api/.

Every error a request can end in is an AppError subclass carrying its HTTP
status, a machine-readable code, and a client-safe message. api/main.py
registers one exception handler for AppError that renders the standard
{"error": {...}} envelope, so route handlers and dependencies simply raise.

Credential failures deliberately share one class per boundary
(InvalidCredentialsError, InvalidAuthenticationTokenError) whatever the root
cause -- unknown email, wrong password, expired token, wrong scope all look
identical to the client.

Layer rule: core/ is the kernel. No imports from api/, auth/, or movies/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "the server encountered a problem and could not process your request"

    def __init__(self, message: str | None = None, detail: str | None = None) -> None:
        if message is not None:
            self.message = message
        self.detail = detail
        super().__init__(self.message)


class BadRequestError(AppError):
    status_code = 400
    code = "bad_request"
    message = "the request body could not be parsed"


class ValidationError(AppError):
    """Input failed domain rules. fields maps each field name to its first error."""

    status_code = 422
    code = "validation_error"
    message = "the request failed validation"

    def __init__(self, fields: dict[str, str], message: str | None = None) -> None:
        super().__init__(message)
        self.fields = dict(fields)


class AuthenticationError(AppError):
    status_code = 401
    code = "unauthorized"
    message = "authentication failed"


class InvalidCredentialsError(AuthenticationError):
    code = "invalid_credentials"
    message = "invalid authentication credentials"


class InvalidAuthenticationTokenError(AuthenticationError):
    code = "invalid_token"
    message = "invalid or missing authentication token"


class AuthenticationRequiredError(AuthenticationError):
    code = "authentication_required"
    message = "you must be authenticated to access this resource"


class AuthorizationError(AppError):
    status_code = 403
    code = "forbidden"
    message = "you are not allowed to access this resource"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    message = "the requested resource could not be found"


class EditConflictError(AppError):
    status_code = 409
    code = "edit_conflict"
    message = "unable to update the record due to an edit conflict, please try again"


class DuplicateEmailError(AppError):
    """Raised by the user store when the email is already taken."""

    status_code = 409
    code = "duplicate_email"
    message = "a user with this email address already exists"


class RateLimitedError(AppError):
    status_code = 429
    code = "rate_limited"
    message = "rate limit exceeded"


class ServerError(AppError):
    """Store or encoding failure. The message never carries internal detail."""
