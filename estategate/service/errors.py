from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Service-layer failure rendered as an HTTP error envelope.

    ``status_code`` and ``error_code`` are class-level so handlers and
    filters can read them without an instance; the error codes are stable:
    validation_error (400), unauthorized (401), forbidden (403),
    not_found (404), conflict (409), server_error (500).
    """

    status_code: int = 400
    error_code: str = "validation_error"
    default_message: str = "request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    default_message = "invalid request"


class AuthenticationError(ServiceError):
    status_code = 401
    error_code = "unauthorized"
    default_message = "authentication required"


class ForbiddenError(ServiceError):
    status_code = 403
    error_code = "forbidden"
    default_message = "access denied"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"
    default_message = "not found"


class ConflictError(ServiceError):
    status_code = 409
    error_code = "conflict"
    default_message = "conflict"


# Bearer credential errors. Callers treat every one of these as
# "unauthenticated" and never surface which check failed.


class CredentialError(AuthenticationError):
    default_message = "invalid credential"


class MalformedTokenError(CredentialError):
    default_message = "malformed token"


class SignatureInvalidError(CredentialError):
    default_message = "token signature invalid"


class TokenExpiredError(CredentialError):
    """Expired bearer credential or expired security token."""

    default_message = "token expired"


class WeakKeyError(CredentialError):
    """Signing secret is shorter than the algorithm's key size."""

    status_code = 500
    error_code = "server_error"
    default_message = "signing key too short"


# Security token lifecycle


class TokenAlreadyUsedError(ConflictError):
    default_message = "token already used"


class TokenNotFoundError(NotFoundError):
    default_message = "token not found"


# Account workflows


class UserNotFoundError(NotFoundError):
    default_message = "user not found"


class CredentialsIncorrectError(AuthenticationError):
    default_message = "credentials incorrect"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "CredentialError",
    "MalformedTokenError",
    "SignatureInvalidError",
    "TokenExpiredError",
    "WeakKeyError",
    "TokenAlreadyUsedError",
    "TokenNotFoundError",
    "UserNotFoundError",
    "CredentialsIncorrectError",
]
