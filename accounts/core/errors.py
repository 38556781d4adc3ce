"""
Error taxonomy for the accounts core.

Every failure a flow can hit is one of these exceptions. Each carries the
``kind`` it belongs to, the HTTP status it maps to, a stable ``code`` and a
public message. Dependency failures keep the underlying exception on
``__cause__`` for the logs; only the public message reaches the caller.
"""

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    VALIDATION_FAILED = "validation_failed"
    DEPENDENCY_FAILED = "dependency_failed"


class AccountsError(Exception):
    kind = ErrorKind.DEPENDENCY_FAILED
    status_code = 500
    code = "internal_error"
    message = "Something went wrong"

    def __init__(self, message: str | None = None, *, fields: dict[str, str] | None = None):
        self.message = message or self.message
        self.fields = fields or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        out = {"detail": self.message, "code": self.code, "kind": self.kind.value}
        if self.fields:
            out["fields"] = self.fields
        return out


# not found

class NotFound(AccountsError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    code = "not_found"
    message = "Not found"


class AccountNotFound(NotFound):
    code = "account_not_found"
    message = "Account not found"


class UnavailableChallenge(NotFound):
    code = "otp_unavailable"
    message = "Verification request is unavailable"


# conflict

class Conflict(AccountsError):
    kind = ErrorKind.CONFLICT
    status_code = 409
    code = "conflict"
    message = "Conflict"


class AccountExists(Conflict):
    code = "account_exists"
    message = "An account with this email or phone already exists"


class AlreadyVerified(Conflict):
    code = "already_verified"
    message = "Already verified"


# unauthorized

class Unauthorized(AccountsError):
    kind = ErrorKind.UNAUTHORIZED
    status_code = 401
    code = "unauthorized"
    message = "Unauthorized"


class MissingCredentials(Unauthorized):
    code = "missing_credentials"
    message = "Missing required headers"


class InvalidSession(Unauthorized):
    code = "invalid_session"
    message = "Session is invalid or has been signed out"


class IncorrectPassword(Unauthorized):
    code = "incorrect_password"
    message = "Incorrect password"


class InvalidCode(Unauthorized):
    code = "invalid_otp"
    message = "Invalid verification code"


class NotVerified(Unauthorized):
    status_code = 403
    code = "not_verified"
    message = "Account verification required"


# validation

class ValidationFailed(AccountsError):
    kind = ErrorKind.VALIDATION_FAILED
    status_code = 422
    code = "validation_failed"
    message = "Validation failed"


class ForbiddenFields(ValidationFailed):
    status_code = 400
    code = "forbidden_fields"
    message = "These fields cannot be updated"

    def __init__(self, keys):
        keys = sorted(keys)
        super().__init__(
            f"These fields cannot be updated: {', '.join(keys)}",
            fields={key: "not allowed" for key in keys},
        )
        self.keys = keys


# dependency

class DependencyFailed(AccountsError):
    kind = ErrorKind.DEPENDENCY_FAILED
    status_code = 500
    code = "dependency_failed"
    message = "Service unavailable, please try again"


class LookupFailed(DependencyFailed):
    code = "lookup_failed"
    message = "Couldn't load the requested record"


class SaveFailed(DependencyFailed):
    code = "save_failed"
    message = "Couldn't save your changes"


class GenerationFailed(DependencyFailed):
    code = "otp_generation_failed"
    message = "Couldn't generate a verification code"


class SessionCreationFailed(DependencyFailed):
    code = "session_creation_failed"
    message = "Couldn't sign you in"


class ClientCreationFailed(SessionCreationFailed):
    code = "client_creation_failed"
    message = "Account could not be created"


class PasswordCompareFailed(DependencyFailed):
    code = "password_compare_failed"
    message = "Couldn't check your password"


class DeliveryError(DependencyFailed):
    status_code = 502
    code = "delivery_failed"
    message = "Message delivery failed"


class OtpSendFailed(DeliveryError):
    code = "otp_send_failed"
    message = "Couldn't send the verification code"
