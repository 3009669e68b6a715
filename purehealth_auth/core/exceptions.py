"""
Passkey error taxonomy.

Every failure the ceremony engine can report is a PasskeyError subclass with
a stable error code and an HTTP status. The global exception handler in
``purehealth_auth.main`` turns them into ErrorResponse bodies.
"""

from typing import Any


class PasskeyError(Exception):
    """Base class for passkey registration/authentication failures."""

    error = "passkey_error"
    status_code = 400
    default_message = "Passkey operation failed"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(PasskeyError):
    """Malformed input. Recoverable by correcting the request."""

    error = "validation_error"
    status_code = 422
    default_message = "Validation failed"


class EmailAlreadyRegistered(ValidationError):
    error = "email_already_registered"
    status_code = 409
    default_message = "User with this email already exists"


class NotFoundError(PasskeyError):
    error = "not_found"
    status_code = 404
    default_message = "Resource not found"


class UserNotFound(NotFoundError):
    error = "user_not_found"
    default_message = "User not found"


class CredentialNotFound(NotFoundError):
    error = "credential_not_found"
    default_message = "Passkey not found"


class ChallengeExpiredOrMissing(PasskeyError):
    """The challenge was never issued, already used, or expired.

    The caller must restart the ceremony from options generation.
    """

    error = "challenge_expired_or_missing"
    default_message = "Challenge not found or expired. Please start again."


class DuplicateCredential(PasskeyError):
    error = "duplicate_credential"
    status_code = 409
    default_message = "This passkey is already registered"


class VerificationFailed(PasskeyError):
    """The authenticator response failed WebAuthn verification."""

    error = "verification_failed"
    default_message = "Passkey verification failed"


class PossibleCloneDetected(PasskeyError):
    """Signature counter did not advance. Must never be retried automatically."""

    error = "possible_clone_detected"
    status_code = 401
    default_message = "Passkey signature counter did not increase"


class LastCredential(PasskeyError):
    error = "last_credential"
    status_code = 409
    default_message = "Cannot remove the only passkey on this account"


class AuthenticationFailed(PasskeyError):
    """Generic login failure that does not say which check failed."""

    error = "authentication_failed"
    status_code = 401
    default_message = "Authentication failed"
