"""
Local ceremony contract and error kinds.

The orchestrator drives an ``Authenticator``: a browser bridge calling
navigator.credentials.create()/get(), or a software authenticator in tests.
Authenticators report failures as ``AuthenticatorError`` carrying the
DOMException name the platform raised.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


class ErrorKind(str, Enum):
    """Why a ceremony did not succeed."""

    USER_CANCELLED = "user_cancelled"
    NOT_ALLOWED_OR_TIMED_OUT = "not_allowed_or_timed_out"
    INVALID_STATE = "invalid_state"
    SECURITY_ERROR = "security_error"
    SERVER_REJECTED = "server_rejected"
    NETWORK_ERROR = "network_error"


ERROR_MESSAGES = {
    ErrorKind.USER_CANCELLED: "Passkey operation was cancelled.",
    ErrorKind.NOT_ALLOWED_OR_TIMED_OUT: "Passkey operation was cancelled or timed out.",
    ErrorKind.INVALID_STATE: "This passkey is already registered, or another passkey "
    "operation is in progress.",
    ErrorKind.SECURITY_ERROR: "Security error - make sure you're using HTTPS or localhost.",
    ErrorKind.SERVER_REJECTED: "The server rejected the passkey.",
    ErrorKind.NETWORK_ERROR: "Could not reach the server.",
}

_DOM_EXCEPTION_KINDS = {
    "AbortError": ErrorKind.USER_CANCELLED,
    "NotAllowedError": ErrorKind.NOT_ALLOWED_OR_TIMED_OUT,
    "InvalidStateError": ErrorKind.INVALID_STATE,
    "SecurityError": ErrorKind.SECURITY_ERROR,
}


class AuthenticatorError(Exception):
    """A local ceremony failure, named like the browser's DOMException."""

    def __init__(self, name: str, message: str = ""):
        self.name = name
        self.message = message
        super().__init__(f"{name}: {message}" if message else name)


@dataclass
class CeremonyError:
    """Error reported on a failed AuthResult."""

    kind: ErrorKind
    message: str
    reason: str | None = None

    @classmethod
    def of(cls, kind: ErrorKind, reason: str | None = None) -> "CeremonyError":
        return cls(kind=kind, message=reason or ERROR_MESSAGES[kind], reason=reason)


def error_kind_for(error: AuthenticatorError) -> ErrorKind:
    # Browsers report most refusals, including unsupported requirements, as NotAllowedError
    return _DOM_EXCEPTION_KINDS.get(error.name, ErrorKind.NOT_ALLOWED_OR_TIMED_OUT)


class Authenticator(Protocol):
    """Performs the local cryptographic ceremony."""

    async def create(self, options: dict[str, Any]) -> dict[str, Any]:
        """Create a credential from registration options; return its JSON."""
        ...

    async def get(self, options: dict[str, Any]) -> dict[str, Any]:
        """Sign an assertion for authentication options; return its JSON."""
        ...
