"""Client-side passkey ceremony orchestration and step-up guard."""

from purehealth_auth.client.api_client import APIError, PurehealthAuthClient
from purehealth_auth.client.ceremony import (
    Authenticator,
    AuthenticatorError,
    CeremonyError,
    ErrorKind,
)
from purehealth_auth.client.guard import (
    DEFAULT_PROTECTED_ACTIONS,
    AccessDenied,
    GuardOutcome,
    StepUpGuard,
)
from purehealth_auth.client.orchestrator import AuthOrchestrator, AuthResult, CeremonyState

__all__ = [
    "APIError",
    "AccessDenied",
    "AuthOrchestrator",
    "AuthResult",
    "Authenticator",
    "AuthenticatorError",
    "CeremonyError",
    "CeremonyState",
    "DEFAULT_PROTECTED_ACTIONS",
    "ErrorKind",
    "GuardOutcome",
    "PurehealthAuthClient",
    "StepUpGuard",
]
