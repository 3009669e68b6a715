"""
Client Authentication Orchestrator.

Runs one passkey ceremony at a time as an explicit state machine:

    IDLE -> AWAITING_OPTIONS -> AWAITING_LOCAL_CEREMONY
         -> AWAITING_VERIFICATION -> SUCCEEDED | FAILED

The ceremony runs as a single asyncio task so ``cancel()`` abandons the
whole chain, including a pending network call. A cancelled ceremony never
reports success, never sends its verify request if cancelled before it, and
leaves the orchestrator IDLE without an error. Session tokens are applied to
the client only after a ceremony succeeds without being cancelled. A second
call while a ceremony is in flight is rejected with INVALID_STATE and does
not touch the running one. Unexpected errors end the ceremony as FAILED with
``last_error`` set rather than propagating.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

from purehealth_auth.client.api_client import APIError, PurehealthAuthClient
from purehealth_auth.client.ceremony import (
    Authenticator,
    AuthenticatorError,
    CeremonyError,
    ErrorKind,
    error_kind_for,
)

logger = logging.getLogger(__name__)

DEFAULT_CEREMONY_TIMEOUT_SECONDS = 60.0


class CeremonyState(str, Enum):
    IDLE = "idle"
    AWAITING_OPTIONS = "awaiting_options"
    AWAITING_LOCAL_CEREMONY = "awaiting_local_ceremony"
    AWAITING_VERIFICATION = "awaiting_verification"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class AuthResult:
    """Outcome of one ceremony."""

    success: bool
    user: dict[str, Any] | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    error: CeremonyError | None = None
    cancelled: bool = False


class CancellationToken:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise asyncio.CancelledError()


class _CeremonyFailed(Exception):
    def __init__(self, error: CeremonyError):
        self.error = error
        super().__init__(error.message)


class AuthOrchestrator:
    """Drives registration and authentication ceremonies against the API."""

    def __init__(
        self,
        client: PurehealthAuthClient,
        authenticator: Authenticator,
        *,
        default_timeout: float = DEFAULT_CEREMONY_TIMEOUT_SECONDS,
    ):
        self.client = client
        self.authenticator = authenticator
        self.default_timeout = default_timeout
        self._state = CeremonyState.IDLE
        self._last_error: CeremonyError | None = None
        self._modal_visible = False
        self._task: asyncio.Task | None = None
        self._token: CancellationToken | None = None

    @property
    def state(self) -> CeremonyState:
        return self._state

    @property
    def is_in_progress(self) -> bool:
        return self._task is not None

    @property
    def last_error(self) -> CeremonyError | None:
        return self._last_error

    @property
    def is_modal_visible(self) -> bool:
        return self._modal_visible

    # =========================================================================
    # Public Operations
    # =========================================================================

    async def authenticate(
        self,
        email: str,
        *,
        timeout: float | None = None,
        show_modal: bool = True,
    ) -> AuthResult:
        """Sign in with a passkey for ``email``."""

        async def ceremony(token: CancellationToken) -> dict[str, Any]:
            started = await self._call_api(self.client.authentication_options(email))
            token.raise_if_cancelled()

            response = await self._local_ceremony(
                self.authenticator.get, started["options"], timeout, token
            )

            self._state = CeremonyState.AWAITING_VERIFICATION
            return await self._call_api(
                self.client.verify_authentication(started["user_id"], response)
            )

        return await self._run(ceremony, show_modal=show_modal)

    async def register(
        self,
        profile: dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> AuthResult:
        """Create a new account with its primary passkey."""

        async def ceremony(token: CancellationToken) -> dict[str, Any]:
            started = await self._call_api(self.client.temp_registration_options(profile))
            token.raise_if_cancelled()

            response = await self._local_ceremony(
                self.authenticator.create, started["options"], timeout, token
            )

            self._state = CeremonyState.AWAITING_VERIFICATION
            return await self._call_api(
                self.client.verify_temp_registration(
                    started["temp_registration_id"], response, profile
                )
            )

        return await self._run(ceremony, show_modal=False)

    async def register_backup(
        self,
        user_id: UUID | str,
        *,
        is_primary: bool = False,
        timeout: float | None = None,
    ) -> AuthResult:
        """Add another passkey to the signed-in user's account."""

        async def ceremony(token: CancellationToken) -> dict[str, Any]:
            started = await self._call_api(self.client.registration_options(user_id, is_primary))
            token.raise_if_cancelled()

            response = await self._local_ceremony(
                self.authenticator.create, started["options"], timeout, token
            )

            self._state = CeremonyState.AWAITING_VERIFICATION
            return await self._call_api(
                self.client.verify_registration(user_id, response, is_primary)
            )

        return await self._run(ceremony, show_modal=False)

    def cancel(self) -> bool:
        """
        Abandon the ceremony in flight.

        Returns:
            True if a ceremony was cancelled, False if none was running
        """
        if self._task is None or self._token is None:
            return False
        logger.info(f"Cancelling passkey ceremony in state {self._state.value}")
        self._token.cancel()
        self._task.cancel()
        return True

    # =========================================================================
    # State Machine
    # =========================================================================

    async def _run(
        self,
        ceremony: Callable[[CancellationToken], Awaitable[dict[str, Any]]],
        *,
        show_modal: bool,
    ) -> AuthResult:
        if self._task is not None:
            logger.warning("Rejected passkey ceremony: another one is in progress")
            return AuthResult(
                success=False,
                error=CeremonyError.of(
                    ErrorKind.INVALID_STATE, "Another passkey operation is already in progress"
                ),
            )

        token = CancellationToken()
        self._token = token
        self._last_error = None
        self._modal_visible = show_modal
        self._state = CeremonyState.AWAITING_OPTIONS
        self._task = asyncio.create_task(ceremony(token))

        try:
            payload = await self._task
        except asyncio.CancelledError:
            if not token.cancelled:
                # Our caller was cancelled, not the ceremony
                self._state = CeremonyState.IDLE
                raise
            payload = None
        except _CeremonyFailed as e:
            self._state = CeremonyState.FAILED
            self._last_error = e.error
            logger.warning(f"Passkey ceremony failed: {e.error.kind.value}: {e.error.message}")
            return AuthResult(success=False, error=e.error)
        except Exception as e:
            logger.error(f"Passkey ceremony failed unexpectedly: {e}", exc_info=True)
            error = CeremonyError.of(ErrorKind.SERVER_REJECTED, f"Unexpected error: {e}")
            self._state = CeremonyState.FAILED
            self._last_error = error
            return AuthResult(success=False, error=error)
        finally:
            self._task = None
            self._token = None
            self._modal_visible = False

        if token.cancelled:
            self._state = CeremonyState.IDLE
            return AuthResult(
                success=False,
                cancelled=True,
                error=CeremonyError.of(ErrorKind.USER_CANCELLED),
            )

        self.client.remember_session(payload)
        self._state = CeremonyState.SUCCEEDED
        return AuthResult(success=True, user=payload.get("user"), payload=payload)

    async def _call_api(self, request: Awaitable[Any]) -> Any:
        try:
            return await request
        except APIError as e:
            if e.is_network_error:
                raise _CeremonyFailed(CeremonyError.of(ErrorKind.NETWORK_ERROR, e.message)) from e
            raise _CeremonyFailed(
                CeremonyError.of(ErrorKind.SERVER_REJECTED, e.message)
            ) from e

    async def _local_ceremony(
        self,
        perform: Callable[[dict[str, Any]], Awaitable[dict[str, Any]]],
        options: dict[str, Any],
        timeout: float | None,
        token: CancellationToken,
    ) -> dict[str, Any]:
        self._state = CeremonyState.AWAITING_LOCAL_CEREMONY
        if timeout is None:
            timeout = options["timeout"] / 1000 if options.get("timeout") else self.default_timeout

        try:
            response = await asyncio.wait_for(perform(options), timeout)
        except asyncio.TimeoutError as e:
            raise _CeremonyFailed(
                CeremonyError.of(ErrorKind.NOT_ALLOWED_OR_TIMED_OUT, "Passkey operation timed out")
            ) from e
        except AuthenticatorError as e:
            raise _CeremonyFailed(CeremonyError.of(error_kind_for(e))) from e

        token.raise_if_cancelled()
        return response
