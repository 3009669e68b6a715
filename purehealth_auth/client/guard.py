"""
Step-up route guard.

Sensitive actions (recording transactions and expenses, exporting data,
generating reports) run only after a fresh passkey ceremony by the signed-in
user. By default every invocation re-prompts; ``freshness_seconds`` allows a
recent success to be reused.
"""

import inspect
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from purehealth_auth.client.orchestrator import AuthOrchestrator, AuthResult
from purehealth_auth.models.enums import UserRole

logger = logging.getLogger(__name__)

DEFAULT_PROTECTED_ACTIONS = frozenset(
    {"add_transaction", "add_expenses", "export_data", "generate_report"}
)

DEFAULT_ROLE_RESTRICTIONS: Mapping[str, frozenset[UserRole]] = {
    "settings": frozenset({UserRole.RECEPTIONIST}),
    "manage_users": frozenset({UserRole.RECEPTIONIST}),
}


class AccessDenied(Exception):
    """The user's role may not perform this action."""

    def __init__(self, action: str, role: UserRole | None):
        self.action = action
        self.role = role
        super().__init__(f"Role {role.value if role else 'anonymous'} may not perform {action}")


@dataclass
class GuardOutcome:
    """Whether the action ran, its return value, and the step-up result if any."""

    allowed: bool
    value: Any = None
    auth: AuthResult | None = None


class StepUpGuard:
    def __init__(
        self,
        orchestrator: AuthOrchestrator,
        protected_actions: Iterable[str] = DEFAULT_PROTECTED_ACTIONS,
        *,
        role_restrictions: Mapping[str, Iterable[UserRole]] | None = None,
        freshness_seconds: float = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.orchestrator = orchestrator
        self.protected_actions = frozenset(protected_actions)
        restrictions = DEFAULT_ROLE_RESTRICTIONS if role_restrictions is None else role_restrictions
        self.role_restrictions = {action: frozenset(roles) for action, roles in restrictions.items()}
        self.freshness_seconds = freshness_seconds
        self._clock = clock
        self._verified_at: dict[str, float] = {}

    def is_protected(self, action: str) -> bool:
        return action in self.protected_actions

    def check_access(self, action: str, role: UserRole | None) -> None:
        """
        Raises:
            AccessDenied: If ``role`` is barred from ``action``
        """
        barred = self.role_restrictions.get(action)
        if barred is not None and (role is None or role in barred):
            raise AccessDenied(action, role)

    async def run(
        self,
        action: str,
        fn: Callable[[], Any],
        *,
        email: str,
        role: UserRole | None = None,
    ) -> GuardOutcome:
        """
        Run ``fn`` for ``action``, stepping up first if the action is protected.

        ``fn`` may be a plain callable or return an awaitable. It is not called
        when the ceremony fails or is cancelled.

        Raises:
            AccessDenied: Before any ceremony, if the role is barred
        """
        self.check_access(action, role)

        auth = None
        if self.is_protected(action) and not self._is_fresh(email):
            auth = await self.orchestrator.authenticate(email, show_modal=True)
            if not auth.success:
                logger.info(f"Step-up for {action} not completed for {email}")
                return GuardOutcome(allowed=False, auth=auth)
            self._verified_at[email] = self._clock()

        value = fn()
        if inspect.isawaitable(value):
            value = await value
        return GuardOutcome(allowed=True, value=value, auth=auth)

    def _is_fresh(self, email: str) -> bool:
        if self.freshness_seconds <= 0:
            return False
        verified_at = self._verified_at.get(email)
        return verified_at is not None and self._clock() - verified_at < self.freshness_seconds
