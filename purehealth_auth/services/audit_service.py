"""
Audit Service

Records ceremony outcomes and account changes in the activity log.
Entries are added to the caller's session and commit with its transaction.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from purehealth_auth.models.enums import ActivityAction
from purehealth_auth.models.orm.activity_log import ActivityLog
from purehealth_auth.models.orm.user import User

logger = logging.getLogger(__name__)


def user_snapshot(user: User) -> dict[str, Any]:
    """Denormalised copy of the acting user, kept with the log entry."""
    return {
        "user_id": str(user.id),
        "name": user.display_name,
        "first_name": user.first_name,
        "middle_name": user.middle_name or "",
        "last_name": user.last_name,
        "email": user.email,
        "role": user.role.value if user.role else None,
    }


class AuditService:
    """Service for recording activity log entries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def log(
        self,
        action: ActivityAction,
        resource_type: str,
        resource_id: UUID | None = None,
        *,
        user: User | None = None,
        user_id: UUID | None = None,
        details: str | None = None,
        ip_address: str | None = None,
    ) -> ActivityLog:
        """
        Record an activity log entry.

        Args:
            action: The action being performed
            resource_type: Type of resource (user, passkey)
            resource_id: ID of the affected resource, if it exists
            user: The acting user, when loaded
            user_id: The acting user's id when only the id is known
            details: Free-text description
            ip_address: Client address
        """
        entry = ActivityLog(
            action=action.value,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
            user_id=user.id if user is not None else user_id,
            user_info=user_snapshot(user) if user is not None else None,
            ip_address=ip_address,
        )
        self.db.add(entry)

        logger.debug(
            f"Activity: {action.value} {resource_type}/{resource_id}",
            extra={
                "action": action.value,
                "resource_type": resource_type,
                "resource_id": str(resource_id) if resource_id else None,
                "user_id": str(entry.user_id) if entry.user_id else None,
            },
        )
        return entry


def get_audit_service(db: AsyncSession) -> AuditService:
    """Factory function for AuditService."""
    return AuditService(db)
