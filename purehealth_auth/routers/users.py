"""
User endpoints.

The signed-in user's profile, and account activation for admins.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Request, status

from purehealth_auth.core.auth import CurrentActiveUser, RequireAdmin
from purehealth_auth.core.database import DbSession
from purehealth_auth.core.exceptions import UserNotFound
from purehealth_auth.models.contracts.user import UserPublic, UserStatusUpdateRequest
from purehealth_auth.models.enums import ActivityAction
from purehealth_auth.repositories.user import UserRepository
from purehealth_auth.services.audit_service import get_audit_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me", response_model=UserPublic)
async def get_me(current_user: CurrentActiveUser, db: DbSession) -> UserPublic:
    """Get the signed-in user's profile."""
    user = await UserRepository(db).get_by_id(current_user.user_id)
    if user is None:
        raise UserNotFound()
    return UserPublic.model_validate(user)


@router.put("/{user_id}/status", response_model=UserPublic)
async def update_user_status(
    user_id: UUID,
    request: UserStatusUpdateRequest,
    http_request: Request,
    admin: RequireAdmin,
    db: DbSession,
) -> UserPublic:
    """
    Activate or deactivate a user account (admin only).

    Deactivated users can no longer obtain authentication options.
    """
    if user_id == admin.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change your own account status",
        )

    user = await UserRepository(db).update_status(user_id, request.status)
    if user is None:
        raise UserNotFound()

    get_audit_service(db).log(
        ActivityAction.USER_STATUS_UPDATE,
        "user",
        user.id,
        user_id=admin.user_id,
        details=f"Set {user.email} to {request.status.value}",
        ip_address=http_request.client.host if http_request.client else None,
    )
    await db.commit()

    logger.info(f"User {user.id} set to {request.status.value} by {admin.user_id}")
    return UserPublic.model_validate(user)
