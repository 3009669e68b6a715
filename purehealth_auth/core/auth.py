"""
Authentication and Authorization

FastAPI dependencies resolving the signed-in user from the session token
issued after a passkey ceremony.
"""

import logging
from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from purehealth_auth.core.security import decode_token
from purehealth_auth.models.enums import UserRole
from purehealth_auth.models.orm.user import User

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class UserPrincipal:
    """
    Authenticated user principal.

    Built from JWT claims; no database lookup is made.
    """

    user_id: UUID
    email: str
    name: str = ""
    role: UserRole = UserRole.RECEPTIONIST
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        return UserRole.can_manage_users(self.role)


def token_claims(user: User) -> dict[str, str]:
    """JWT claims describing a user."""
    return {
        "sub": str(user.id),
        "email": user.email,
        "name": user.display_name,
        "role": user.role.value,
    }


async def get_current_user_optional(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> UserPrincipal | None:
    """
    Get the current user from the access token, if any.

    Checks the Authorization: Bearer header first, then the access_token
    cookie. Returns None for missing or invalid tokens.
    """
    token = None
    if credentials:
        token = credentials.credentials
    elif "access_token" in request.cookies:
        token = request.cookies["access_token"]

    if not token:
        return None

    payload = decode_token(token, expected_type="access")
    if payload is None:
        return None

    try:
        user_id = UUID(payload.get("sub", ""))
    except ValueError:
        return None

    if "email" not in payload:
        logger.warning(f"Token for user {user_id} missing required email claim.")
        return None

    try:
        role = UserRole(payload.get("role", UserRole.RECEPTIONIST.value))
    except ValueError:
        role = UserRole.RECEPTIONIST

    return UserPrincipal(
        user_id=user_id,
        email=payload["email"],
        name=payload.get("name", ""),
        role=role,
    )


async def get_current_user(
    user: Annotated[UserPrincipal | None, Depends(get_current_user_optional)],
) -> UserPrincipal:
    """
    Get the current user (required).

    Raises:
        HTTPException: 401 if not authenticated or the token is invalid
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_active_user(
    user: Annotated[UserPrincipal, Depends(get_current_user)],
) -> UserPrincipal:
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return user


async def get_current_admin(
    user: Annotated[UserPrincipal, Depends(get_current_active_user)],
) -> UserPrincipal:
    """
    Get the current user, requiring the admin role.

    Raises:
        HTTPException: 403 if the user is not an admin
    """
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator privileges required",
        )
    return user


CurrentUser = Annotated[UserPrincipal, Depends(get_current_user)]
CurrentActiveUser = Annotated[UserPrincipal, Depends(get_current_active_user)]
RequireAdmin = Annotated[UserPrincipal, Depends(get_current_admin)]
