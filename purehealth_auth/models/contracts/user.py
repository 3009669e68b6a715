"""
User contract models.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from purehealth_auth.models.enums import UserRole, UserStatus


class UserPublic(BaseModel):
    """Public representation of a user."""

    id: UUID
    email: str
    first_name: str
    middle_name: str | None = None
    last_name: str
    role: UserRole
    status: UserStatus
    last_login: datetime | None = None

    model_config = {"from_attributes": True}


class UserStatusUpdateRequest(BaseModel):
    """Request to activate or deactivate a user."""

    status: UserStatus = Field(description="New account status")
