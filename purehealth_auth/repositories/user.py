"""
User Repository

Provides database operations for User model.
"""

from uuid import UUID

from sqlalchemy import select

from purehealth_auth.models.enums import UserRole, UserStatus
from purehealth_auth.models.orm.user import User
from purehealth_auth.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for User model operations."""

    model = User

    async def get_by_email(self, email: str) -> User | None:
        """
        Get user by email address (case-insensitive).

        Args:
            email: Email address to search for

        Returns:
            User or None if not found
        """
        result = await self.session.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def create_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        middle_name: str | None = None,
        role: UserRole = UserRole.RECEPTIONIST,
        webauthn_user_id: bytes | None = None,
    ) -> User:
        """
        Create a new active user.

        Returns:
            Created User
        """
        user = User(
            email=email.strip().lower(),
            first_name=first_name,
            middle_name=middle_name,
            last_name=last_name,
            role=role,
            status=UserStatus.ACTIVE,
            webauthn_user_id=webauthn_user_id,
        )
        return await self.create(user)

    async def update_status(self, user_id: UUID, status: UserStatus) -> User | None:
        """
        Activate or deactivate a user.

        Returns:
            Updated User, or None if not found
        """
        user = await self.get_by_id(user_id)
        if user is None:
            return None
        user.status = status
        await self.session.flush()
        return user
