"""
Credential Repository

Durable storage and lookup of WebAuthn credentials.

Counter updates are a single conditional UPDATE rather than
read-modify-write, so two concurrent assertions from a cloned authenticator
cannot both move the counter.
"""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from purehealth_auth.core.exceptions import DuplicateCredential
from purehealth_auth.models.orm.credential import WebAuthnCredential
from purehealth_auth.repositories.base import BaseRepository


class CredentialRepository(BaseRepository[WebAuthnCredential]):
    """Repository for WebAuthnCredential model operations."""

    model = WebAuthnCredential

    async def get_by_credential_id(self, credential_id: bytes) -> WebAuthnCredential | None:
        result = await self.session.execute(
            select(WebAuthnCredential).where(WebAuthnCredential.credential_id == credential_id)
        )
        return result.scalar_one_or_none()

    async def get_by_user_id(self, user_id: UUID) -> list[WebAuthnCredential]:
        """All credentials of a user, primary first."""
        result = await self.session.execute(
            select(WebAuthnCredential)
            .where(WebAuthnCredential.user_id == user_id)
            .order_by(WebAuthnCredential.is_primary.desc(), WebAuthnCredential.created_at)
        )
        return list(result.scalars().all())

    async def get_for_user(self, user_id: UUID, credential_id: bytes) -> WebAuthnCredential | None:
        """Look up a credential id only among one user's own credentials."""
        result = await self.session.execute(
            select(WebAuthnCredential).where(
                WebAuthnCredential.user_id == user_id,
                WebAuthnCredential.credential_id == credential_id,
            )
        )
        return result.scalar_one_or_none()

    async def count_for_user(self, user_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(WebAuthnCredential.id)).where(WebAuthnCredential.user_id == user_id)
        )
        return result.scalar() or 0

    async def insert(self, credential: WebAuthnCredential) -> WebAuthnCredential:
        """
        Insert a new credential.

        Raises:
            DuplicateCredential: If the credential id is already registered
                (to any user), including when a concurrent insert wins the race
        """
        if await self.get_by_credential_id(credential.credential_id) is not None:
            raise DuplicateCredential()
        try:
            return await self.create(credential)
        except IntegrityError as e:
            raise DuplicateCredential() from e

    async def update_counter(self, credential_id: bytes, new_count: int) -> bool:
        """
        Advance the signature counter if and only if it increases.

        Returns:
            True if the counter was updated, False if the stored counter was
            already greater than or equal to ``new_count``
        """
        result = await self.session.execute(
            update(WebAuthnCredential)
            .where(
                WebAuthnCredential.credential_id == credential_id,
                WebAuthnCredential.sign_count < new_count,
            )
            .values(sign_count=new_count, last_used_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def clear_primary(self, user_id: UUID) -> None:
        """Demote every primary credential of a user to backup."""
        await self.session.execute(
            update(WebAuthnCredential)
            .where(WebAuthnCredential.user_id == user_id, WebAuthnCredential.is_primary.is_(True))
            .values(is_primary=False)
        )
