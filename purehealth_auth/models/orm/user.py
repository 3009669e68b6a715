"""
User ORM model.

A clinic staff account. Rows are only created once a first passkey has been
verified, so every user has at least one credential.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import sqlalchemy
from sqlalchemy import DateTime, Index, LargeBinary, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from purehealth_auth.models.enums import UserRole, UserStatus
from purehealth_auth.models.orm.base import Base

if TYPE_CHECKING:
    from purehealth_auth.models.orm.credential import WebAuthnCredential


class User(Base):
    """User database table."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(320), unique=True)
    first_name: Mapped[str] = mapped_column(String(100))
    middle_name: Mapped[str | None] = mapped_column(String(100), default=None)
    last_name: Mapped[str] = mapped_column(String(100))
    role: Mapped[UserRole] = mapped_column(
        sqlalchemy.Enum(
            UserRole,
            name="user_role",
            values_callable=lambda x: [e.value for e in x],
        ),
        default=UserRole.RECEPTIONIST,
    )
    status: Mapped[UserStatus] = mapped_column(
        sqlalchemy.Enum(
            UserStatus,
            name="user_status",
            values_callable=lambda x: [e.value for e in x],
        ),
        default=UserStatus.ACTIVE,
    )

    # WebAuthn user handle (opaque, never the database id)
    webauthn_user_id: Mapped[bytes | None] = mapped_column(LargeBinary(64), default=None)

    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=text("NOW()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=text("NOW()"),
        onupdate=lambda: datetime.now(UTC),
    )

    credentials: Mapped[list["WebAuthnCredential"]] = relationship(back_populates="user")

    __table_args__ = (Index("ix_users_email", "email"),)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def display_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p for p in parts if p)
