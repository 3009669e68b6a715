"""
WebAuthn credential ORM model.

One row per registered authenticator. ``credential_id`` is the lookup key
and is unique across all users.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import sqlalchemy
from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from purehealth_auth.models.orm.base import Base

if TYPE_CHECKING:
    from purehealth_auth.models.orm.user import User


class WebAuthnCredential(Base):
    """Registered passkey credentials."""

    __tablename__ = "webauthn_credentials"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))

    # Data required for verification
    credential_id: Mapped[bytes] = mapped_column(sqlalchemy.LargeBinary, unique=True)
    public_key: Mapped[bytes] = mapped_column(sqlalchemy.LargeBinary)
    sign_count: Mapped[int] = mapped_column(BigInteger, default=0)

    # Metadata
    transports: Mapped[list] = mapped_column(JSONB, default=list)  # internal, usb, hybrid...
    device_type: Mapped[str] = mapped_column(String(50))  # single_device, multi_device
    backed_up: Mapped[bool] = mapped_column(Boolean, default=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=True)

    name: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=text("NOW()"),
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    user: Mapped["User"] = relationship(back_populates="credentials")

    __table_args__ = (
        Index("ix_webauthn_credentials_user_id", "user_id"),
        Index("ix_webauthn_credentials_credential_id", "credential_id", unique=True),
    )
