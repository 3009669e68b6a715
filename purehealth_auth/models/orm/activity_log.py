"""
ActivityLog ORM model.

Who did what, including failed ceremonies. ``user_id`` is deliberately not a
foreign key: failed logins may name a user that does not exist, and
``user_info`` keeps a snapshot so entries outlive later profile changes.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from purehealth_auth.models.orm.base import Base


class ActivityLog(Base):
    """Activity log database table."""

    __tablename__ = "activity_logs"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    # What happened
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[UUID | None] = mapped_column(nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Who did it
    user_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    user_info: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=text("NOW()"),
    )

    __table_args__ = (Index("ix_activity_logs_created_at", "created_at"),)
