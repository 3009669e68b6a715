"""SQLAlchemy ORM Models.

Pure database models using SQLAlchemy 2.0 declarative style.
"""

from purehealth_auth.models.orm.activity_log import ActivityLog
from purehealth_auth.models.orm.base import Base
from purehealth_auth.models.orm.credential import WebAuthnCredential
from purehealth_auth.models.orm.user import User

__all__ = [
    "ActivityLog",
    "Base",
    "User",
    "WebAuthnCredential",
]
