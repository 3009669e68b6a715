"""
Enums for Purehealth models.
"""

from enum import Enum


class UserRole(str, Enum):
    """User roles for access control."""

    ADMIN = "admin"
    RECEPTIONIST = "receptionist"

    @classmethod
    def can_manage_users(cls, role: "UserRole") -> bool:
        """Check if role can activate/deactivate accounts."""
        return role == cls.ADMIN


class UserStatus(str, Enum):
    """Account status. Inactive users cannot sign in."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class ChallengePurpose(str, Enum):
    """Which ceremony a pending challenge belongs to."""

    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


class ActivityAction(str, Enum):
    """Actions recorded in the activity log."""

    # Ceremonies
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    PASSKEY_REGISTER = "passkey_register"
    PASSKEY_REGISTER_FAILED = "passkey_register_failed"
    CLONE_DETECTED = "clone_detected"

    # Passkey management
    PASSKEY_SET_PRIMARY = "passkey_set_primary"
    PASSKEY_DELETE = "passkey_delete"

    # User management
    USER_CREATE = "user_create"
    USER_STATUS_UPDATE = "user_status_update"
