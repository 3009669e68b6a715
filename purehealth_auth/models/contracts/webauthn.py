"""
WebAuthn contract models.

Request and response models for the registration, authentication and
passkey-management endpoints. ``options`` payloads are the JSON produced by
py_webauthn and are passed to navigator.credentials.create()/get() as is.
"""

import re
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from purehealth_auth.models.contracts.user import UserPublic
from purehealth_auth.models.enums import UserRole

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class RegistrationProfile(BaseModel):
    """Profile submitted by a new user before a passkey exists."""

    email: str = Field(max_length=320)
    first_name: str = Field(min_length=1, max_length=100)
    middle_name: str | None = Field(default=None, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    role: UserRole = Field(default=UserRole.RECEPTIONIST)

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not _EMAIL_RE.match(value):
            raise ValueError("Invalid email address")
        return value

    @field_validator("first_name", "last_name")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Field is required")
        return value

    @field_validator("middle_name")
    @classmethod
    def _strip_optional(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.middle_name, self.last_name) if p)


# =============================================================================
# Registration
# =============================================================================


class TempRegistrationOptionsResponse(BaseModel):
    temp_registration_id: str = Field(description="Pass back to /registration/verify-temp")
    options: dict[str, Any] = Field(
        description="WebAuthn registration options JSON for navigator.credentials.create()"
    )


class RegistrationOptionsRequest(BaseModel):
    user_id: UUID = Field(description="Existing user adding a passkey")
    is_primary: bool = Field(default=True, description="Register as the primary passkey")


class RegistrationOptionsResponse(BaseModel):
    options: dict[str, Any] = Field(
        description="WebAuthn registration options JSON for navigator.credentials.create()"
    )


class TempRegistrationVerifyRequest(BaseModel):
    temp_registration_id: str
    response: dict[str, Any] = Field(
        description="Registration credential JSON from navigator.credentials.create()"
    )
    profile: RegistrationProfile | None = Field(
        default=None,
        description="Profile originally submitted; must match the buffered one if given",
    )


class RegistrationVerifyRequest(BaseModel):
    user_id: UUID
    response: dict[str, Any] = Field(
        description="Registration credential JSON from navigator.credentials.create()"
    )
    is_primary: bool = True


class RegistrationVerifyResponse(BaseModel):
    verified: bool
    credential_id: UUID = Field(description="ID of the stored credential row")
    is_primary: bool
    message: str


class SessionResponse(BaseModel):
    """A verified user plus session tokens."""

    verified: bool = True
    user: UserPublic
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


# =============================================================================
# Authentication
# =============================================================================


class AuthenticationOptionsRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, value: str) -> str:
        return value.strip().lower()


class AuthenticationOptionsResponse(BaseModel):
    user_id: UUID = Field(description="Pass back to /authentication/verify")
    options: dict[str, Any] = Field(
        description="WebAuthn authentication options JSON for navigator.credentials.get()"
    )


class AuthenticationVerifyRequest(BaseModel):
    user_id: UUID
    response: dict[str, Any] = Field(
        description="Authentication credential JSON from navigator.credentials.get()"
    )


# =============================================================================
# Passkey Management
# =============================================================================


class CredentialPublic(BaseModel):
    """Public representation of a registered passkey."""

    id: UUID
    name: str
    is_primary: bool
    device_type: str
    backed_up: bool
    transports: list[str]
    created_at: datetime
    last_used_at: datetime | None = None

    model_config = {"from_attributes": True}


class CredentialListResponse(BaseModel):
    credentials: list[CredentialPublic]
    count: int


class CredentialDeleteResponse(BaseModel):
    deleted: bool
    credential_id: UUID
