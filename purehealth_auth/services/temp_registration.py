"""
Temporary Registration Buffer

Holds the profile a new user submitted before any credential exists. The
user row is only created when a passkey for this buffer entry is verified.
"""

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from webauthn.helpers import base64url_to_bytes, bytes_to_base64url, generate_user_handle

from purehealth_auth.core.ephemeral import EphemeralStore
from purehealth_auth.models.contracts.webauthn import RegistrationProfile

TEMP_REGISTRATION_KEY_PREFIX = "webauthn:temp_registration:"


@dataclass(frozen=True)
class TemporaryRegistration:
    temp_registration_id: str
    profile: RegistrationProfile
    webauthn_user_id: bytes
    expires_at: datetime


class TemporaryRegistrationBuffer:
    """Ephemeral holding area for not-yet-verified registrations."""

    def __init__(self, store: EphemeralStore, ttl_seconds: int = 300):
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def create(self, profile: RegistrationProfile) -> TemporaryRegistration:
        """Buffer a profile under a fresh temporary registration id."""
        entry = TemporaryRegistration(
            temp_registration_id=f"tmp-{secrets.token_urlsafe(24)}",
            profile=profile,
            webauthn_user_id=generate_user_handle(),
            expires_at=datetime.now(UTC) + timedelta(seconds=self.ttl_seconds),
        )
        await self.store.put(
            f"{TEMP_REGISTRATION_KEY_PREFIX}{entry.temp_registration_id}",
            {
                "profile": profile.model_dump(mode="json"),
                "webauthn_user_id": bytes_to_base64url(entry.webauthn_user_id),
                "expires_at": entry.expires_at.isoformat(),
            },
            self.ttl_seconds,
        )
        return entry

    async def take(self, temp_registration_id: str) -> TemporaryRegistration | None:
        """Remove and return a buffered registration, or None if gone or expired."""
        data = await self.store.take(f"{TEMP_REGISTRATION_KEY_PREFIX}{temp_registration_id}")
        if data is None:
            return None

        expires_at = datetime.fromisoformat(data["expires_at"])
        if expires_at <= datetime.now(UTC):
            return None
        return TemporaryRegistration(
            temp_registration_id=temp_registration_id,
            profile=RegistrationProfile.model_validate(data["profile"]),
            webauthn_user_id=base64url_to_bytes(data["webauthn_user_id"]),
            expires_at=expires_at,
        )
