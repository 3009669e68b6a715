"""
Challenge Ledger

Maps a ceremony subject (user id or temporary registration id) to the one
challenge it may currently answer.

- ``put`` replaces any unconsumed challenge for the same subject.
- ``take_and_invalidate`` returns a challenge at most once, whether the
  verification that follows succeeds or not.
- Expiry is checked when reading, independent of any sweep.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from webauthn.helpers import base64url_to_bytes, bytes_to_base64url

from purehealth_auth.core.ephemeral import EphemeralStore
from purehealth_auth.models.enums import ChallengePurpose

logger = logging.getLogger(__name__)

CHALLENGE_KEY_PREFIX = "webauthn:challenge:"
CHALLENGE_BYTES = 32


@dataclass(frozen=True)
class ChallengeRecord:
    challenge: bytes
    purpose: ChallengePurpose
    subject: str
    expires_at: datetime

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= datetime.now(UTC)


def generate_challenge() -> bytes:
    """Cryptographically random challenge bytes."""
    return secrets.token_bytes(CHALLENGE_BYTES)


class ChallengeLedger:
    """Pending-challenge store for WebAuthn ceremonies."""

    def __init__(self, store: EphemeralStore, ttl_seconds: int = 300):
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def put(
        self,
        subject: str,
        challenge: bytes,
        purpose: ChallengePurpose,
        ttl_seconds: int | None = None,
    ) -> ChallengeRecord:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        record = ChallengeRecord(
            challenge=challenge,
            purpose=purpose,
            subject=subject,
            expires_at=datetime.now(UTC) + timedelta(seconds=ttl),
        )
        await self.store.put(
            f"{CHALLENGE_KEY_PREFIX}{subject}",
            {
                "challenge": bytes_to_base64url(challenge),
                "purpose": purpose.value,
                "expires_at": record.expires_at.isoformat(),
            },
            ttl,
        )
        return record

    async def take_and_invalidate(
        self, subject: str, purpose: ChallengePurpose
    ) -> ChallengeRecord | None:
        """
        Consume the pending challenge for ``subject``.

        Returns None when there is no challenge, it has expired, or it was
        issued for a different purpose. In every case the stored challenge is
        gone afterwards.
        """
        data = await self.store.take(f"{CHALLENGE_KEY_PREFIX}{subject}")
        if data is None:
            return None

        record = ChallengeRecord(
            challenge=base64url_to_bytes(data["challenge"]),
            purpose=ChallengePurpose(data["purpose"]),
            subject=subject,
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )
        if record.is_expired:
            logger.info(f"Discarded expired {record.purpose.value} challenge for {subject}")
            return None
        if record.purpose != purpose:
            logger.warning(
                f"Challenge for {subject} was issued for {record.purpose.value}, "
                f"not {purpose.value}; discarded"
            )
            return None
        return record

    async def sweep(self) -> int:
        return await self.store.sweep()
