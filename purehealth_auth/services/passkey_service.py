"""
Passkey Service - WebAuthn registration and authentication ceremonies.

Generates options, verifies authenticator responses against pending
challenges and stored credentials, and maintains signature counters. Uses the
py_webauthn library for WebAuthn protocol compliance.

Every verify call consumes its challenge first, so a challenge is spent
whether the rest of the verification succeeds or not. Database writes are
flushed into the caller's session and committed by the router together, so
a new user and their first credential appear atomically.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import (
    generate_user_handle,
    parse_authentication_credential_json,
    parse_registration_credential_json,
)
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    RegistrationCredential,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)
from webauthn.registration.verify_registration_response import VerifiedRegistration

from purehealth_auth.config import Settings, get_settings
from purehealth_auth.core.exceptions import (
    ChallengeExpiredOrMissing,
    CredentialNotFound,
    DuplicateCredential,
    EmailAlreadyRegistered,
    LastCredential,
    PossibleCloneDetected,
    UserNotFound,
    ValidationError,
    VerificationFailed,
)
from purehealth_auth.core.relying_party import RelyingParty, default_relying_party
from purehealth_auth.models.contracts.webauthn import RegistrationProfile
from purehealth_auth.models.enums import ChallengePurpose
from purehealth_auth.models.orm.credential import WebAuthnCredential
from purehealth_auth.models.orm.user import User
from purehealth_auth.repositories.credential import CredentialRepository
from purehealth_auth.repositories.user import UserRepository
from purehealth_auth.services.challenge_ledger import ChallengeLedger, generate_challenge
from purehealth_auth.services.temp_registration import TemporaryRegistrationBuffer

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = [
    COSEAlgorithmIdentifier.EDDSA,
    COSEAlgorithmIdentifier.ECDSA_SHA_256,
    COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,
]


def _to_transports(values: list[str] | None) -> list[AuthenticatorTransport] | None:
    transports = []
    for value in values or []:
        try:
            transports.append(AuthenticatorTransport(value))
        except ValueError:
            logger.debug(f"Skipping unknown authenticator transport {value!r}")
    return transports or None


def _descriptors(credentials: list[WebAuthnCredential]) -> list[PublicKeyCredentialDescriptor]:
    return [
        PublicKeyCredentialDescriptor(id=c.credential_id, transports=_to_transports(c.transports))
        for c in credentials
    ]


class PasskeyService:
    """Server side of the WebAuthn registration and authentication ceremonies."""

    def __init__(
        self,
        db: AsyncSession,
        ledger: ChallengeLedger,
        temp_registrations: TemporaryRegistrationBuffer,
        *,
        settings: Settings | None = None,
        users: UserRepository | None = None,
        credentials: CredentialRepository | None = None,
    ):
        self.db = db
        self.ledger = ledger
        self.temp_registrations = temp_registrations
        self.settings = settings or get_settings()
        self.users = users or UserRepository(db)
        self.credentials = credentials or CredentialRepository(db)

    # ========================================================================
    # Registration
    # ========================================================================

    async def generate_temp_registration_options(
        self,
        profile: RegistrationProfile,
        relying_party: RelyingParty | None = None,
    ) -> tuple[str, dict[str, Any]]:
        """
        Start registration for a user who does not exist yet.

        The profile is buffered under a temporary registration id; the user
        row is created by verify_temp_registration.

        Returns:
            Tuple of (temp_registration_id, options_dict)

        Raises:
            EmailAlreadyRegistered: If the email already belongs to a user
        """
        if await self.users.get_by_email(profile.email) is not None:
            raise EmailAlreadyRegistered()

        pending = await self.temp_registrations.create(profile)
        options = await self._registration_options(
            subject=pending.temp_registration_id,
            user_handle=pending.webauthn_user_id,
            user_name=profile.email,
            display_name=profile.display_name,
            existing=[],
            is_primary=True,
            relying_party=relying_party,
        )
        return pending.temp_registration_id, options

    async def generate_registration_options(
        self,
        user_id: UUID,
        is_primary: bool = True,
        relying_party: RelyingParty | None = None,
    ) -> dict[str, Any]:
        """
        Generate options for an existing user enrolling another passkey.

        Raises:
            UserNotFound: If the user does not exist or is inactive
        """
        user = await self._get_active_user(user_id)

        if not user.webauthn_user_id:
            user.webauthn_user_id = generate_user_handle()
            await self.db.flush()

        existing = await self.credentials.get_by_user_id(user.id)
        return await self._registration_options(
            subject=str(user.id),
            user_handle=user.webauthn_user_id,
            user_name=user.email,
            display_name=user.display_name,
            existing=existing,
            is_primary=is_primary,
            relying_party=relying_party,
        )

    async def verify_temp_registration(
        self,
        temp_registration_id: str,
        credential_json: dict[str, Any],
        profile: RegistrationProfile | None = None,
        relying_party: RelyingParty | None = None,
    ) -> tuple[User, WebAuthnCredential]:
        """
        Verify a first passkey and create the user it belongs to.

        The challenge and the buffered profile are both consumed before
        anything else, so a failed attempt cannot be retried with them.

        Returns:
            Tuple of (created_user, created_credential)

        Raises:
            ChallengeExpiredOrMissing: No pending challenge/profile for the id
            ValidationError: Submitted profile does not match the buffered one
            VerificationFailed: The attestation response is invalid
            EmailAlreadyRegistered: The email was taken meanwhile
            DuplicateCredential: The credential id is already registered
        """
        challenge = await self.ledger.take_and_invalidate(
            temp_registration_id, ChallengePurpose.REGISTRATION
        )
        pending = await self.temp_registrations.take(temp_registration_id)
        if challenge is None or pending is None:
            raise ChallengeExpiredOrMissing()

        if profile is not None and profile.email != pending.profile.email:
            raise ValidationError("Profile does not match the pending registration")

        credential, verification = self._verify_attestation(
            credential_json, challenge.challenge, relying_party
        )

        if await self.users.get_by_email(pending.profile.email) is not None:
            raise EmailAlreadyRegistered()
        if await self.credentials.get_by_credential_id(verification.credential_id) is not None:
            raise DuplicateCredential()

        try:
            user = await self.users.create_user(
                email=pending.profile.email,
                first_name=pending.profile.first_name,
                middle_name=pending.profile.middle_name,
                last_name=pending.profile.last_name,
                role=pending.profile.role,
                webauthn_user_id=pending.webauthn_user_id,
            )
        except IntegrityError as e:
            raise EmailAlreadyRegistered() from e

        passkey = await self.credentials.insert(
            self._credential_row(user.id, credential, verification, is_primary=True)
        )

        logger.info(f"Created user {user.id} with primary passkey {passkey.id}")
        return user, passkey

    async def verify_registration(
        self,
        user_id: UUID,
        credential_json: dict[str, Any],
        is_primary: bool = True,
        relying_party: RelyingParty | None = None,
    ) -> WebAuthnCredential:
        """
        Verify a passkey for an existing user and store it.

        Registering a new primary passkey demotes the previous primary one.

        Raises:
            ChallengeExpiredOrMissing, UserNotFound, VerificationFailed,
            DuplicateCredential
        """
        challenge = await self.ledger.take_and_invalidate(
            str(user_id), ChallengePurpose.REGISTRATION
        )
        if challenge is None:
            raise ChallengeExpiredOrMissing()

        user = await self._get_active_user(user_id)

        credential, verification = self._verify_attestation(
            credential_json, challenge.challenge, relying_party
        )

        if await self.credentials.get_by_credential_id(verification.credential_id) is not None:
            raise DuplicateCredential()

        if is_primary:
            await self.credentials.clear_primary(user.id)

        passkey = await self.credentials.insert(
            self._credential_row(user.id, credential, verification, is_primary=is_primary)
        )

        logger.info(
            f"Registered {'primary' if is_primary else 'backup'} passkey {passkey.id} "
            f"for user {user.id}"
        )
        return passkey

    # ========================================================================
    # Authentication
    # ========================================================================

    async def generate_authentication_options(
        self,
        email: str,
        relying_party: RelyingParty | None = None,
    ) -> tuple[UUID, dict[str, Any]]:
        """
        Generate options for signing in with one of the user's passkeys.

        Returns:
            Tuple of (user_id, options_dict)

        Raises:
            UserNotFound: No active user with this email
            CredentialNotFound: The user has no registered passkeys
        """
        user = await self.users.get_by_email(email)
        if user is None or not user.is_active:
            raise UserNotFound()

        credentials = await self.credentials.get_by_user_id(user.id)
        if not credentials:
            raise CredentialNotFound("No passkeys registered for this account")

        rp = relying_party or default_relying_party(self.settings)
        options = generate_authentication_options(
            rp_id=rp.id,
            challenge=generate_challenge(),
            timeout=self.settings.webauthn_timeout_ms,
            allow_credentials=_descriptors(credentials),
            user_verification=UserVerificationRequirement.PREFERRED,
        )
        await self.ledger.put(str(user.id), options.challenge, ChallengePurpose.AUTHENTICATION)

        return user.id, json.loads(options_to_json(options))

    async def verify_authentication(
        self,
        user_id: UUID,
        credential_json: dict[str, Any],
        relying_party: RelyingParty | None = None,
    ) -> User:
        """
        Verify an assertion and advance the credential's signature counter.

        The reported counter must be strictly greater than the stored one,
        including for authenticators that always report 0.

        Returns:
            The authenticated User

        Raises:
            ChallengeExpiredOrMissing: No pending challenge for this user
            UserNotFound: The user does not exist or is inactive
            CredentialNotFound: The credential is not one of this user's
            VerificationFailed: The assertion is invalid
            PossibleCloneDetected: The signature counter did not advance
        """
        challenge = await self.ledger.take_and_invalidate(
            str(user_id), ChallengePurpose.AUTHENTICATION
        )
        if challenge is None:
            raise ChallengeExpiredOrMissing()

        user = await self._get_active_user(user_id)

        try:
            credential = parse_authentication_credential_json(json.dumps(credential_json))
        except Exception as e:
            raise VerificationFailed(f"Malformed authentication response: {e}") from e

        stored = await self.credentials.get_for_user(user.id, credential.raw_id)
        if stored is None:
            raise CredentialNotFound()

        rp = relying_party or default_relying_party(self.settings)
        try:
            # Counter is compared against the stored value below
            verification = verify_authentication_response(
                credential=credential,
                expected_challenge=challenge.challenge,
                expected_origin=rp.origins,
                expected_rp_id=rp.id,
                credential_public_key=stored.public_key,
                credential_current_sign_count=0,
                require_user_verification=self.settings.webauthn_require_user_verification,
            )
        except Exception as e:
            raise VerificationFailed(f"Authentication verification failed: {e}") from e

        new_count = verification.new_sign_count
        if new_count <= stored.sign_count or not await self.credentials.update_counter(
            stored.credential_id, new_count
        ):
            logger.critical(
                f"Possible cloned passkey {stored.id} for user {user.id}: "
                f"reported counter {new_count}, stored {stored.sign_count}"
            )
            raise PossibleCloneDetected()

        user.last_login = datetime.now(UTC)
        await self.db.flush()

        logger.info(f"Passkey authentication succeeded for user {user.id}")
        return user

    # ========================================================================
    # Passkey Management
    # ========================================================================

    async def list_credentials(self, user_id: UUID) -> list[WebAuthnCredential]:
        return await self.credentials.get_by_user_id(user_id)

    async def set_primary_credential(self, user_id: UUID, credential_row_id: UUID) -> WebAuthnCredential:
        """
        Make one of the user's passkeys the primary one.

        Raises:
            CredentialNotFound: If the passkey does not exist or is not the user's
        """
        passkey = await self._get_owned_credential(user_id, credential_row_id)
        await self.credentials.clear_primary(user_id)
        passkey.is_primary = True
        await self.db.flush()
        return passkey

    async def delete_credential(self, user_id: UUID, credential_row_id: UUID) -> WebAuthnCredential:
        """
        Remove one of the user's passkeys.

        If the primary passkey is removed, the oldest remaining one is promoted.

        Raises:
            CredentialNotFound: If the passkey does not exist or is not the user's
            LastCredential: If it is the user's only passkey
        """
        passkey = await self._get_owned_credential(user_id, credential_row_id)
        if await self.credentials.count_for_user(user_id) <= 1:
            raise LastCredential()

        was_primary = passkey.is_primary
        await self.credentials.delete(passkey)

        if was_primary:
            remaining = await self.credentials.get_by_user_id(user_id)
            if remaining and not any(c.is_primary for c in remaining):
                oldest = min(remaining, key=lambda c: c.created_at)
                oldest.is_primary = True
                await self.db.flush()
        return passkey

    # ========================================================================
    # Private Helpers
    # ========================================================================

    async def _registration_options(
        self,
        *,
        subject: str,
        user_handle: bytes,
        user_name: str,
        display_name: str,
        existing: list[WebAuthnCredential],
        is_primary: bool,
        relying_party: RelyingParty | None,
    ) -> dict[str, Any]:
        rp = relying_party or default_relying_party(self.settings)
        options = generate_registration_options(
            rp_id=rp.id,
            rp_name=rp.name,
            user_id=user_handle,
            user_name=user_name,
            user_display_name=display_name or user_name,
            challenge=generate_challenge(),
            timeout=self.settings.webauthn_timeout_ms,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                # Backup passkeys may live on a roaming security key
                authenticator_attachment=AuthenticatorAttachment.PLATFORM if is_primary else None,
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=UserVerificationRequirement.PREFERRED,
            ),
            exclude_credentials=_descriptors(existing) or None,
            supported_pub_key_algs=SUPPORTED_ALGORITHMS,
        )
        await self.ledger.put(subject, options.challenge, ChallengePurpose.REGISTRATION)
        return json.loads(options_to_json(options))

    def _verify_attestation(
        self,
        credential_json: dict[str, Any],
        expected_challenge: bytes,
        relying_party: RelyingParty | None,
    ) -> tuple[RegistrationCredential, VerifiedRegistration]:
        rp = relying_party or default_relying_party(self.settings)
        try:
            credential = parse_registration_credential_json(json.dumps(credential_json))
            verification = verify_registration_response(
                credential=credential,
                expected_challenge=expected_challenge,
                expected_origin=rp.origins,
                expected_rp_id=rp.id,
                require_user_verification=self.settings.webauthn_require_user_verification,
                supported_pub_key_algs=SUPPORTED_ALGORITHMS,
            )
        except Exception as e:
            raise VerificationFailed(f"Registration verification failed: {e}") from e
        return credential, verification

    @staticmethod
    def _credential_row(
        user_id: UUID,
        credential: RegistrationCredential,
        verification: VerifiedRegistration,
        *,
        is_primary: bool,
    ) -> WebAuthnCredential:
        return WebAuthnCredential(
            user_id=user_id,
            credential_id=verification.credential_id,
            public_key=verification.credential_public_key,
            sign_count=verification.sign_count,
            transports=[t.value for t in credential.response.transports or []],
            device_type=verification.credential_device_type.value,
            backed_up=verification.credential_backed_up,
            is_primary=is_primary,
            name="Primary Passkey" if is_primary else "Backup Passkey",
        )

    async def _get_active_user(self, user_id: UUID) -> User:
        user = await self.users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise UserNotFound()
        return user

    async def _get_owned_credential(self, user_id: UUID, credential_row_id: UUID) -> WebAuthnCredential:
        passkey = await self.credentials.get_by_id(credential_row_id)
        if passkey is None or passkey.user_id != user_id:
            raise CredentialNotFound()
        return passkey
