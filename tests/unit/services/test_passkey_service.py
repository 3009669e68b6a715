"""
Unit tests for PasskeyService.

Ceremonies run end to end against a software authenticator, so every
response is a real attestation or assertion verified by py_webauthn. The
repositories are in-memory fakes.
"""

import asyncio
from uuid import uuid4

import pytest
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url

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
from purehealth_auth.core.relying_party import RelyingParty
from purehealth_auth.models.contracts.webauthn import RegistrationProfile
from purehealth_auth.models.enums import UserStatus
from tests.helpers.software_authenticator import SoftwareAuthenticator


async def _login(service, authenticator, user):
    user_id, options = await service.generate_authentication_options(user.email)
    return await service.verify_authentication(user_id, authenticator.get_assertion(options))


async def _add_backup(service, authenticator, user, is_primary=False):
    options = await service.generate_registration_options(user.id, is_primary=is_primary)
    return await service.verify_registration(
        user.id, authenticator.make_credential(options), is_primary=is_primary
    )


# =============================================================================
# Temporary registration
# =============================================================================


@pytest.mark.unit
class TestTempRegistrationOptions:
    @pytest.mark.asyncio
    async def test_options_payload(self, passkey_service, sample_profile):
        temp_id, options = await passkey_service.generate_temp_registration_options(sample_profile)

        assert temp_id.startswith("tmp-")
        assert options["rp"] == {"id": "localhost", "name": "Purehealth Profit Management System"}
        assert options["user"]["name"] == "maria.santos@purehealth.example"
        assert options["user"]["displayName"] == "Maria Cruz Santos"
        assert len(base64url_to_bytes(options["challenge"])) == 32
        assert options["attestation"] == "none"
        assert options["timeout"] == 60000
        assert [p["alg"] for p in options["pubKeyCredParams"]] == [-8, -7, -257]
        selection = options["authenticatorSelection"]
        assert selection["residentKey"] == "preferred"
        assert selection["userVerification"] == "preferred"
        assert selection["authenticatorAttachment"] == "platform"
        assert options.get("excludeCredentials", []) == []

    @pytest.mark.asyncio
    async def test_creates_no_user(self, passkey_service, sample_profile, users):
        await passkey_service.generate_temp_registration_options(sample_profile)

        assert users.users == {}

    @pytest.mark.asyncio
    async def test_existing_email_rejected(self, passkey_service, registered_user, sample_profile_data):
        profile = RegistrationProfile.model_validate(
            {**sample_profile_data, "email": "  MARIA.SANTOS@purehealth.example "}
        )

        with pytest.raises(EmailAlreadyRegistered):
            await passkey_service.generate_temp_registration_options(profile)

    @pytest.mark.asyncio
    async def test_relying_party_override(self, passkey_service, sample_profile):
        rp = RelyingParty(
            id="clinic.example.com",
            name="Purehealth Profit Management System",
            origins=["https://clinic.example.com"],
        )

        _, options = await passkey_service.generate_temp_registration_options(
            sample_profile, relying_party=rp
        )

        assert options["rp"]["id"] == "clinic.example.com"


@pytest.mark.unit
class TestVerifyTempRegistration:
    @pytest.mark.asyncio
    async def test_creates_user_with_one_primary_credential(
        self, passkey_service, authenticator, sample_profile, users, credentials
    ):
        temp_id, options = await passkey_service.generate_temp_registration_options(sample_profile)

        user, passkey = await passkey_service.verify_temp_registration(
            temp_id, authenticator.make_credential(options)
        )

        assert list(users.users) == [user.id]
        assert user.email == "maria.santos@purehealth.example"
        assert user.status == UserStatus.ACTIVE
        assert user.webauthn_user_id == base64url_to_bytes(options["user"]["id"])
        assert list(credentials.credentials.values()) == [passkey]
        assert passkey.user_id == user.id
        assert passkey.is_primary is True
        assert passkey.credential_id == authenticator.only_credential().credential_id
        assert passkey.transports == ["internal"]
        assert passkey.sign_count == 0

    @pytest.mark.asyncio
    async def test_matching_profile_accepted(
        self, passkey_service, authenticator, sample_profile
    ):
        temp_id, options = await passkey_service.generate_temp_registration_options(sample_profile)

        user, _ = await passkey_service.verify_temp_registration(
            temp_id, authenticator.make_credential(options), profile=sample_profile
        )

        assert user.first_name == "Maria"

    @pytest.mark.asyncio
    async def test_mismatched_profile_rejected(
        self, passkey_service, authenticator, sample_profile, sample_profile_data, users
    ):
        temp_id, options = await passkey_service.generate_temp_registration_options(sample_profile)
        other = RegistrationProfile.model_validate(
            {**sample_profile_data, "email": "someone.else@purehealth.example"}
        )

        with pytest.raises(ValidationError):
            await passkey_service.verify_temp_registration(
                temp_id, authenticator.make_credential(options), profile=other
            )
        assert users.users == {}

    @pytest.mark.asyncio
    async def test_failed_verification_creates_nothing(
        self, passkey_service, authenticator, sample_profile, users, credentials
    ):
        temp_id, options = await passkey_service.generate_temp_registration_options(sample_profile)
        response = authenticator.make_credential(options, origin="https://evil.example.net")

        with pytest.raises(VerificationFailed):
            await passkey_service.verify_temp_registration(temp_id, response)

        assert users.users == {}
        assert credentials.credentials == {}

    @pytest.mark.asyncio
    async def test_temp_registration_is_single_use(
        self, passkey_service, authenticator, sample_profile
    ):
        temp_id, options = await passkey_service.generate_temp_registration_options(sample_profile)
        response = authenticator.make_credential(options)
        await passkey_service.verify_temp_registration(temp_id, response)

        with pytest.raises(ChallengeExpiredOrMissing):
            await passkey_service.verify_temp_registration(temp_id, response)

    @pytest.mark.asyncio
    async def test_failed_attempt_consumes_challenge(
        self, passkey_service, authenticator, sample_profile, users
    ):
        temp_id, options = await passkey_service.generate_temp_registration_options(sample_profile)
        with pytest.raises(VerificationFailed):
            await passkey_service.verify_temp_registration(
                temp_id, authenticator.make_credential(options, origin="https://evil.example.net")
            )

        with pytest.raises(ChallengeExpiredOrMissing):
            await passkey_service.verify_temp_registration(
                temp_id, authenticator.make_credential(options)
            )
        assert users.users == {}

    @pytest.mark.asyncio
    async def test_expired_challenge(self, passkey_service, authenticator, sample_profile, clock):
        temp_id, options = await passkey_service.generate_temp_registration_options(sample_profile)
        clock.advance(301)

        with pytest.raises(ChallengeExpiredOrMissing):
            await passkey_service.verify_temp_registration(
                temp_id, authenticator.make_credential(options)
            )

    @pytest.mark.asyncio
    async def test_unknown_temp_id(self, passkey_service, authenticator, sample_profile):
        _, options = await passkey_service.generate_temp_registration_options(sample_profile)

        with pytest.raises(ChallengeExpiredOrMissing):
            await passkey_service.verify_temp_registration(
                "tmp-unknown", authenticator.make_credential(options)
            )

    @pytest.mark.asyncio
    async def test_duplicate_credential_rejected(
        self, passkey_service, authenticator, registered_user, admin_profile, users
    ):
        existing_id = authenticator.only_credential().credential_id
        temp_id, options = await passkey_service.generate_temp_registration_options(admin_profile)

        with pytest.raises(DuplicateCredential):
            await passkey_service.verify_temp_registration(
                temp_id, SoftwareAuthenticator().make_credential(options, credential_id=existing_id)
            )
        assert list(users.users) == [registered_user.id]

    @pytest.mark.asyncio
    async def test_email_taken_between_options_and_verify(
        self, passkey_service, sample_profile, users
    ):
        first_id, first_options = await passkey_service.generate_temp_registration_options(
            sample_profile
        )
        second_id, second_options = await passkey_service.generate_temp_registration_options(
            sample_profile
        )
        await passkey_service.verify_temp_registration(
            first_id, SoftwareAuthenticator().make_credential(first_options)
        )

        with pytest.raises(EmailAlreadyRegistered):
            await passkey_service.verify_temp_registration(
                second_id, SoftwareAuthenticator().make_credential(second_options)
            )
        assert len(users.users) == 1


# =============================================================================
# Existing-user registration
# =============================================================================


@pytest.mark.unit
class TestExistingUserRegistration:
    @pytest.mark.asyncio
    async def test_backup_options_exclude_existing_credentials(
        self, passkey_service, authenticator, registered_user
    ):
        options = await passkey_service.generate_registration_options(
            registered_user.id, is_primary=False
        )

        existing = authenticator.only_credential().credential_id
        assert [c["id"] for c in options["excludeCredentials"]] == [bytes_to_base64url(existing)]
        assert "authenticatorAttachment" not in options["authenticatorSelection"]
        assert options["user"]["id"] == bytes_to_base64url(registered_user.webauthn_user_id)

    @pytest.mark.asyncio
    async def test_backup_keeps_existing_primary(
        self, passkey_service, authenticator, registered_user, credentials
    ):
        backup = await _add_backup(passkey_service, SoftwareAuthenticator(), registered_user)

        stored = await credentials.get_by_user_id(registered_user.id)
        assert len(stored) == 2
        assert backup.is_primary is False
        assert [c.is_primary for c in stored] == [True, False]

    @pytest.mark.asyncio
    async def test_new_primary_demotes_previous(
        self, passkey_service, registered_user, credentials
    ):
        new_primary = await _add_backup(
            passkey_service, SoftwareAuthenticator(), registered_user, is_primary=True
        )

        stored = await credentials.get_by_user_id(registered_user.id)
        assert [c.id for c in stored if c.is_primary] == [new_primary.id]

    @pytest.mark.asyncio
    async def test_unknown_user(self, passkey_service):
        with pytest.raises(UserNotFound):
            await passkey_service.generate_registration_options(uuid4())

    @pytest.mark.asyncio
    async def test_verify_without_options(self, passkey_service, authenticator, registered_user):
        options = await passkey_service.generate_registration_options(registered_user.id)
        response = authenticator.make_credential(options)
        await passkey_service.verify_registration(registered_user.id, response)

        with pytest.raises(ChallengeExpiredOrMissing):
            await passkey_service.verify_registration(registered_user.id, response)

    @pytest.mark.asyncio
    async def test_authentication_challenge_cannot_register(
        self, passkey_service, authenticator, registered_user
    ):
        reg_options = await passkey_service.generate_registration_options(registered_user.id)
        await passkey_service.generate_authentication_options(registered_user.email)

        with pytest.raises(ChallengeExpiredOrMissing):
            await passkey_service.verify_registration(
                registered_user.id, authenticator.make_credential(reg_options)
            )


# =============================================================================
# Authentication
# =============================================================================


@pytest.mark.unit
class TestAuthenticationOptions:
    @pytest.mark.asyncio
    async def test_options_payload(self, passkey_service, authenticator, registered_user):
        user_id, options = await passkey_service.generate_authentication_options(
            "  Maria.Santos@purehealth.example"
        )

        assert user_id == registered_user.id
        assert options["rpId"] == "localhost"
        assert options["userVerification"] == "preferred"
        assert len(base64url_to_bytes(options["challenge"])) == 32
        (allowed,) = options["allowCredentials"]
        assert allowed["id"] == bytes_to_base64url(authenticator.only_credential().credential_id)
        assert allowed["transports"] == ["internal"]

    @pytest.mark.asyncio
    async def test_unknown_email(self, passkey_service):
        with pytest.raises(UserNotFound):
            await passkey_service.generate_authentication_options("nobody@purehealth.example")

    @pytest.mark.asyncio
    async def test_inactive_user_reported_as_not_found(self, passkey_service, registered_user):
        registered_user.status = UserStatus.INACTIVE

        with pytest.raises(UserNotFound):
            await passkey_service.generate_authentication_options(registered_user.email)

    @pytest.mark.asyncio
    async def test_user_without_credentials(self, passkey_service, users):
        user = await users.create_user("new@purehealth.example", "New", "User")

        with pytest.raises(CredentialNotFound):
            await passkey_service.generate_authentication_options(user.email)


@pytest.mark.unit
class TestVerifyAuthentication:
    @pytest.mark.asyncio
    async def test_success_advances_counter(
        self, passkey_service, authenticator, registered_user, credentials
    ):
        user = await _login(passkey_service, authenticator, registered_user)

        assert user.id == registered_user.id
        assert user.last_login is not None
        (stored,) = credentials.credentials.values()
        assert stored.sign_count == 1
        assert stored.last_used_at is not None

    @pytest.mark.asyncio
    async def test_successive_logins(self, passkey_service, authenticator, registered_user, credentials):
        for _ in range(3):
            await _login(passkey_service, authenticator, registered_user)

        (stored,) = credentials.credentials.values()
        assert stored.sign_count == 3

    @pytest.mark.asyncio
    async def test_replayed_response_rejected(self, passkey_service, authenticator, registered_user):
        user_id, options = await passkey_service.generate_authentication_options(
            registered_user.email
        )
        response = authenticator.get_assertion(options)
        await passkey_service.verify_authentication(user_id, response)

        with pytest.raises(ChallengeExpiredOrMissing):
            await passkey_service.verify_authentication(user_id, response)

    @pytest.mark.asyncio
    async def test_response_for_stale_challenge_rejected(
        self, passkey_service, authenticator, registered_user
    ):
        user_id, old_options = await passkey_service.generate_authentication_options(
            registered_user.email
        )
        stale = authenticator.get_assertion(old_options)
        await passkey_service.generate_authentication_options(registered_user.email)

        with pytest.raises(VerificationFailed):
            await passkey_service.verify_authentication(user_id, stale)

    @pytest.mark.asyncio
    async def test_counter_regression_detected(
        self, passkey_service, authenticator, registered_user, credentials
    ):
        await _login(passkey_service, authenticator, registered_user)
        authenticator.only_credential().sign_count = 0

        with pytest.raises(PossibleCloneDetected):
            await _login(passkey_service, authenticator, registered_user)

        (stored,) = credentials.credentials.values()
        assert stored.sign_count == 1

    @pytest.mark.asyncio
    async def test_counterless_authenticator_rejected(
        self, passkey_service, sample_profile, credentials
    ):
        authenticator = SoftwareAuthenticator(supports_counter=False)
        temp_id, options = await passkey_service.generate_temp_registration_options(sample_profile)
        user, _ = await passkey_service.verify_temp_registration(
            temp_id, authenticator.make_credential(options)
        )

        with pytest.raises(PossibleCloneDetected):
            await _login(passkey_service, authenticator, user)

        (stored,) = credentials.credentials.values()
        assert stored.sign_count == 0
        assert stored.last_used_at is None
        assert user.last_login is None

    @pytest.mark.asyncio
    async def test_zero_counter_after_nonzero_is_a_clone(
        self, passkey_service, authenticator, registered_user
    ):
        await _login(passkey_service, authenticator, registered_user)
        authenticator.supports_counter = False
        authenticator.only_credential().sign_count = 0

        with pytest.raises(PossibleCloneDetected):
            await _login(passkey_service, authenticator, registered_user)

    @pytest.mark.asyncio
    async def test_other_users_credential_rejected(
        self, passkey_service, authenticator, registered_user, admin_profile
    ):
        admin_authenticator = SoftwareAuthenticator()
        temp_id, options = await passkey_service.generate_temp_registration_options(admin_profile)
        admin, _ = await passkey_service.verify_temp_registration(
            temp_id, admin_authenticator.make_credential(options)
        )

        _, options = await passkey_service.generate_authentication_options(admin.email)
        foreign = authenticator.get_assertion(
            options, credential_id=authenticator.only_credential().credential_id
        )

        with pytest.raises(CredentialNotFound):
            await passkey_service.verify_authentication(admin.id, foreign)

    @pytest.mark.asyncio
    async def test_wrong_origin_rejected(self, passkey_service, authenticator, registered_user):
        user_id, options = await passkey_service.generate_authentication_options(
            registered_user.email
        )

        with pytest.raises(VerificationFailed):
            await passkey_service.verify_authentication(
                user_id, authenticator.get_assertion(options, origin="https://evil.example.net")
            )

    @pytest.mark.asyncio
    async def test_malformed_response_rejected(self, passkey_service, registered_user):
        user_id, _ = await passkey_service.generate_authentication_options(registered_user.email)

        with pytest.raises(VerificationFailed):
            await passkey_service.verify_authentication(user_id, {"id": "nope"})

    @pytest.mark.asyncio
    async def test_deactivated_between_options_and_verify(
        self, passkey_service, authenticator, registered_user
    ):
        user_id, options = await passkey_service.generate_authentication_options(
            registered_user.email
        )
        registered_user.status = UserStatus.INACTIVE

        with pytest.raises(UserNotFound):
            await passkey_service.verify_authentication(
                user_id, authenticator.get_assertion(options)
            )

    @pytest.mark.asyncio
    async def test_concurrent_verifications_succeed_once(
        self, passkey_service, authenticator, registered_user, credentials
    ):
        user_id, options = await passkey_service.generate_authentication_options(
            registered_user.email
        )
        response = authenticator.get_assertion(options)

        results = await asyncio.gather(
            passkey_service.verify_authentication(user_id, response),
            passkey_service.verify_authentication(user_id, response),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], ChallengeExpiredOrMissing)
        (stored,) = credentials.credentials.values()
        assert stored.sign_count == 1

    @pytest.mark.asyncio
    async def test_relying_party_from_request(self, passkey_service, sample_profile):
        rp = RelyingParty(
            id="clinic.example.com",
            name="Purehealth Profit Management System",
            origins=["https://clinic.example.com"],
        )
        authenticator = SoftwareAuthenticator(origin="https://clinic.example.com")
        temp_id, options = await passkey_service.generate_temp_registration_options(
            sample_profile, relying_party=rp
        )
        user, _ = await passkey_service.verify_temp_registration(
            temp_id, authenticator.make_credential(options), relying_party=rp
        )

        user_id, options = await passkey_service.generate_authentication_options(
            user.email, relying_party=rp
        )
        result = await passkey_service.verify_authentication(
            user_id, authenticator.get_assertion(options), relying_party=rp
        )

        assert result.id == user.id


# =============================================================================
# Passkey management
# =============================================================================


@pytest.mark.unit
class TestPasskeyManagement:
    @pytest.mark.asyncio
    async def test_list_primary_first(self, passkey_service, registered_user):
        await _add_backup(passkey_service, SoftwareAuthenticator(), registered_user)

        listed = await passkey_service.list_credentials(registered_user.id)

        assert [c.is_primary for c in listed] == [True, False]

    @pytest.mark.asyncio
    async def test_set_primary(self, passkey_service, registered_user, credentials):
        backup = await _add_backup(passkey_service, SoftwareAuthenticator(), registered_user)

        updated = await passkey_service.set_primary_credential(registered_user.id, backup.id)

        assert updated.is_primary is True
        stored = await credentials.get_by_user_id(registered_user.id)
        assert [c.id for c in stored if c.is_primary] == [backup.id]

    @pytest.mark.asyncio
    async def test_set_primary_other_users_credential(self, passkey_service, registered_user):
        (own,) = await passkey_service.list_credentials(registered_user.id)

        with pytest.raises(CredentialNotFound):
            await passkey_service.set_primary_credential(uuid4(), own.id)

    @pytest.mark.asyncio
    async def test_delete_last_credential_refused(self, passkey_service, registered_user):
        (only,) = await passkey_service.list_credentials(registered_user.id)

        with pytest.raises(LastCredential):
            await passkey_service.delete_credential(registered_user.id, only.id)

    @pytest.mark.asyncio
    async def test_delete_backup(self, passkey_service, registered_user, credentials):
        backup = await _add_backup(passkey_service, SoftwareAuthenticator(), registered_user)

        await passkey_service.delete_credential(registered_user.id, backup.id)

        assert await credentials.count_for_user(registered_user.id) == 1

    @pytest.mark.asyncio
    async def test_deleting_primary_promotes_remaining(
        self, passkey_service, registered_user, credentials
    ):
        backup = await _add_backup(passkey_service, SoftwareAuthenticator(), registered_user)
        primary = next(c for c in credentials.credentials.values() if c.is_primary)

        await passkey_service.delete_credential(registered_user.id, primary.id)

        assert backup.is_primary is True

    @pytest.mark.asyncio
    async def test_delete_unknown(self, passkey_service, registered_user):
        with pytest.raises(CredentialNotFound):
            await passkey_service.delete_credential(registered_user.id, uuid4())
