"""Unit tests for the temporary registration buffer."""

import pytest

from purehealth_auth.services.temp_registration import TemporaryRegistrationBuffer


@pytest.mark.unit
class TestTemporaryRegistrationBuffer:
    @pytest.mark.asyncio
    async def test_create_then_take(self, temp_registrations, sample_profile):
        created = await temp_registrations.create(sample_profile)

        taken = await temp_registrations.take(created.temp_registration_id)

        assert taken is not None
        assert taken.temp_registration_id.startswith("tmp-")
        assert taken.profile == sample_profile
        assert taken.webauthn_user_id == created.webauthn_user_id
        assert len(taken.webauthn_user_id) == 64

    @pytest.mark.asyncio
    async def test_take_is_destructive(self, temp_registrations, sample_profile):
        created = await temp_registrations.create(sample_profile)
        await temp_registrations.take(created.temp_registration_id)

        assert await temp_registrations.take(created.temp_registration_id) is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_gone(self, store, clock, sample_profile):
        buffer = TemporaryRegistrationBuffer(store, ttl_seconds=60)
        created = await buffer.create(sample_profile)
        clock.advance(61)

        assert await buffer.take(created.temp_registration_id) is None

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, temp_registrations, sample_profile):
        first = await temp_registrations.create(sample_profile)
        second = await temp_registrations.create(sample_profile)

        assert first.temp_registration_id != second.temp_registration_id
        assert first.webauthn_user_id != second.webauthn_user_id
