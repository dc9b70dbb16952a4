"""
Unit tests for the OTP password reset flow.
"""
from unittest.mock import patch

import pytest

from core.errors import ErrorKind
from services.otp import challenge_key, verified_key
from services.password_reset import PasswordResetService, ResetChallenge

ALICE = "alice@example.com"


def wrong_otp(otp: str) -> str:
    return "100000" if otp != "100000" else "100001"


class TestRequestReset:

    @pytest.mark.asyncio
    async def test_unknown_email_is_not_found_and_stores_nothing(self, reset_service, state_store, notifier):
        result = await reset_service.request_reset("nobody@example.com")

        assert not result.success
        assert result.error == ErrorKind.NOT_FOUND
        assert result.status_code == 404
        assert await state_store.get(challenge_key("nobody@example.com")) is None
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_request_stores_challenge_and_sends_otp(self, reset_service, credentials, state_store, notifier, clock):
        credentials.add(ALICE)

        result = await reset_service.request_reset(ALICE)

        assert result.success
        assert result.message == "OTP sent to your email."
        # the code only travels out-of-band
        assert result.data is None
        stored = ResetChallenge.from_dict(await state_store.get(challenge_key(ALICE)))
        assert stored.email == ALICE
        assert stored.otp == notifier.last_otp(ALICE)
        assert 100000 <= int(stored.otp) <= 999999
        assert stored.verified is False
        assert stored.issued_at == clock.now()
        assert (stored.expires_at - stored.issued_at).total_seconds() == 600

    @pytest.mark.asyncio
    async def test_email_is_normalized(self, reset_service, credentials, notifier):
        credentials.add(ALICE)

        result = await reset_service.request_reset("  Alice@Example.COM ")

        assert result.success
        assert notifier.sent[-1][0] == ALICE

    @pytest.mark.asyncio
    async def test_failed_delivery_is_internal_and_drops_challenge(self, reset_service, credentials, state_store, notifier):
        credentials.add(ALICE)
        notifier.deliver = False

        result = await reset_service.request_reset(ALICE)

        assert result.error == ErrorKind.INTERNAL
        assert result.status_code == 500
        assert await state_store.get(challenge_key(ALICE)) is None

    @pytest.mark.asyncio
    async def test_store_failure_is_reported_as_internal(self, reset_service, credentials, state_store):
        credentials.add(ALICE)
        with patch.object(state_store, "put", side_effect=ConnectionError("redis down")):
            result = await reset_service.request_reset(ALICE)

        assert result.error == ErrorKind.INTERNAL
        assert result.message == "Internal server error"


class TestVerifyOtp:

    @pytest.mark.asyncio
    async def test_correct_otp_verifies_and_wrong_otp_fails(self, reset_service, credentials, state_store, notifier):
        credentials.add(ALICE)
        await reset_service.request_reset(ALICE)
        otp = notifier.last_otp(ALICE)

        bad = await reset_service.verify_otp(ALICE, wrong_otp(otp))
        assert bad.error == ErrorKind.INVALID_OR_EXPIRED
        assert bad.status_code == 400
        assert await state_store.get(verified_key(ALICE)) is None

        good = await reset_service.verify_otp(ALICE, otp)
        assert good.success
        assert good.message == "OTP verified. You may now reset your password."
        assert await state_store.get(verified_key(ALICE)) is True
        assert ResetChallenge.from_dict(await state_store.get(challenge_key(ALICE))).verified is True

    @pytest.mark.asyncio
    async def test_absent_challenge_fails_like_wrong_code(self, reset_service):
        result = await reset_service.verify_otp(ALICE, "123456")

        assert result.error == ErrorKind.INVALID_OR_EXPIRED
        assert result.message == "Invalid or expired OTP."

    @pytest.mark.asyncio
    @pytest.mark.parametrize("candidate", ["", "12345", "1234567", "abcdef", None])
    async def test_malformed_otp_fails_closed(self, reset_service, credentials, candidate):
        credentials.add(ALICE)
        await reset_service.request_reset(ALICE)

        result = await reset_service.verify_otp(ALICE, candidate)

        assert result.error == ErrorKind.INVALID_OR_EXPIRED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("digits", [
        "\u0664\u0668\u0662\u0669\u0661\u0663",
        "\uff14\uff18\uff12\uff19\uff11\uff13",
    ])
    async def test_non_ascii_digits_are_rejected_as_invalid(self, reset_service, credentials, state_store, digits):
        credentials.add(ALICE)
        with patch("services.password_reset.generate_otp", return_value="482913"):
            await reset_service.request_reset(ALICE)

        result = await reset_service.verify_otp(ALICE, digits)

        assert result.error == ErrorKind.INVALID_OR_EXPIRED
        assert result.status_code == 400
        assert await state_store.get(verified_key(ALICE)) is None

    @pytest.mark.asyncio
    async def test_correct_otp_fails_after_ttl(self, reset_service, credentials, notifier, clock):
        credentials.add(ALICE)
        await reset_service.request_reset(ALICE)
        otp = notifier.last_otp(ALICE)

        clock.advance(600)

        result = await reset_service.verify_otp(ALICE, otp)
        assert result.error == ErrorKind.INVALID_OR_EXPIRED

    @pytest.mark.asyncio
    async def test_otp_still_valid_just_before_expiry(self, reset_service, credentials, notifier, clock):
        credentials.add(ALICE)
        await reset_service.request_reset(ALICE)

        clock.advance(599)

        assert (await reset_service.verify_otp(ALICE, notifier.last_otp(ALICE))).success

    @pytest.mark.asyncio
    async def test_reverify_with_same_code_is_allowed(self, reset_service, credentials, notifier):
        credentials.add(ALICE)
        await reset_service.request_reset(ALICE)
        otp = notifier.last_otp(ALICE)

        assert (await reset_service.verify_otp(ALICE, otp)).success
        assert (await reset_service.verify_otp(ALICE, otp)).success

    @pytest.mark.asyncio
    async def test_rerequest_invalidates_previous_otp(self, reset_service, credentials, notifier):
        credentials.add(ALICE)
        with patch("services.password_reset.generate_otp", side_effect=["111111", "222222"]):
            await reset_service.request_reset(ALICE)
            await reset_service.request_reset(ALICE)

        assert len(notifier.sent) == 2
        assert (await reset_service.verify_otp(ALICE, "111111")).error == ErrorKind.INVALID_OR_EXPIRED
        assert (await reset_service.verify_otp(ALICE, "222222")).success

    @pytest.mark.asyncio
    async def test_malformed_stored_challenge_is_treated_as_absent(self, reset_service, state_store):
        await state_store.put(challenge_key(ALICE), {"otp": "123456"}, 600)

        result = await reset_service.verify_otp(ALICE, "123456")

        assert result.error == ErrorKind.INVALID_OR_EXPIRED


class TestCommitPassword:

    @pytest.mark.asyncio
    async def test_commit_without_verify_is_rejected(self, reset_service, credentials):
        user = credentials.add(ALICE)
        await reset_service.request_reset(ALICE)

        result = await reset_service.commit_password(ALICE, "NewPass1!")

        assert result.error == ErrorKind.NOT_VERIFIED
        assert result.status_code == 403
        assert result.message == "OTP not verified or expired."
        assert user.hashed_password == "original-hash"

    @pytest.mark.asyncio
    async def test_commit_after_verify_updates_and_clears_state(self, reset_service, credentials, state_store, notifier):
        user = credentials.add(ALICE)
        await reset_service.request_reset(ALICE)
        otp = notifier.last_otp(ALICE)
        await reset_service.verify_otp(ALICE, otp)

        result = await reset_service.commit_password(ALICE, "NewPass1!")

        assert result.success
        assert result.message == "Password reset successful."
        assert user.hashed_password == "hashed:NewPass1!"
        assert await state_store.get(challenge_key(ALICE)) is None
        assert await state_store.get(verified_key(ALICE)) is None
        assert (await reset_service.verify_otp(ALICE, otp)).error == ErrorKind.INVALID_OR_EXPIRED
        assert (await reset_service.commit_password(ALICE, "Another1!")).error == ErrorKind.NOT_VERIFIED

    @pytest.mark.asyncio
    async def test_rerequest_after_verify_requires_new_verification(self, reset_service, credentials, state_store, notifier):
        user = credentials.add(ALICE)
        await reset_service.request_reset(ALICE)
        await reset_service.verify_otp(ALICE, notifier.last_otp(ALICE))

        await reset_service.request_reset(ALICE)

        assert await state_store.get(verified_key(ALICE)) is None
        result = await reset_service.commit_password(ALICE, "NewPass1!")
        assert result.error == ErrorKind.NOT_VERIFIED
        assert user.hashed_password == "original-hash"

        assert (await reset_service.verify_otp(ALICE, notifier.last_otp(ALICE))).success
        assert (await reset_service.commit_password(ALICE, "NewPass1!")).success
        assert user.hashed_password == "hashed:NewPass1!"

    @pytest.mark.asyncio
    async def test_cleanup_failure_after_update_still_succeeds(self, reset_service, credentials, state_store, notifier):
        user = credentials.add(ALICE)
        await reset_service.request_reset(ALICE)
        await reset_service.verify_otp(ALICE, notifier.last_otp(ALICE))

        with patch.object(state_store, "delete", side_effect=ConnectionError("redis down")):
            result = await reset_service.commit_password(ALICE, "NewPass1!")

        assert result.success
        assert result.message == "Password reset successful."
        assert user.hashed_password == "hashed:NewPass1!"

    @pytest.mark.asyncio
    async def test_verified_marker_expires(self, reset_service, credentials, notifier, clock):
        user = credentials.add(ALICE)
        await reset_service.request_reset(ALICE)
        await reset_service.verify_otp(ALICE, notifier.last_otp(ALICE))

        clock.advance(600)

        assert (await reset_service.commit_password(ALICE, "NewPass1!")).error == ErrorKind.NOT_VERIFIED
        assert user.hashed_password == "original-hash"

    @pytest.mark.asyncio
    async def test_commit_for_deleted_account_is_not_found(self, reset_service, credentials, notifier):
        credentials.add(ALICE)
        await reset_service.request_reset(ALICE)
        await reset_service.verify_otp(ALICE, notifier.last_otp(ALICE))
        credentials.users.clear()

        result = await reset_service.commit_password(ALICE, "NewPass1!")

        assert result.error == ErrorKind.NOT_FOUND
        assert result.status_code == 404

    @pytest.mark.asyncio
    async def test_storage_failure_is_internal_and_keeps_marker(self, reset_service, credentials, state_store, notifier):
        credentials.add(ALICE)
        await reset_service.request_reset(ALICE)
        await reset_service.verify_otp(ALICE, notifier.last_otp(ALICE))
        credentials.fail_updates = True

        result = await reset_service.commit_password(ALICE, "NewPass1!")

        assert result.error == ErrorKind.INTERNAL
        assert await state_store.get(verified_key(ALICE)) is True

    @pytest.mark.asyncio
    async def test_hash_failure_is_internal(self, state_store, credentials, notifier, clock):
        def broken_hasher(password):
            raise ValueError("hash backend unavailable")

        service = PasswordResetService(state_store, credentials, notifier, ttl_seconds=600, hasher=broken_hasher, now=clock.now)
        user = credentials.add(ALICE)
        await service.request_reset(ALICE)
        await service.verify_otp(ALICE, notifier.last_otp(ALICE))

        result = await service.commit_password(ALICE, "NewPass1!")

        assert result.error == ErrorKind.INTERNAL
        assert user.hashed_password == "original-hash"


class TestResetScenario:

    @pytest.mark.asyncio
    async def test_alice_end_to_end(self, reset_service, credentials):
        user = credentials.add(ALICE)

        with patch("services.password_reset.generate_otp", return_value="482913"):
            assert (await reset_service.request_reset(ALICE)).success

        assert (await reset_service.verify_otp(ALICE, "482913")).success
        assert (await reset_service.commit_password(ALICE, "NewPass1!")).success
        assert user.hashed_password == "hashed:NewPass1!"

        repeat = await reset_service.verify_otp(ALICE, "482913")
        assert repeat.error == ErrorKind.INVALID_OR_EXPIRED

    @pytest.mark.asyncio
    async def test_real_hasher_produces_verifiable_hash(self, state_store, credentials, notifier, clock):
        from core.security import verify_password

        service = PasswordResetService(state_store, credentials, notifier, ttl_seconds=600, now=clock.now)
        user = credentials.add(ALICE)
        await service.request_reset(ALICE)
        await service.verify_otp(ALICE, notifier.last_otp(ALICE))

        assert (await service.commit_password(ALICE, "NewPass1!")).success
        assert verify_password("NewPass1!", user.hashed_password)


def test_explicit_zero_ttl_is_kept(state_store, credentials, notifier):
    service = PasswordResetService(state_store, credentials, notifier, ttl_seconds=0)

    assert service.ttl_seconds == 0


def test_default_ttl_comes_from_settings(state_store, credentials, notifier):
    service = PasswordResetService(state_store, credentials, notifier)

    assert service.ttl_seconds == 600
