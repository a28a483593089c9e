"""Tests for OtpService orchestration against a real (temp) SQLite database."""

from __future__ import annotations

from datetime import timedelta

import pytest

from app import db
from app.errors import (
    AccountStateError,
    DeliveryError,
    InvalidOtpError,
    LockoutError,
    NotFoundError,
    QuotaExceededError,
    RateLimitError,
    ValidationError,
)
from app.services.otp import OtpManager
from app.services.otp_service import OtpService
from app.services.phone_rate_limiter import PhoneRateLimiter
from app.services.sms import SmsSender
from tests.mocks.models import OTHER_PHONE, PHONE
from tests.mocks.services import (
    BrokenSmsProvider,
    FailingSmsProvider,
    FakeClock,
    RecordingSmsProvider,
)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sms() -> RecordingSmsProvider:
    return RecordingSmsProvider()


@pytest.fixture()
def service(clock, sms) -> OtpService:
    return OtpService(
        OtpManager(clock=clock),
        PhoneRateLimiter(clock=clock),
        SmsSender([sms]),
        development=False,
    )


@pytest.fixture()
async def user(test_db):
    return await db.create_user("Jane", "jane@example.com", phone_number=PHONE)


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


class TestSendOtp:
    async def test_generates_persists_and_delivers(self, service, user, sms):
        issued = await service.send_otp(PHONE)

        stored = await db.get_user(user.id)
        assert stored.phone_otp.code == issued.code
        assert stored.phone_otp.expires_at == issued.expires_at
        assert stored.otp_request_count.count == 1
        assert issued.expires_in == 60
        assert issued.remaining_requests == 4

        destination, body = sms.sent[0]
        assert destination == PHONE
        assert issued.code in body
        assert "Valid for 60 seconds" in body

    async def test_phone_is_cleaned_before_lookup(self, service, user):
        issued = await service.send_otp("+1 (555) 123-4567")
        assert (await db.get_user(user.id)).phone_otp.code == issued.code

    async def test_invalid_phone_rejected_before_rate_limiter(self, service):
        with pytest.raises(ValidationError):
            await service.send_otp("12")
        assert len(service.rate_limiter) == 0

    async def test_unknown_number(self, service, test_db):
        with pytest.raises(NotFoundError):
            await service.send_otp(OTHER_PHONE)

    async def test_rate_limited_before_user_lookup(self, service, test_db):
        for _ in range(10):
            with pytest.raises(NotFoundError):
                await service.send_otp(OTHER_PHONE)

        with pytest.raises(RateLimitError) as exc_info:
            await service.send_otp(OTHER_PHONE)
        assert exc_info.value.status_code == 429
        assert exc_info.value.extra["retryAfter"] is not None

    async def test_deactivated_account(self, service, user):
        await db.set_user_active(user.id, False)
        with pytest.raises(AccountStateError):
            await service.send_otp(PHONE)

    async def test_daily_quota(self, service, user, clock):
        for _ in range(5):
            await service.send_otp(PHONE)
            clock.advance(minutes=2)

        with pytest.raises(QuotaExceededError) as exc_info:
            await service.send_otp(PHONE)
        assert "Daily OTP limit exceeded" in exc_info.value.detail
        assert exc_info.value.status_code == 429

        clock.advance(hours=24)
        issued = await service.send_otp(PHONE)
        assert issued.remaining_requests == 4

    async def test_delivery_failure_rolls_back_code_and_quota(self, clock, user):
        service = OtpService(
            OtpManager(clock=clock),
            PhoneRateLimiter(clock=clock),
            SmsSender([RecordingSmsProvider()]),
        )
        await service.send_otp(PHONE)
        clock.advance(minutes=5)

        service.sms_sender = SmsSender([FailingSmsProvider("Twilio", "down")])
        with pytest.raises(DeliveryError, match="Twilio: down"):
            await service.send_otp(PHONE)

        stored = await db.get_user(user.id)
        assert stored.phone_otp.code is None
        assert stored.phone_otp.expires_at is None
        assert stored.otp_request_count.count == 1

    async def test_unexpected_provider_error_rolls_back(self, clock, user):
        service = OtpService(
            OtpManager(clock=clock),
            PhoneRateLimiter(clock=clock),
            SmsSender([BrokenSmsProvider()]),
        )

        with pytest.raises(DeliveryError, match="Broken: provider bug"):
            await service.send_otp(PHONE)

        stored = await db.get_user(user.id)
        assert stored.phone_otp.code is None
        assert stored.otp_request_count.count == 0

    async def test_error_outside_the_sender_rolls_back(self, service, user, monkeypatch):
        async def _explode(destination, body):
            raise RuntimeError("sender bug")

        monkeypatch.setattr(service.sms_sender, "send", _explode)

        with pytest.raises(RuntimeError):
            await service.send_otp(PHONE)

        stored = await db.get_user(user.id)
        assert stored.phone_otp.code is None
        assert stored.otp_request_count.count == 0

    async def test_user_lock_is_released_after_request(self, service, user):
        await service.send_otp(PHONE)
        assert user.id not in service._locks

    async def test_delivery_failure_in_development_keeps_code(self, clock, user):
        service = OtpService(
            OtpManager(clock=clock),
            PhoneRateLimiter(clock=clock),
            SmsSender([FailingSmsProvider()]),
            development=True,
        )
        issued = await service.send_otp(PHONE)

        stored = await db.get_user(user.id)
        assert stored.phone_otp.code == issued.code
        assert stored.otp_request_count.count == 1


class TestResendOtp:
    async def test_rejected_while_previous_code_is_live(self, service, user, clock):
        issued = await service.send_otp(PHONE)
        clock.advance(seconds=20)

        with pytest.raises(RateLimitError) as exc_info:
            await service.resend_otp(PHONE)

        assert exc_info.value.detail == "Please wait 40 seconds before requesting a new OTP"
        assert exc_info.value.extra["retryAfter"] == issued.expires_at

    async def test_allowed_after_expiry(self, service, user, clock, sms):
        first = await service.send_otp(PHONE)
        clock.advance(seconds=61)

        second = await service.resend_otp(PHONE)

        assert second.expires_at == clock.now + timedelta(seconds=60)
        assert (await db.get_user(user.id)).otp_request_count.count == 2
        assert sms.sent[-1][1].startswith("Your new verification code is")
        assert first.code in sms.sent[0][1]

    async def test_respects_daily_quota(self, service, user, clock):
        for _ in range(5):
            await service.resend_otp(PHONE)
            clock.advance(seconds=61)

        with pytest.raises(QuotaExceededError):
            await service.resend_otp(PHONE)


class TestVerifyOtp:
    async def test_success_issues_tokens_and_marks_verified(self, service, user):
        issued = await service.send_otp(PHONE)

        verified = await service.verify_otp(PHONE, issued.code)

        assert verified.message == "Phone number verified successfully"
        assert verified.access_token and verified.refresh_token
        stored = await db.get_user(user.id)
        assert stored.is_phone_verified is True
        assert stored.refresh_token == verified.refresh_token
        assert stored.phone_otp.code is None

    async def test_replay_fails_with_no_otp(self, service, user):
        issued = await service.send_otp(PHONE)
        await service.verify_otp(PHONE, issued.code)

        with pytest.raises(InvalidOtpError, match="No OTP requested"):
            await service.verify_otp(PHONE, issued.code)

    async def test_bad_format_rejected_before_lookup(self, service, test_db):
        with pytest.raises(ValidationError, match="Must be 6 digits"):
            await service.verify_otp(OTHER_PHONE, "12345")

    @pytest.mark.parametrize("otp", ["123456\n", "١٢٣٤٥٦", "１２３４５６"])
    async def test_malformed_code_does_not_use_an_attempt(self, service, user, otp):
        await service.send_otp(PHONE)

        with pytest.raises(ValidationError, match="Must be 6 digits"):
            await service.verify_otp(PHONE, otp)

        assert (await db.get_user(user.id)).phone_otp.attempts == 0

    async def test_mismatch_persists_attempt(self, service, user):
        issued = await service.send_otp(PHONE)

        with pytest.raises(InvalidOtpError) as exc_info:
            await service.verify_otp(PHONE, _wrong(issued.code))

        assert exc_info.value.status_code == 400
        assert exc_info.value.extra["remainingAttempts"] == 2
        assert exc_info.value.extra["canRequestNew"] is True
        assert exc_info.value.extra["retryAfter"] is None
        assert (await db.get_user(user.id)).phone_otp.attempts == 1

    async def test_lockout_after_three_failures(self, service, user, clock):
        issued = await service.send_otp(PHONE)
        for _ in range(3):
            with pytest.raises(InvalidOtpError):
                await service.verify_otp(PHONE, _wrong(issued.code))

        with pytest.raises(LockoutError) as exc_info:
            await service.verify_otp(PHONE, issued.code)

        assert exc_info.value.extra["remainingAttempts"] == 0
        assert exc_info.value.extra["retryAfter"] == clock.now + timedelta(minutes=15)

    async def test_expired_code_keeps_attempts(self, service, user, clock):
        issued = await service.send_otp(PHONE)
        clock.advance(seconds=61)

        with pytest.raises(InvalidOtpError, match="expired"):
            await service.verify_otp(PHONE, issued.code)

        assert (await db.get_user(user.id)).phone_otp.attempts == 0
