"""
OTP request/verify orchestration.

Ties the pieces together for the ``/otp`` endpoints:

1.  Validate the phone number (before anything is mutated).
2.  Consult the per-phone rate limiter.
3.  Look the user up and check the account state.
4.  Check the daily quota, generate + persist the code.
5.  Deliver it by SMS; on failure outside development, roll the code and
    the quota charge back and surface a DeliveryError.

All OTP mutations for one user run under a per-user lock, so
two concurrent requests in this process cannot interleave a
generate/verify.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import re
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator

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
from app.models import User
from app.security import issue_tokens
from app.services.otp import OtpManager, OtpOutcome
from app.services.phone import validate_phone_number
from app.services.phone_rate_limiter import PhoneRateLimiter
from app.services.sms import SmsSender

logger = logging.getLogger(__name__)

_OTP_FORMAT = re.compile(r"[0-9]{6}")

_SEND_TEMPLATE = (
    "Your verification code is: {otp}. Valid for {ttl} seconds. "
    "Do not share this code with anyone."
)
_RESEND_TEMPLATE = (
    "Your new verification code is: {otp}. Valid for {ttl} seconds. "
    "Do not share this code with anyone."
)


@dataclass(frozen=True)
class IssuedOtp:
    code: str
    expires_at: datetime
    expires_in: int
    remaining_requests: int


@dataclass(frozen=True)
class VerifiedPhone:
    user: User
    message: str
    access_token: str
    refresh_token: str


class OtpService:
    def __init__(
        self,
        manager: OtpManager,
        rate_limiter: PhoneRateLimiter,
        sms_sender: SmsSender,
        *,
        development: bool = False,
        lockout_cooldown: timedelta = timedelta(minutes=15),
    ) -> None:
        self.manager = manager
        self.rate_limiter = rate_limiter
        self.sms_sender = sms_sender
        self.development = development
        self.lockout_cooldown = lockout_cooldown
        # Entries vanish once no request holds or awaits the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    # ── Shared steps ───────────────────────────────────────────────────

    async def _check_rate_limit(self, phone_number: str) -> None:
        result = await self.rate_limiter.check_limit(phone_number)
        if not result.allowed:
            raise RateLimitError(result.message, retry_after=result.retry_after)

    async def _load_active_user(self, phone_number: str) -> User:
        user = await db.get_user_by_phone(phone_number)
        if user is None:
            raise NotFoundError()
        if not user.is_active:
            raise AccountStateError()
        return user

    @contextlib.asynccontextmanager
    async def _locked_user(self, phone_number: str) -> AsyncIterator[User]:
        user = await self._load_active_user(phone_number)
        lock = self._locks.get(user.id)
        if lock is None:
            lock = self._locks[user.id] = asyncio.Lock()
        async with lock:
            # Re-read under the lock; a concurrent request may have just saved.
            yield await self._load_active_user(phone_number)

    def _check_quota(self, user: User) -> None:
        if self.manager.can_request_otp(user):
            return
        now = self.manager.now()
        retry_after = self.manager.next_request_allowed_at(user)
        hours = math.ceil((retry_after - now).total_seconds() / 3600) if retry_after else 0
        raise QuotaExceededError(
            f"Daily OTP limit exceeded. Please try again after {hours} hours.",
            retry_after=retry_after,
        )

    async def _rollback(self, user: User, phone_number: str) -> None:
        self.manager.revert_generation(user)
        await db.save_user(user)
        logger.warning("OTP delivery to %s failed, generation rolled back", phone_number)

    async def _issue(self, user: User, phone_number: str, template: str) -> IssuedOtp:
        code = self.manager.generate_otp(user)
        await db.save_user(user)

        message = template.format(otp=code, ttl=self.manager.ttl_seconds)
        try:
            await self.sms_sender.send(phone_number, message)
        except DeliveryError:
            if not self.development:
                await self._rollback(user, phone_number)
                raise
            logger.exception("OTP delivery to %s failed (development, keeping code)", phone_number)
        except (Exception, asyncio.CancelledError):
            # An unsent code must not stay stored or charged, whatever interrupted the send.
            await self._rollback(user, phone_number)
            raise

        return IssuedOtp(
            code=code,
            expires_at=user.phone_otp.expires_at,  # type: ignore[arg-type]
            expires_in=self.manager.ttl_seconds,
            remaining_requests=self.manager.remaining_requests(user),
        )

    # ── Operations ─────────────────────────────────────────────────────

    async def send_otp(self, phone_number: str, purpose: str = "verification") -> IssuedOtp:
        phone_number = validate_phone_number(phone_number)
        await self._check_rate_limit(phone_number)

        async with self._locked_user(phone_number) as user:
            self._check_quota(user)
            issued = await self._issue(user, phone_number, _SEND_TEMPLATE)

        logger.info("OTP sent to %s (purpose=%s)", phone_number, purpose)
        return issued

    async def resend_otp(self, phone_number: str) -> IssuedOtp:
        phone_number = validate_phone_number(phone_number)
        await self._check_rate_limit(phone_number)

        async with self._locked_user(phone_number) as user:

            if self.manager.is_pending(user):
                expires_at = user.phone_otp.expires_at
                seconds = math.ceil((expires_at - self.manager.now()).total_seconds())  # type: ignore[operator]
                raise RateLimitError(
                    f"Please wait {seconds} seconds before requesting a new OTP",
                    retry_after=expires_at,
                )

            self._check_quota(user)
            issued = await self._issue(user, phone_number, _RESEND_TEMPLATE)

        logger.info("OTP re-sent to %s", phone_number)
        return issued

    async def verify_otp(self, phone_number: str, otp: str) -> VerifiedPhone:
        if not otp or not _OTP_FORMAT.fullmatch(otp):
            raise ValidationError("Invalid OTP format. Must be 6 digits.")
        phone_number = validate_phone_number(phone_number)

        async with self._locked_user(phone_number) as user:
            result = self.manager.verify_otp(user, otp)

            if not result.is_valid:
                # Persist the bumped attempt counter before rejecting.
                await db.save_user(user)
                remaining = self.manager.remaining_attempts(user)
                retry_after = (
                    self.manager.now() + self.lockout_cooldown if remaining == 0 else None
                )
                error_cls = LockoutError if result.outcome is OtpOutcome.LOCKED_OUT else InvalidOtpError
                raise error_cls(
                    result.message,
                    remainingAttempts=remaining,
                    canRequestNew=self.manager.can_request_otp(user),
                    retryAfter=retry_after,
                )

            access_token, refresh_token = issue_tokens(user.id)
            user.is_phone_verified = True
            user.refresh_token = refresh_token
            await db.save_user(user)

        logger.info("Phone %s verified for user %s", phone_number, user.id)
        return VerifiedPhone(
            user=user,
            message=result.message,
            access_token=access_token,
            refresh_token=refresh_token,
        )
