"""
Phone OTP lifecycle.

Per-user state machine over ``User.phone_otp`` and ``User.otp_request_count``::

    NoOtp ──generate──▶ Issued ──ttl──▶ Expired ──generate──▶ Issued
                          │
                          └─ attempts reach the limit ─▶ AttemptsExhausted
                             (verification fails until the next generate)

The manager only mutates the user model; persisting it, delivering the
code and rolling back on delivery failure are up to the caller
(see ``app.services.otp_service``).
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from app.models import User

logger = logging.getLogger(__name__)

OTP_LENGTH = 6

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OtpOutcome(str, Enum):
    VERIFIED = "verified"
    NOT_REQUESTED = "not_requested"
    EXPIRED = "expired"
    LOCKED_OUT = "locked_out"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class OtpVerification:
    outcome: OtpOutcome
    message: str

    @property
    def is_valid(self) -> bool:
        return self.outcome is OtpOutcome.VERIFIED


class OtpManager:
    """Generates, expires and verifies phone OTPs; enforces the daily quota."""

    def __init__(
        self,
        *,
        ttl_seconds: int = 60,
        max_attempts: int = 3,
        daily_limit: int = 5,
        quota_window: timedelta = timedelta(hours=24),
        clock: Clock = utcnow,
    ) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_attempts = max_attempts
        self.daily_limit = daily_limit
        self.quota_window = quota_window
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    def now(self) -> datetime:
        return self._clock()

    # ── Daily quota ────────────────────────────────────────────────────

    def _quota_window_elapsed(self, user: User, now: datetime) -> bool:
        last = user.otp_request_count.last_request
        return last is None or now - last >= self.quota_window

    def can_request_otp(self, user: User) -> bool:
        """False only while the daily cap is reached and the window is still open."""
        quota = user.otp_request_count
        if quota.count < self.daily_limit:
            return True
        return self._quota_window_elapsed(user, self.now())

    def next_request_allowed_at(self, user: User) -> datetime | None:
        last = user.otp_request_count.last_request
        return last + self.quota_window if last is not None else None

    def remaining_requests(self, user: User) -> int:
        return max(0, self.daily_limit - user.otp_request_count.count)

    # ── Generation ─────────────────────────────────────────────────────

    def generate_otp(self, user: User) -> str:
        """Issue a fresh code, reset the attempt counter and charge the quota."""
        now = self.now()
        code = f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"

        user.phone_otp.code = code
        user.phone_otp.expires_at = now + self.ttl
        user.phone_otp.attempts = 0

        quota = user.otp_request_count
        if self._quota_window_elapsed(user, now):
            quota.count = 1
        else:
            quota.count += 1
        quota.last_request = now

        logger.debug("OTP issued for user %s (quota %d/%d)", user.id, quota.count, self.daily_limit)
        return code

    def revert_generation(self, user: User) -> None:
        """Undo ``generate_otp`` after a failed delivery."""
        user.phone_otp.code = None
        user.phone_otp.expires_at = None
        user.otp_request_count.count = max(0, user.otp_request_count.count - 1)

    def is_pending(self, user: User) -> bool:
        """True while an issued code has not yet expired."""
        expires_at = user.phone_otp.expires_at
        return user.phone_otp.code is not None and expires_at is not None and expires_at > self.now()

    # ── Verification ───────────────────────────────────────────────────

    def remaining_attempts(self, user: User) -> int:
        return max(0, self.max_attempts - user.phone_otp.attempts)

    def verify_otp(self, user: User, submitted_code: str) -> OtpVerification:
        record = user.phone_otp

        if record.code is None:
            return OtpVerification(
                OtpOutcome.NOT_REQUESTED, "No OTP requested. Please request a new OTP."
            )

        # Expiry is not a guessing attempt, so the counter is left alone.
        if record.expires_at is None or self.now() >= record.expires_at:
            return OtpVerification(
                OtpOutcome.EXPIRED, "OTP has expired. Please request a new OTP."
            )

        if record.attempts >= self.max_attempts:
            return OtpVerification(
                OtpOutcome.LOCKED_OUT, "Too many failed attempts. Please request a new OTP."
            )

        record.attempts += 1

        # Plain string equality: "042917" and "42917" are different codes.
        if not secrets.compare_digest(submitted_code.encode(), record.code.encode()):
            remaining = self.remaining_attempts(user)
            return OtpVerification(
                OtpOutcome.MISMATCH, f"Invalid OTP. {remaining} attempts remaining."
            )

        record.code = None
        record.expires_at = None
        return OtpVerification(OtpOutcome.VERIFIED, "Phone number verified successfully")
