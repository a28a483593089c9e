"""
In-memory, per-phone-number throttle for OTP send requests.

Independent of users and of the OTP's own attempt counter: a request is
counted before any user lookup happens, which blunts number enumeration
and SMS-cost abuse. State lives in process memory only and is lost on
restart.

Usage::

    limiter = PhoneRateLimiter(max_requests=10, window_seconds=3600)
    await limiter.start()       # starts the periodic sweep
    result = await limiter.check_limit("+15551234567")
    ...
    await limiter.stop()        # cancels the sweep and clears state
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.services.background import BackgroundWorker
from app.services.otp import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterEntry:
    count: int
    timestamp: datetime
    blocked: bool = False


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    message: str | None = None
    retry_after: datetime | None = None


class PhoneRateLimiter(BackgroundWorker):
    """
    Allows ``max_requests`` per phone number per rolling window.

    The window starts at the first request and is reset by the first
    request after it elapses. A periodic sweep (every window length)
    drops stale entries so one-off callers do not accumulate.
    """

    def __init__(
        self,
        *,
        max_requests: int = 10,
        window_seconds: float = 3600,
        clock: Clock = utcnow,
    ) -> None:
        super().__init__(interval=window_seconds, name="phone-rate-limiter")
        self.max_requests = max_requests
        self.window = timedelta(seconds=window_seconds)
        self._clock = clock
        self._entries: dict[str, RateLimiterEntry] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get_entry(self, phone_number: str) -> RateLimiterEntry | None:
        return self._entries.get(phone_number)

    async def check_limit(self, phone_number: str) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            entry = self._entries.get(phone_number)

            if entry is None:
                self._entries[phone_number] = RateLimiterEntry(count=1, timestamp=now)
                return RateLimitResult(allowed=True)

            if now - entry.timestamp > self.window:
                entry.count = 1
                entry.timestamp = now
                entry.blocked = False
                return RateLimitResult(allowed=True)

            if entry.blocked:
                retry_after = entry.timestamp + self.window
                minutes = math.ceil((retry_after - now).total_seconds() / 60)
                return RateLimitResult(
                    allowed=False,
                    message=f"Too many attempts. Please try again after {minutes} minutes",
                    retry_after=retry_after,
                )

            entry.count += 1
            if entry.count > self.max_requests:
                entry.blocked = True
                logger.warning("Phone %s blocked after %d OTP requests", phone_number, entry.count)
                return RateLimitResult(
                    allowed=False,
                    message="Too many attempts. Please try again after 1 hour",
                    retry_after=now + self.window,
                )

            return RateLimitResult(allowed=True)

    async def sweep(self) -> int:
        """Delete entries whose window has elapsed. Returns how many were dropped."""
        async with self._lock:
            now = self._clock()
            stale = [
                key for key, entry in self._entries.items()
                if now - entry.timestamp > self.window
            ]
            for key in stale:
                del self._entries[key]

        if stale:
            logger.info("Rate limiter sweep removed %d stale entries", len(stale))
        return len(stale)

    async def _tick(self) -> None:
        await self.sweep()

    async def _on_stop(self) -> None:
        async with self._lock:
            self._entries.clear()
