"""
Account signup and password login.

Login enforces an account lockout: after ``max_login_attempts`` wrong
passwords the account is locked for ``lock_duration``; a successful
login resets the counter.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import timedelta

import aiosqlite

from app import db
from app.errors import AccountStateError, AuthenticationError, ValidationError
from app.models import SignupRequest, User
from app.security import hash_password, issue_tokens, verify_password
from app.services.otp import Clock, utcnow
from app.services.phone import validate_phone_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    user: User
    access_token: str
    refresh_token: str


class AuthService:
    def __init__(
        self,
        *,
        max_login_attempts: int = 5,
        lock_duration: timedelta = timedelta(hours=2),
        clock: Clock = utcnow,
    ) -> None:
        self.max_login_attempts = max_login_attempts
        self.lock_duration = lock_duration
        self._clock = clock

    async def signup(self, body: SignupRequest) -> User:
        username = (body.username or "").strip()
        email = (body.email or "").strip().lower()

        if not username or not email:
            raise ValidationError("Please provide both name and email")
        if not body.checkbox:
            raise ValidationError("Please accept the terms and conditions")

        phone_number = None
        if body.phone_number:
            phone_number = validate_phone_number(body.phone_number)
            if await db.get_user_by_phone(phone_number) is not None:
                raise ValidationError("Phone number already registered")

        if await db.get_user_by_email(email) is not None:
            raise ValidationError("Email already exists")

        try:
            user = await db.create_user(
                username,
                email,
                phone_number=phone_number,
                password_hash=hash_password(body.password) if body.password else None,
            )
        except aiosqlite.IntegrityError:
            # Lost a race with a concurrent signup for the same email/phone.
            raise ValidationError("Email already exists") from None

        logger.info("User %s registered (%s)", user.id, email)
        return user

    async def login(self, email: str, password: str) -> LoginResult:
        user = await db.get_user_by_email(email.strip().lower())
        if user is None or user.password_hash is None:
            raise AuthenticationError()

        if not user.is_active:
            raise AccountStateError("Account is deactivated")

        now = self._clock()
        if user.is_locked(now):
            minutes = math.ceil((user.lock_until - now).total_seconds() / 60)  # type: ignore[operator]
            raise AccountStateError(f"Account is locked. Please try again in {minutes} minutes")

        if not verify_password(password, user.password_hash):
            await self._handle_failed_login(user)
            remaining = max(0, self.max_login_attempts - user.login_attempts)
            raise AuthenticationError(f"Invalid credentials. {remaining} attempts remaining")

        access_token, refresh_token = issue_tokens(user.id)
        user.login_attempts = 0
        user.lock_until = None
        user.refresh_token = refresh_token
        await db.save_user(user)

        logger.info("User %s logged in", user.id)
        return LoginResult(user=user, access_token=access_token, refresh_token=refresh_token)

    async def _handle_failed_login(self, user: User) -> None:
        now = self._clock()
        # An expired lock starts a fresh attempt budget.
        if user.lock_until is not None and user.lock_until <= now:
            user.login_attempts = 0
            user.lock_until = None

        user.login_attempts += 1
        if user.login_attempts >= self.max_login_attempts:
            user.lock_until = now + self.lock_duration
            logger.warning("User %s locked until %s", user.id, user.lock_until.isoformat())
        await db.save_user(user)
