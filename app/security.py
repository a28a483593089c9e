"""
Password hashing and JWT issuing.

Access tokens are short-lived and signed with ``JWT_SECRET``; refresh
tokens live for days and are signed with ``REFRESH_TOKEN_SECRET``. Both
carry ``{"user": {"id": ...}}``.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
from passlib.context import CryptContext

from app.config import (
    ACCESS_TOKEN_EXPIRY_MINUTES,
    JWT_ALGORITHM,
    JWT_SECRET,
    REFRESH_TOKEN_EXPIRY_DAYS,
    REFRESH_TOKEN_SECRET,
)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


# ── JWT ────────────────────────────────────────────────────────────────────


def _encode(user_id: str, secret: str, lifetime: timedelta) -> str:
    now = datetime.now(UTC)
    payload = {
        "user": {"id": user_id},
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def create_access_token(user_id: str) -> str:
    return _encode(user_id, JWT_SECRET, timedelta(minutes=ACCESS_TOKEN_EXPIRY_MINUTES))


def create_refresh_token(user_id: str) -> str:
    return _encode(user_id, REFRESH_TOKEN_SECRET, timedelta(days=REFRESH_TOKEN_EXPIRY_DAYS))


def issue_tokens(user_id: str) -> tuple[str, str]:
    """Return ``(access_token, refresh_token)`` for a user."""
    return create_access_token(user_id), create_refresh_token(user_id)


def decode_user_id(token: str, *, refresh: bool = False) -> str | None:
    """Return the user id carried by a valid token, else None."""
    secret = REFRESH_TOKEN_SECRET if refresh else JWT_SECRET
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None
    return (payload.get("user") or {}).get("id")
