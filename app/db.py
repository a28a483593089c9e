"""
SQLite database layer using aiosqlite.

Stores user accounts together with their embedded phone OTP state
and OTP request quota. Tables are created automatically on first connect.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import aiosqlite

from app.config import DB_PATH
from app.models import OtpRecord, OtpRequestQuota, User

logger = logging.getLogger(__name__)

# ── Module-level connection ───────────────────────────────────────────────

_db: aiosqlite.Connection | None = None


async def init_db() -> None:
    """Open the database and create tables if they don't exist."""
    global _db
    db_path = Path(DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    _db = await aiosqlite.connect(str(db_path))
    _db.row_factory = aiosqlite.Row  # dict-like rows
    await _db.execute("PRAGMA journal_mode=WAL")

    await _db.executescript(_SCHEMA)
    await _db.commit()
    logger.info("Database initialized at %s", db_path)


async def close_db() -> None:
    """Close the database connection."""
    global _db
    if _db is not None:
        await _db.close()
        _db = None
        logger.info("Database connection closed")


def get_db() -> aiosqlite.Connection:
    """Return the active database connection (must call init_db first)."""
    assert _db is not None, "Database not initialized, call init_db() first"
    return _db


# ── Schema ────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id                  TEXT PRIMARY KEY,
    username            TEXT NOT NULL,
    email               TEXT NOT NULL UNIQUE,
    phone_number        TEXT UNIQUE,
    password_hash       TEXT,
    role                TEXT NOT NULL DEFAULT 'customer',
    is_active           INTEGER NOT NULL DEFAULT 1,
    is_email_verified   INTEGER NOT NULL DEFAULT 0,
    is_phone_verified   INTEGER NOT NULL DEFAULT 0,
    otp_code            TEXT,
    otp_expires_at      TEXT,
    otp_attempts        INTEGER NOT NULL DEFAULT 0,
    otp_request_count   INTEGER NOT NULL DEFAULT 0,
    otp_last_request    TEXT,
    login_attempts      INTEGER NOT NULL DEFAULT 0,
    lock_until          TEXT,
    refresh_token       TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_phone ON users(phone_number);
"""


# ── Helpers ───────────────────────────────────────────────────────────────


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.isoformat()


def _parse(raw: str | None) -> datetime | None:
    if raw is None:
        return None
    return datetime.fromisoformat(raw)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_user(row: aiosqlite.Row) -> User:
    """Convert a database row to a User model."""
    return User(
        id=row["id"],
        username=row["username"],
        email=row["email"],
        phone_number=row["phone_number"],
        password_hash=row["password_hash"],
        role=row["role"],
        is_active=bool(row["is_active"]),
        is_email_verified=bool(row["is_email_verified"]),
        is_phone_verified=bool(row["is_phone_verified"]),
        phone_otp=OtpRecord(
            code=row["otp_code"],
            expires_at=_parse(row["otp_expires_at"]),
            attempts=row["otp_attempts"],
        ),
        otp_request_count=OtpRequestQuota(
            count=row["otp_request_count"],
            last_request=_parse(row["otp_last_request"]),
        ),
        login_attempts=row["login_attempts"],
        lock_until=_parse(row["lock_until"]),
        refresh_token=row["refresh_token"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# ══════════════════════════════════════════════════════════════════════════
#                          USER REPOSITORY
# ══════════════════════════════════════════════════════════════════════════


async def create_user(
    username: str,
    email: str,
    *,
    phone_number: str | None = None,
    password_hash: str | None = None,
    role: str = "customer",
) -> User:
    """Insert a new user and return it.

    Raises aiosqlite.IntegrityError on a duplicate email or phone number.
    """
    db = get_db()
    user_id = uuid4().hex
    now = _now_iso()

    await db.execute(
        """
        INSERT INTO users (
            id, username, email, phone_number, password_hash, role,
            created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (user_id, username, email, phone_number, password_hash, role, now, now),
    )
    await db.commit()
    return await get_user(user_id)  # type: ignore[return-value]


async def get_user(user_id: str) -> User | None:
    """Fetch a single user by ID."""
    db = get_db()
    async with db.execute("SELECT * FROM users WHERE id = ?", (user_id,)) as cur:
        row = await cur.fetchone()
    return _row_to_user(row) if row else None


async def get_user_by_email(email: str) -> User | None:
    db = get_db()
    async with db.execute("SELECT * FROM users WHERE email = ?", (email,)) as cur:
        row = await cur.fetchone()
    return _row_to_user(row) if row else None


async def get_user_by_phone(phone_number: str) -> User | None:
    db = get_db()
    async with db.execute(
        "SELECT * FROM users WHERE phone_number = ?", (phone_number,)
    ) as cur:
        row = await cur.fetchone()
    return _row_to_user(row) if row else None


async def save_user(user: User) -> User:
    """Persist the mutable state of a user (flags, OTP, quota, login lockout)."""
    db = get_db()
    user.updated_at = datetime.now(timezone.utc)
    await db.execute(
        """
        UPDATE users SET
            username = ?, phone_number = ?, password_hash = ?, role = ?,
            is_active = ?, is_email_verified = ?, is_phone_verified = ?,
            otp_code = ?, otp_expires_at = ?, otp_attempts = ?,
            otp_request_count = ?, otp_last_request = ?,
            login_attempts = ?, lock_until = ?, refresh_token = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (
            user.username, user.phone_number, user.password_hash, user.role,
            int(user.is_active), int(user.is_email_verified), int(user.is_phone_verified),
            user.phone_otp.code, _iso(user.phone_otp.expires_at), user.phone_otp.attempts,
            user.otp_request_count.count, _iso(user.otp_request_count.last_request),
            user.login_attempts, _iso(user.lock_until), user.refresh_token,
            _iso(user.updated_at),
            user.id,
        ),
    )
    await db.commit()
    return user


async def set_user_active(user_id: str, active: bool) -> User | None:
    """Activate or deactivate an account."""
    db = get_db()
    await db.execute(
        "UPDATE users SET is_active = ?, updated_at = ? WHERE id = ?",
        (int(active), _now_iso(), user_id),
    )
    await db.commit()
    return await get_user(user_id)
