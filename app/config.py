"""
Application configuration from environment variables.

All settings have sensible defaults for local development.
A .env file in the project root is loaded automatically (if present).
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file before reading any env vars
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# ── Environment ───────────────────────────────────────────────────────────

ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
VERSION: str = "0.1.0"

# ── Paths ─────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite database file
DB_PATH: str = os.getenv("DB_PATH", str(DATA_DIR / "food_delivery_auth.db"))

# ── JWT ───────────────────────────────────────────────────────────────────

_DEV_JWT_SECRET = "dev-secret-change-me-in-production"
_DEV_REFRESH_SECRET = "dev-refresh-secret-change-me-in-production"

JWT_SECRET: str = os.getenv("JWT_SECRET", _DEV_JWT_SECRET)
REFRESH_TOKEN_SECRET: str = os.getenv("REFRESH_TOKEN_SECRET", _DEV_REFRESH_SECRET)
JWT_ALGORITHM: str = "HS256"
ACCESS_TOKEN_EXPIRY_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRY_MINUTES", "60"))
REFRESH_TOKEN_EXPIRY_DAYS: int = int(os.getenv("REFRESH_TOKEN_EXPIRY_DAYS", "7"))

# ── OTP lifecycle ─────────────────────────────────────────────────────────

OTP_TTL_SECONDS: int = int(os.getenv("OTP_TTL_SECONDS", "60"))
OTP_MAX_ATTEMPTS: int = int(os.getenv("OTP_MAX_ATTEMPTS", "3"))
OTP_DAILY_LIMIT: int = int(os.getenv("OTP_DAILY_LIMIT", "5"))
OTP_QUOTA_WINDOW_HOURS: int = int(os.getenv("OTP_QUOTA_WINDOW_HOURS", "24"))

# Cool-down hint returned once every verification attempt is used up.
OTP_LOCKOUT_COOLDOWN_MINUTES: int = int(os.getenv("OTP_LOCKOUT_COOLDOWN_MINUTES", "15"))

# ── Per-phone rate limiter ────────────────────────────────────────────────

PHONE_RATE_LIMIT: int = int(os.getenv("PHONE_RATE_LIMIT", "10"))
PHONE_RATE_WINDOW_SECONDS: float = float(os.getenv("PHONE_RATE_WINDOW_SECONDS", "3600"))

# ── Password login lockout ────────────────────────────────────────────────

LOGIN_MAX_ATTEMPTS: int = int(os.getenv("LOGIN_MAX_ATTEMPTS", "5"))
LOGIN_LOCK_MINUTES: int = int(os.getenv("LOGIN_LOCK_MINUTES", "120"))

# ── SMS providers ─────────────────────────────────────────────────────────

MESSAGEBIRD_API_KEY: str = os.getenv("MESSAGEBIRD_API_KEY", "")
MESSAGEBIRD_ORIGINATOR: str = os.getenv("MESSAGEBIRD_ORIGINATOR", "FoodDelivery")

TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
TWILIO_PHONE_NUMBER: str = os.getenv("TWILIO_PHONE_NUMBER", "")

# Upper bound for a single provider call, so a hung provider cannot hold
# the per-phone OTP lock.
SMS_TIMEOUT_SECONDS: float = float(os.getenv("SMS_TIMEOUT_SECONDS", "10"))

# ── CORS ──────────────────────────────────────────────────────────────────

CORS_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:5000").split(",")
    if origin.strip()
]


def is_development() -> bool:
    """True when SMS delivery is simulated and OTPs are echoed back."""
    return ENVIRONMENT.lower() == "development"


def messagebird_enabled() -> bool:
    return bool(MESSAGEBIRD_API_KEY)


def twilio_enabled() -> bool:
    return bool(TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER)


class ConfigurationError(RuntimeError):
    """Raised at startup when required settings are missing."""


def validate_settings() -> None:
    """
    Fail fast on unusable configuration.

    JWT secrets must always be set. In production the development
    defaults are rejected and at least one SMS provider is required.
    """
    missing = [
        name
        for name, value in (
            ("JWT_SECRET", JWT_SECRET),
            ("REFRESH_TOKEN_SECRET", REFRESH_TOKEN_SECRET),
            ("ENVIRONMENT", ENVIRONMENT),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    if ENVIRONMENT.lower() != "production":
        return

    if JWT_SECRET == _DEV_JWT_SECRET or REFRESH_TOKEN_SECRET == _DEV_REFRESH_SECRET:
        raise ConfigurationError(
            "JWT_SECRET and REFRESH_TOKEN_SECRET must be set in production"
        )
    if not (messagebird_enabled() or twilio_enabled()):
        raise ConfigurationError(
            "Production environment requires either MessageBird or Twilio configuration"
        )
