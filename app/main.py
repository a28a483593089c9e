"""Main FastAPI application for the Food Delivery auth service."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import config, db
from app.errors import register_exception_handlers
from app.rate_limit import limiter
from app.routers import auth, health, otp
from app.services.auth_service import AuthService
from app.services.otp import OtpManager
from app.services.otp_service import OtpService
from app.services.phone_rate_limiter import PhoneRateLimiter
from app.services.sms import build_sms_sender

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "info").upper(),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Missing secrets are fatal: let ConfigurationError abort startup.
    config.validate_settings()
    await db.init_db()

    rate_limiter = PhoneRateLimiter(
        max_requests=config.PHONE_RATE_LIMIT,
        window_seconds=config.PHONE_RATE_WINDOW_SECONDS,
    )
    await rate_limiter.start()
    sms_sender = build_sms_sender()

    app.state.otp_service = OtpService(
        OtpManager(
            ttl_seconds=config.OTP_TTL_SECONDS,
            max_attempts=config.OTP_MAX_ATTEMPTS,
            daily_limit=config.OTP_DAILY_LIMIT,
            quota_window=timedelta(hours=config.OTP_QUOTA_WINDOW_HOURS),
        ),
        rate_limiter,
        sms_sender,
        development=config.is_development(),
        lockout_cooldown=timedelta(minutes=config.OTP_LOCKOUT_COOLDOWN_MINUTES),
    )
    app.state.auth_service = AuthService(
        max_login_attempts=config.LOGIN_MAX_ATTEMPTS,
        lock_duration=timedelta(minutes=config.LOGIN_LOCK_MINUTES),
    )
    logger.info("Auth service ready (environment=%s)", config.ENVIRONMENT)

    try:
        yield
    finally:
        await rate_limiter.stop()
        await sms_sender.close()
        await db.close_db()


app = FastAPI(
    title="Food Delivery Auth API",
    description="Signup, login and phone OTP verification",
    version=config.VERSION,
    lifespan=lifespan,
)

app.state.limiter = limiter
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(otp.router)
