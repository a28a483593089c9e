"""Pydantic models for the Food Delivery auth API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


# ── Domain ─────────────────────────────────────────────────────────────────


class OtpRecord(BaseModel):
    """The user's current phone OTP. ``attempts`` is only meaningful while ``code`` is set."""

    code: str | None = None
    expires_at: datetime | None = None
    attempts: int = 0


class OtpRequestQuota(BaseModel):
    """OTP generations in the rolling window anchored at ``last_request``."""

    count: int = 0
    last_request: datetime | None = None


class User(BaseModel):
    id: str
    username: str
    email: str
    phone_number: str | None = None
    password_hash: str | None = None
    role: str = "customer"
    is_active: bool = True
    is_email_verified: bool = False
    is_phone_verified: bool = False
    phone_otp: OtpRecord = Field(default_factory=OtpRecord)
    otp_request_count: OtpRequestQuota = Field(default_factory=OtpRequestQuota)
    login_attempts: int = 0
    lock_until: datetime | None = None
    refresh_token: str | None = None
    created_at: datetime
    updated_at: datetime

    def is_locked(self, now: datetime) -> bool:
        return self.lock_until is not None and self.lock_until > now


# ── API schemas ────────────────────────────────────────────────────────────


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserSummary(ApiModel):
    id: str = Field(..., serialization_alias="_id")
    username: str
    email: str


class UserInfo(UserSummary):
    phone_number: str | None = None
    role: str
    is_email_verified: bool
    is_phone_verified: bool

    @classmethod
    def from_user(cls, user: User) -> UserInfo:
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            phone_number=user.phone_number,
            role=user.role,
            is_email_verified=user.is_email_verified,
            is_phone_verified=user.is_phone_verified,
        )


class SignupRequest(ApiModel):
    username: str | None = None
    email: EmailStr | None = None
    checkbox: bool = False
    phone_number: str | None = None
    password: str | None = Field(None, min_length=6, max_length=128)


class SignupResponse(ApiModel):
    success: bool = True
    message: str
    user: UserSummary


class LoginRequest(ApiModel):
    email: str
    password: str


class LoginResponse(ApiModel):
    success: bool = True
    user: UserInfo
    access_token: str
    refresh_token: str


class OtpSendRequest(ApiModel):
    phone_number: str
    purpose: str = "verification"


class OtpResendRequest(ApiModel):
    phone_number: str


class OtpSendResponse(ApiModel):
    success: bool = True
    msg: str
    expires_in: int
    remaining_attempts: int
    retry_after: datetime | None = None
    # Only populated in development mode
    otp: str | None = None


class OtpVerifyRequest(ApiModel):
    phone_number: str
    otp: str


class OtpVerifyResponse(ApiModel):
    success: bool = True
    msg: str
    access_token: str
    refresh_token: str
    user: UserInfo
    is_phone_verified: bool = True


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime
