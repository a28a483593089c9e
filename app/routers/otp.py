"""
Phone OTP endpoints – send, resend and verify.
"""

from fastapi import APIRouter, Request

from app.dependencies import OtpServiceDep
from app.models import (
    OtpResendRequest,
    OtpSendRequest,
    OtpSendResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    UserInfo,
)
from app.rate_limit import OTP, VERIFY, limiter
from app.services.otp_service import IssuedOtp, OtpService

router = APIRouter(prefix="/otp", tags=["otp"])


def _send_response(otp_service: OtpService, issued: IssuedOtp, msg: str) -> OtpSendResponse:
    return OtpSendResponse(
        msg=msg,
        expires_in=issued.expires_in,
        remaining_attempts=issued.remaining_requests,
        retry_after=issued.expires_at,
        otp=issued.code if otp_service.development else None,
    )


@router.post(
    "/send",
    response_model=OtpSendResponse,
    response_model_exclude_none=True,
    operation_id="sendOtp",
    summary="Send a one-time passcode to a registered phone number",
)
@limiter.limit(OTP)
async def send_otp(request: Request, body: OtpSendRequest, otp_service: OtpServiceDep) -> OtpSendResponse:
    """
    Generate a 6-digit OTP valid for 60 seconds and deliver it by SMS.
    In development the code is also echoed back in the response.
    """
    issued = await otp_service.send_otp(body.phone_number, body.purpose)
    return _send_response(otp_service, issued, "OTP sent successfully")


@router.post(
    "/resend",
    response_model=OtpSendResponse,
    response_model_exclude_none=True,
    operation_id="resendOtp",
    summary="Send a new OTP once the previous one has expired",
)
@limiter.limit(OTP)
async def resend_otp(request: Request, body: OtpResendRequest, otp_service: OtpServiceDep) -> OtpSendResponse:
    issued = await otp_service.resend_otp(body.phone_number)
    return _send_response(otp_service, issued, "New OTP sent successfully")


@router.post(
    "/verify",
    response_model=OtpVerifyResponse,
    operation_id="verifyOtp",
    summary="Verify an OTP and receive access and refresh tokens",
)
@limiter.limit(VERIFY)
async def verify_otp(request: Request, body: OtpVerifyRequest, otp_service: OtpServiceDep) -> OtpVerifyResponse:
    verified = await otp_service.verify_otp(body.phone_number, body.otp)
    return OtpVerifyResponse(
        msg=verified.message,
        access_token=verified.access_token,
        refresh_token=verified.refresh_token,
        user=UserInfo.from_user(verified.user),
    )
