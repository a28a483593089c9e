"""
Account endpoints – signup and password login.
"""

from fastapi import APIRouter, Request, status

from app.dependencies import AuthServiceDep
from app.models import (
    LoginRequest,
    LoginResponse,
    SignupRequest,
    SignupResponse,
    UserInfo,
    UserSummary,
)
from app.rate_limit import LOGIN, limiter

router = APIRouter(tags=["auth"])


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="signup",
    summary="Register a new account",
)
async def signup(body: SignupRequest, auth_service: AuthServiceDep) -> SignupResponse:
    user = await auth_service.signup(body)
    return SignupResponse(
        message="Registration successful",
        user=UserSummary(id=user.id, username=user.username, email=user.email),
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    operation_id="login",
    summary="Log in with email and password",
)
@limiter.limit(LOGIN)
async def login(request: Request, body: LoginRequest, auth_service: AuthServiceDep) -> LoginResponse:
    """
    Check the password and return access and refresh tokens.
    Repeated failures lock the account for a while.
    """
    result = await auth_service.login(body.email, body.password)
    return LoginResponse(
        user=UserInfo.from_user(result.user),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
    )
