from typing import Annotated

from fastapi import Depends, Request

from app.services.auth_service import AuthService
from app.services.otp_service import OtpService

# Both services are built once in the app lifespan and kept on app.state.


def get_otp_service(request: Request) -> OtpService:
    return request.app.state.otp_service


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


OtpServiceDep = Annotated[OtpService, Depends(get_otp_service)]
AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
