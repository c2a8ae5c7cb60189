from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ...domain.auth import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    PasswordResetResponse,
    RegisterRequest,
    ResetPasswordRequest,
)
from ...domain.otp import OtpSentResponse
from ...services.auth import AuthFacade
from ...services.rate_limiter import OTP_SEND_CLIENT, OTP_VERIFY_CLIENT
from ..dependencies import enforce_client_rate_limit, get_auth_facade

router = APIRouter(tags=["auth"])


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    auth: AuthFacade = Depends(get_auth_facade),
) -> AuthResponse:
    user = await auth.register(payload)
    return AuthResponse(message="User registered successfully", user=user)


@router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    auth: AuthFacade = Depends(get_auth_facade),
) -> AuthResponse:
    user = await auth.login(payload.phone, payload.password)
    return AuthResponse(message="Login successful", user=user)


@router.post(
    "/forgot-password",
    response_model=OtpSentResponse,
    dependencies=[Depends(enforce_client_rate_limit(OTP_SEND_CLIENT))],
)
async def forgot_password(
    payload: ForgotPasswordRequest,
    auth: AuthFacade = Depends(get_auth_facade),
) -> OtpSentResponse:
    challenge = await auth.forgot_password(payload.phone)
    ttl = int((challenge.expires_at - challenge.created_at).total_seconds())
    return OtpSentResponse(message="Password reset code sent", expires_in_seconds=ttl)


@router.post(
    "/reset-password",
    response_model=PasswordResetResponse,
    dependencies=[Depends(enforce_client_rate_limit(OTP_VERIFY_CLIENT))],
)
async def reset_password(
    payload: ResetPasswordRequest,
    auth: AuthFacade = Depends(get_auth_facade),
) -> PasswordResetResponse:
    await auth.reset_password(payload.phone, payload.code, payload.new_password)
    return PasswordResetResponse()
