from __future__ import annotations

from fastapi import APIRouter, Depends

from ...domain.otp import OtpSentResponse, OtpVerifiedResponse, SendOtpRequest, VerifyOtpRequest
from ...services.otp import OtpService
from ...services.rate_limiter import OTP_SEND_CLIENT, OTP_VERIFY_CLIENT
from ..dependencies import enforce_client_rate_limit, get_otp_service

router = APIRouter(tags=["otp"])


@router.post(
    "/send-otp",
    response_model=OtpSentResponse,
    dependencies=[Depends(enforce_client_rate_limit(OTP_SEND_CLIENT))],
)
async def send_otp(
    payload: SendOtpRequest,
    otp: OtpService = Depends(get_otp_service),
) -> OtpSentResponse:
    await otp.issue(payload.phone)
    return OtpSentResponse(expires_in_seconds=otp.ttl_seconds)


@router.post(
    "/verify-otp",
    response_model=OtpVerifiedResponse,
    dependencies=[Depends(enforce_client_rate_limit(OTP_VERIFY_CLIENT))],
)
async def verify_otp(
    payload: VerifyOtpRequest,
    otp: OtpService = Depends(get_otp_service),
) -> OtpVerifiedResponse:
    await otp.verify(payload.phone, payload.code)
    return OtpVerifiedResponse()
