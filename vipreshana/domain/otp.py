"""Schemas for one-time code challenges."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class OtpChallenge(BaseModel):
    """Outstanding verification for a phone number.

    Only a digest of the code is kept. A phone has at most one record;
    issuing a new code replaces it.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    phone: str
    code_digest: str
    created_at: datetime
    expires_at: datetime
    attempts_remaining: int = Field(ge=0)
    consumed: bool = False
    verified_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        return not self.consumed and self.attempts_remaining > 0 and self.expires_at > now

    @property
    def exhausted(self) -> bool:
        """True once wrong guesses used up every attempt."""

        return self.verified_at is None and self.attempts_remaining == 0


class SendOtpRequest(BaseModel):
    phone: str = Field(..., max_length=32, description="Phone number to verify")


class VerifyOtpRequest(BaseModel):
    phone: str = Field(..., max_length=32)
    code: str = Field(..., max_length=16, description="Code received by SMS")


class OtpSentResponse(BaseModel):
    ok: bool = True
    message: str = "OTP sent successfully"
    expires_in_seconds: int


class OtpVerifiedResponse(BaseModel):
    ok: bool = True
    message: str = "OTP verified successfully"
