"""Schemas for authentication endpoints."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .users import User, UserRole


class RegisterRequest(BaseModel):
    """Self-service registration; admin accounts are created out of band."""

    phone: str = Field(..., max_length=32)
    password: str = Field(..., min_length=6, max_length=72)
    name: str = Field(..., min_length=2, max_length=160)
    email: Optional[EmailStr] = None
    role: UserRole = UserRole.CUSTOMER
    code: Optional[str] = Field(
        default=None,
        max_length=16,
        description="Verification code, required when registration is OTP gated",
    )

    @field_validator("role")
    @classmethod
    def _reject_admin(cls, value: UserRole) -> UserRole:
        if value == UserRole.ADMIN:
            raise ValueError("admin accounts cannot be self-registered")
        return value


class LoginRequest(BaseModel):
    phone: str = Field(..., max_length=32)
    password: str = Field(..., min_length=1, max_length=72)


class ForgotPasswordRequest(BaseModel):
    phone: str = Field(..., max_length=32)


class ResetPasswordRequest(BaseModel):
    phone: str = Field(..., max_length=32)
    code: str = Field(..., max_length=16)
    new_password: str = Field(..., min_length=6, max_length=72)


class AuthResponse(BaseModel):
    message: str
    user: User


class PasswordResetResponse(BaseModel):
    ok: bool = True
    message: str = "Password has been reset"
