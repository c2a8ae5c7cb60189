from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserRole(str, Enum):
    CUSTOMER = "customer"
    DRIVER = "driver"
    ADMIN = "admin"


class UserBase(BaseModel):
    """Shared fields for user representations."""

    phone: str = Field(..., description="Phone number used for login and verification")
    name: str = Field(..., min_length=2, max_length=160)
    email: Optional[EmailStr] = Field(default=None, description="Optional contact email")
    role: UserRole = UserRole.CUSTOMER


class UserCreate(UserBase):
    """Payload accepted when creating a new account."""

    password: str = Field(
        ..., min_length=6, max_length=72, description="Raw password to be hashed"
    )


class User(UserBase):
    """Persisted account without its credential digest."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime
    updated_at: datetime
    last_login_at: Optional[datetime] = None


class UserResponse(BaseModel):
    data: User
