"""Account registration, login and OTP-backed password recovery."""

from __future__ import annotations

import structlog

from ..core.clock import Clock, utcnow
from ..core.logging import mask_phone
from ..domain.auth import RegisterRequest
from ..domain.bookings import Actor
from ..domain.errors import (
    AccountNotFound,
    DuplicatePhone,
    InvalidCode,
    InvalidCredentials,
    Unauthorized,
)
from ..domain.otp import OtpChallenge
from ..domain.phones import normalize_phone
from ..domain.users import User, UserCreate, UserRole
from ..repositories.users import UsersRepository
from .otp import OtpService

logger = structlog.get_logger(__name__)


class AuthFacade:
    def __init__(
        self,
        users: UsersRepository,
        otp: OtpService,
        *,
        registration_requires_otp: bool = False,
        clock: Clock = utcnow,
    ) -> None:
        self._users = users
        self._otp = otp
        self._registration_requires_otp = registration_requires_otp
        self._clock = clock

    async def register(self, payload: RegisterRequest) -> User:
        """Create an account; when OTP gating is on the code is verified first."""

        phone = normalize_phone(payload.phone)
        if await self._users.get_by_phone(phone) is not None:
            raise DuplicatePhone()
        if self._registration_requires_otp:
            if not payload.code:
                raise InvalidCode("A verification code is required to register")
            await self._otp.verify(phone, payload.code)

        user = await self._users.create(
            UserCreate(
                phone=phone,
                name=payload.name,
                email=payload.email,
                role=payload.role,
                password=payload.password,
            ),
            self._clock(),
        )
        logger.info("auth.registered", phone=mask_phone(phone), role=user.role.value)
        return user

    async def login(self, phone: str, password: str) -> User:
        phone = normalize_phone(phone)
        if await self._users.get_by_phone(phone) is None:
            raise AccountNotFound()
        user = await self._users.verify_credentials(phone, password)
        if user is None:
            logger.info("auth.login_failed", phone=mask_phone(phone))
            raise InvalidCredentials()
        user = await self._users.touch_last_login(phone, self._clock()) or user
        logger.info("auth.login", phone=mask_phone(phone))
        return user

    async def forgot_password(self, phone: str) -> OtpChallenge:
        phone = normalize_phone(phone)
        if await self._users.get_by_phone(phone) is None:
            raise AccountNotFound()
        return await self._otp.issue(phone)

    async def reset_password(self, phone: str, code: str, new_password: str) -> User:
        phone = normalize_phone(phone)
        if await self._users.get_by_phone(phone) is None:
            raise AccountNotFound()
        await self._otp.verify(phone, code)
        user = await self._users.set_password(phone, new_password, self._clock())
        if user is None:
            raise AccountNotFound()
        logger.info("auth.password_reset", phone=mask_phone(phone))
        return user

    async def resolve_actor(self, phone: str, *, role: UserRole | None = None) -> Actor:
        """Map a phone reference to the account acting on a booking.

        ``role`` restricts the lookup to accounts of that role; administrators
        always pass.
        """

        phone = normalize_phone(phone)
        user = await self._users.get_by_phone(phone)
        if user is None:
            raise Unauthorized("No account is registered for this phone number")
        if role is not None and user.role not in (role, UserRole.ADMIN):
            raise Unauthorized(f"Only {role.value} accounts can perform this action")
        return Actor(ref=user.phone, role=user.role)
