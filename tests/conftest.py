"""Pytest configuration and fixtures for the API tests."""

from __future__ import annotations

import re
from datetime import datetime, timedelta

import pytest

from vipreshana.core.config import Settings
from vipreshana.repositories.bookings import InMemoryBookingsRepository
from vipreshana.repositories.otp import InMemoryOtpChallengeRepository
from vipreshana.repositories.rate_limits import InMemoryRateLimitRepository
from vipreshana.repositories.users import InMemoryUsersRepository
from vipreshana.services.auth import AuthFacade
from vipreshana.services.bookings import BookingLifecycle
from vipreshana.services.notifier import DeliveryError
from vipreshana.services.otp import OtpService
from vipreshana.services.rate_limiter import RateLimiter, build_policies

SECRET = "test-secret"
_CODE = re.compile(r"\b(\d{6})\b")


class ManualClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class OutboxNotifier:
    """Collects messages instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    async def send(self, phone: str, message: str) -> None:
        if self.fail:
            raise DeliveryError("gateway down")
        self.sent.append((phone, message))

    def last_code(self, phone: str) -> str:
        for recipient, message in reversed(self.sent):
            if recipient == phone:
                match = _CODE.search(message)
                if match:
                    return match.group(1)
        raise AssertionError(f"no code sent to {phone}")


def wrong_code(code: str) -> str:
    return "".join(str((int(digit) + 1) % 10) for digit in code)


def make_settings(**overrides) -> Settings:
    values = {
        "secret_key": SECRET,
        "database_url": None,
        "redis_url": None,
        "sms_gateway_url": None,
        "sweep_interval_seconds": 0,
        "enable_prometheus_metrics": False,
        "otel_exporter_otlp_endpoint": None,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def outbox() -> OutboxNotifier:
    return OutboxNotifier()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def rate_repo() -> InMemoryRateLimitRepository:
    return InMemoryRateLimitRepository()


@pytest.fixture
def otp_repo() -> InMemoryOtpChallengeRepository:
    return InMemoryOtpChallengeRepository()


@pytest.fixture
def limiter(rate_repo, settings, clock) -> RateLimiter:
    return RateLimiter(rate_repo, build_policies(settings), clock=clock)


@pytest.fixture
def otp_service(otp_repo, limiter, outbox, clock) -> OtpService:
    return OtpService(otp_repo, limiter, outbox, secret_key=SECRET, clock=clock)


@pytest.fixture
def users_repo() -> InMemoryUsersRepository:
    return InMemoryUsersRepository()


@pytest.fixture
def auth(users_repo, otp_service, clock) -> AuthFacade:
    return AuthFacade(users_repo, otp_service, clock=clock)


@pytest.fixture
def bookings_repo() -> InMemoryBookingsRepository:
    return InMemoryBookingsRepository()


@pytest.fixture
def lifecycle(bookings_repo, outbox, clock) -> BookingLifecycle:
    return BookingLifecycle(bookings_repo, notifier=outbox, clock=clock)
