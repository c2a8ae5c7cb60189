"""SQLAlchemy stores against a throwaway SQLite database."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from conftest import SECRET, ManualClock, OutboxNotifier, make_settings, wrong_code
from vipreshana.db import build_sessionmaker, create_engine, init_db
from vipreshana.domain.bookings import BookingCreate, BookingStatus, Location, VehicleType
from vipreshana.domain.errors import AlreadyAccepted, AttemptsExhausted, CodeMismatch, DuplicatePhone
from vipreshana.domain.users import UserCreate, UserRole
from vipreshana.repositories.bookings import SqlAlchemyBookingsRepository
from vipreshana.repositories.otp import SqlAlchemyOtpChallengeRepository
from vipreshana.repositories.rate_limits import SqlAlchemyRateLimitRepository
from vipreshana.repositories.users import SqlAlchemyUsersRepository
from vipreshana.services.bookings import BookingLifecycle
from vipreshana.services.maintenance import sweep_expired
from vipreshana.services.otp import OtpService
from vipreshana.services.rate_limiter import RateLimiter, build_policies

PHONE = "9990001111"


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


def run_with_sessions(database_url: str, scenario):
    """Create the schema and hand ``scenario`` a session factory."""

    async def runner():
        engine = create_engine(database_url)
        try:
            await init_db(engine)
            return await scenario(build_sessionmaker(engine))
        finally:
            await engine.dispose()

    return asyncio.run(runner())


def test_rate_limit_fixed_window(database_url):
    clock = ManualClock()

    async def scenario(sessions):
        async with sessions() as session:
            repo = SqlAlchemyRateLimitRepository(session)

            async def hit():
                return await repo.hit(
                    scope="otp-send", key=PHONE, limit=2, window_seconds=60, now=clock()
                )

            first, second, third = await hit(), await hit(), await hit()
            clock.advance(30)
            fourth = await hit()
            clock.advance(31)
            fifth = await hit()
            return first, second, third, fourth, fifth

    first, second, third, fourth, fifth = run_with_sessions(database_url, scenario)
    assert first.allowed and second.allowed
    assert second.remaining == 0
    assert not third.allowed and third.retry_after_seconds == 60
    assert not fourth.allowed and fourth.retry_after_seconds == 30
    assert fifth.allowed and fifth.remaining == 1


def test_rate_limit_sweep(database_url):
    clock = ManualClock()

    async def scenario(sessions):
        async with sessions() as session:
            repo = SqlAlchemyRateLimitRepository(session)
            await repo.hit(scope="s", key="a", limit=1, window_seconds=60, now=clock())
            clock.advance(120)
            await repo.hit(scope="s", key="b", limit=1, window_seconds=60, now=clock())
            return await repo.sweep(older_than=clock() - timedelta(seconds=60))

    assert run_with_sessions(database_url, scenario) == 1


def test_otp_flow_on_sql(database_url):
    clock = ManualClock()
    outbox = OutboxNotifier()

    async def scenario(sessions):
        async with sessions() as session:
            limiter = RateLimiter(
                SqlAlchemyRateLimitRepository(session),
                build_policies(make_settings()),
                clock=clock,
            )
            challenges = SqlAlchemyOtpChallengeRepository(session)
            service = OtpService(challenges, limiter, outbox, secret_key=SECRET, clock=clock)

            await service.issue(PHONE)
            first = outbox.last_code(PHONE)
            await service.issue(PHONE)
            code = outbox.last_code(PHONE)
            if first != code:
                with pytest.raises(CodeMismatch):
                    await service.verify(PHONE, first)
            verified = await service.verify(PHONE, code)

            await service.issue(PHONE)
            burnt = outbox.last_code(PHONE)
            for _ in range(4):
                with pytest.raises(CodeMismatch):
                    await service.verify(PHONE, wrong_code(burnt))
            with pytest.raises(AttemptsExhausted):
                await service.verify(PHONE, wrong_code(burnt))
            with pytest.raises(AttemptsExhausted):
                await service.verify(PHONE, burnt)

            clock.advance(1000)
            swept = await sweep_expired(challenges, limiter, clock=clock)
            return verified, swept, await challenges.get(PHONE)

    verified, swept, leftover = run_with_sessions(database_url, scenario)
    assert verified.consumed
    assert swept.challenges == 1
    assert leftover is None


def test_users_on_sql(database_url):
    clock = ManualClock()

    async def scenario(sessions):
        async with sessions() as session:
            users = SqlAlchemyUsersRepository(session)
            payload = UserCreate(
                phone=PHONE, name="Ravi", password="secret-1", role=UserRole.DRIVER
            )
            created = await users.create(payload, clock())
            with pytest.raises(DuplicatePhone):
                await users.create(payload, clock())
            assert await users.verify_credentials(PHONE, "nope") is None
            clock.advance(10)
            await users.set_password(PHONE, "secret-2", clock())
            touched = await users.touch_last_login(PHONE, clock())
            return created, touched, await users.verify_credentials(PHONE, "secret-2")

    created, touched, verified = run_with_sessions(database_url, scenario)
    assert created.role == UserRole.DRIVER
    assert touched.last_login_at == touched.updated_at
    assert verified is not None and verified.id == created.id


def test_bookings_compare_and_set_on_sql(database_url):
    clock = ManualClock()

    async def scenario(sessions):
        async with sessions() as session:
            lifecycle = BookingLifecycle(SqlAlchemyBookingsRepository(session), clock=clock)
            booking = await lifecycle.create(
                BookingCreate(
                    customer_ref=PHONE,
                    pickup=Location(address="Pune station"),
                    dropoff=Location(address="Hinjewadi Phase 1", latitude=18.59, longitude=73.7),
                    vehicle_type=VehicleType.PICKUP,
                )
            )
            accepted = await lifecycle.accept(booking.id, "8880002222")
            with pytest.raises(AlreadyAccepted):
                await lifecycle.accept(booking.id, "8880003333")
            listed = await lifecycle.list_for_phone("8880002222")
            return accepted, listed, await lifecycle.list(BookingStatus.PENDING)

    accepted, listed, pending = run_with_sessions(database_url, scenario)
    assert accepted.status == BookingStatus.ACCEPTED
    assert accepted.version == 2
    assert accepted.dropoff.latitude == 18.59
    assert [booking.id for booking in listed] == [accepted.id]
    assert pending == []


def test_concurrent_accepts_on_sql(database_url):
    clock = ManualClock()
    drivers = [f"88800{index:05d}" for index in range(4)]

    async def scenario(sessions):
        async with sessions() as session:
            booking = await BookingLifecycle(
                SqlAlchemyBookingsRepository(session), clock=clock
            ).create(
                BookingCreate(
                    customer_ref=PHONE,
                    pickup=Location(address="Pune station"),
                    dropoff=Location(address="Kothrud depot"),
                    vehicle_type=VehicleType.BIKE,
                )
            )

        async def accept(driver):
            async with sessions() as session:
                lifecycle = BookingLifecycle(SqlAlchemyBookingsRepository(session), clock=clock)
                return await lifecycle.accept(booking.id, driver)

        results = await asyncio.gather(*(accept(d) for d in drivers), return_exceptions=True)
        async with sessions() as session:
            stored = await SqlAlchemyBookingsRepository(session).get(booking.id)
        return results, stored

    results, stored = run_with_sessions(database_url, scenario)
    winners = [result for result in results if not isinstance(result, Exception)]
    assert len(winners) == 1
    assert all(isinstance(r, AlreadyAccepted) for r in results if isinstance(r, Exception))
    assert stored.driver_ref == winners[0].driver_ref
