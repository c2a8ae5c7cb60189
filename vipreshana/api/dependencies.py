from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass, field

from fastapi import Depends, FastAPI, Query, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..core.clock import Clock, utcnow
from ..core.config import Settings
from ..db import build_sessionmaker, create_engine
from ..domain.errors import RateLimited
from ..domain.pagination import PaginationParams
from ..domain.rate_limits import RateLimitStatus
from ..repositories.bookings import (
    BookingsRepository,
    InMemoryBookingsRepository,
    SqlAlchemyBookingsRepository,
)
from ..repositories.otp import (
    InMemoryOtpChallengeRepository,
    OtpChallengeRepository,
    SqlAlchemyOtpChallengeRepository,
)
from ..repositories.rate_limits import (
    InMemoryRateLimitRepository,
    RateLimitRepository,
    RedisRateLimitRepository,
    SqlAlchemyRateLimitRepository,
)
from ..repositories.users import (
    InMemoryUsersRepository,
    SqlAlchemyUsersRepository,
    UsersRepository,
)
from ..services.auth import AuthFacade
from ..services.bookings import BookingLifecycle
from ..services.locks import KeyedLock
from ..services.notifier import Notifier, build_notifier
from ..services.otp import OtpService
from ..services.rate_limiter import RateLimiter, build_policies


@dataclass
class Backends:
    """Stores and shared primitives owned by one application instance.

    The in-memory stores are used whenever no database is configured; the
    per-phone OTP locks are shared by every request of the process.
    """

    settings: Settings
    notifier: Notifier
    clock: Clock = utcnow
    engine: AsyncEngine | None = None
    sessionmaker: async_sessionmaker[AsyncSession] | None = None
    redis_rate_limits: RedisRateLimitRepository | None = None
    users: InMemoryUsersRepository = field(default_factory=InMemoryUsersRepository)
    bookings: InMemoryBookingsRepository = field(default_factory=InMemoryBookingsRepository)
    otp_challenges: InMemoryOtpChallengeRepository = field(
        default_factory=InMemoryOtpChallengeRepository
    )
    rate_limits: InMemoryRateLimitRepository = field(
        default_factory=InMemoryRateLimitRepository
    )
    otp_locks: KeyedLock = field(default_factory=KeyedLock)

    @property
    def storage(self) -> str:
        return "sql" if self.sessionmaker is not None else "memory"


def init_backends(
    app: FastAPI,
    settings: Settings,
    *,
    notifier: Notifier | None = None,
    clock: Clock = utcnow,
) -> Backends:
    backends = Backends(
        settings=settings,
        notifier=notifier or build_notifier(settings),
        clock=clock,
    )
    if settings.database_url:
        backends.engine = create_engine(settings.database_url)
        backends.sessionmaker = build_sessionmaker(backends.engine)
    if settings.redis_url:
        backends.redis_rate_limits = RedisRateLimitRepository.from_url(settings.redis_url)
    app.state.backends = backends
    return backends


def get_backends(request: Request) -> Backends:
    return request.app.state.backends


async def get_db_session(
    backends: Backends = Depends(get_backends),
) -> AsyncGenerator[AsyncSession | None, None]:
    if backends.sessionmaker is None:
        yield None
        return
    async with backends.sessionmaker() as session:
        yield session


async def get_users_repository(
    backends: Backends = Depends(get_backends),
    session: AsyncSession | None = Depends(get_db_session),
) -> UsersRepository:
    if session is None:
        return backends.users
    return SqlAlchemyUsersRepository(session)


async def get_bookings_repository(
    backends: Backends = Depends(get_backends),
    session: AsyncSession | None = Depends(get_db_session),
) -> BookingsRepository:
    if session is None:
        return backends.bookings
    return SqlAlchemyBookingsRepository(session)


async def get_otp_repository(
    backends: Backends = Depends(get_backends),
    session: AsyncSession | None = Depends(get_db_session),
) -> OtpChallengeRepository:
    if session is None:
        return backends.otp_challenges
    return SqlAlchemyOtpChallengeRepository(session)


async def get_rate_limit_repository(
    backends: Backends = Depends(get_backends),
    session: AsyncSession | None = Depends(get_db_session),
) -> RateLimitRepository:
    if backends.redis_rate_limits is not None:
        return backends.redis_rate_limits
    if session is None:
        return backends.rate_limits
    return SqlAlchemyRateLimitRepository(session)


async def get_rate_limiter(
    backends: Backends = Depends(get_backends),
    repo: RateLimitRepository = Depends(get_rate_limit_repository),
) -> RateLimiter:
    return RateLimiter(repo, build_policies(backends.settings), clock=backends.clock)


async def get_otp_service(
    backends: Backends = Depends(get_backends),
    repo: OtpChallengeRepository = Depends(get_otp_repository),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> OtpService:
    settings = backends.settings
    return OtpService(
        repo,
        limiter,
        backends.notifier,
        secret_key=settings.secret_key,
        code_length=settings.otp_code_length,
        ttl_seconds=settings.otp_ttl_seconds,
        max_attempts=settings.otp_max_attempts,
        locks=backends.otp_locks,
        clock=backends.clock,
    )


async def get_auth_facade(
    backends: Backends = Depends(get_backends),
    users: UsersRepository = Depends(get_users_repository),
    otp: OtpService = Depends(get_otp_service),
) -> AuthFacade:
    return AuthFacade(
        users,
        otp,
        registration_requires_otp=backends.settings.registration_requires_otp,
        clock=backends.clock,
    )


async def get_booking_lifecycle(
    backends: Backends = Depends(get_backends),
    repo: BookingsRepository = Depends(get_bookings_repository),
) -> BookingLifecycle:
    notifier = backends.notifier if backends.settings.booking_notifications_enabled else None
    return BookingLifecycle(repo, notifier=notifier, clock=backends.clock)


async def get_pagination_params(
    limit: int = Query(default=25, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> PaginationParams:
    return PaginationParams(limit=limit, offset=offset)


def enforce_client_rate_limit(policy_name: str) -> Callable[..., RateLimitStatus]:
    """Dependency factory that meters OTP endpoints per client address."""

    async def dependency(
        request: Request,
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> RateLimitStatus:
        client = request.client.host if request.client else "unknown"
        status = await limiter.check(f"client:{client}", policy_name)
        if not status.allowed:
            raise RateLimited(status.retry_after_seconds)
        return status

    return dependency
