from __future__ import annotations

from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from .api.dependencies import Backends, init_backends
from .api.routes.auth import router as auth_router
from .api.routes.bookings import router as bookings_router
from .api.routes.otp import router as otp_router
from .core.clock import Clock, utcnow
from .core.config import Settings, get_settings
from .core.logging import configure_logging
from .db import init_db
from .domain.errors import RateLimited, ServiceError, StoreUnavailable
from .repositories.otp import SqlAlchemyOtpChallengeRepository
from .repositories.rate_limits import SqlAlchemyRateLimitRepository
from .services.maintenance import PeriodicSweeper, SweepResult, sweep_expired
from .services.notifier import Notifier
from .services.rate_limiter import RateLimiter, build_policies
from .telemetry import configure_tracing, setup_prometheus

logger = structlog.get_logger(__name__)


def _sweep_job(backends: Backends) -> Callable[[], Awaitable[SweepResult]]:
    policies = build_policies(backends.settings)

    async def run_once() -> SweepResult:
        if backends.sessionmaker is None:
            limiter = RateLimiter(
                backends.redis_rate_limits or backends.rate_limits,
                policies,
                clock=backends.clock,
            )
            return await sweep_expired(backends.otp_challenges, limiter, clock=backends.clock)
        async with backends.sessionmaker() as session:
            limiter = RateLimiter(
                backends.redis_rate_limits or SqlAlchemyRateLimitRepository(session),
                policies,
                clock=backends.clock,
            )
            return await sweep_expired(
                SqlAlchemyOtpChallengeRepository(session), limiter, clock=backends.clock
            )

    return run_once


def create_app(
    settings: Settings | None = None,
    *,
    notifier: Notifier | None = None,
    clock: Clock = utcnow,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    app = FastAPI(title=settings.project_name, version=__version__)
    backends = init_backends(app, settings, notifier=notifier, clock=clock)
    sweeper = PeriodicSweeper(_sweep_job(backends), settings.sweep_interval_seconds)

    allow_origins = settings.cors_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in allow_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError) -> JSONResponse:
        headers = None
        if isinstance(exc, RateLimited):
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(
            status_code=exc.status_code, content=exc.to_payload(), headers=headers
        )

    @app.exception_handler(SQLAlchemyError)
    @app.exception_handler(RedisError)
    async def _store_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "store.unavailable",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        error = StoreUnavailable()
        return JSONResponse(status_code=error.status_code, content=error.to_payload())

    @app.on_event("startup")
    async def _startup() -> None:
        if backends.engine is not None:
            await init_db(backends.engine)
        sweeper.start()
        logger.info("app.started", storage=backends.storage, version=__version__)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await sweeper.stop()
        if backends.redis_rate_limits is not None:
            await backends.redis_rate_limits.close()
        if backends.engine is not None:
            await backends.engine.dispose()

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": "api", "storage": backends.storage}

    app.include_router(otp_router, prefix=settings.api_prefix)
    app.include_router(auth_router, prefix=settings.api_prefix)
    app.include_router(bookings_router, prefix=settings.api_prefix)

    if settings.enable_prometheus_metrics:
        setup_prometheus(app, settings)
    configure_tracing(app, settings)

    return app


app = create_app()
