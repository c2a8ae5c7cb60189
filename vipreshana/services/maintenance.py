"""Background reclamation of expired OTP challenges and rate-limit windows."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from ..core.clock import Clock, utcnow
from ..domain.errors import StoreUnavailable
from ..repositories.otp import OtpChallengeRepository
from .rate_limiter import RateLimiter

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SweepResult:
    challenges: int
    rate_windows: int


async def sweep_expired(
    challenges: OtpChallengeRepository,
    limiter: RateLimiter,
    *,
    clock: Clock = utcnow,
) -> SweepResult:
    result = SweepResult(
        challenges=await challenges.purge_expired(clock()),
        rate_windows=await limiter.sweep(),
    )
    if result.challenges or result.rate_windows:
        logger.info(
            "maintenance.swept",
            challenges=result.challenges,
            rate_windows=result.rate_windows,
        )
    return result


class PeriodicSweeper:
    """Runs ``run_once`` every ``interval_seconds`` until stopped.

    A failed pass is logged and retried on the next tick; expired records are
    also ignored lazily by the stores, so a missed pass only delays cleanup.
    """

    def __init__(
        self,
        run_once: Callable[[], Awaitable[SweepResult]],
        interval_seconds: float,
    ) -> None:
        self._run_once = run_once
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="vipreshana-sweeper")
        logger.info("maintenance.sweeper_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._run_once()
            except (SQLAlchemyError, RedisError, StoreUnavailable) as exc:
                logger.error("maintenance.sweep_failed", error=str(exc))
            except Exception:
                logger.exception("maintenance.sweep_crashed")
