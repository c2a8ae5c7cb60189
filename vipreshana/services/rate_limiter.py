"""Named rate limiting policies evaluated against a counter store."""

from __future__ import annotations

from datetime import timedelta
from typing import Mapping

import structlog
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from ..core.clock import Clock, utcnow
from ..core.config import Settings
from ..domain.errors import StoreUnavailable
from ..domain.rate_limits import RateLimitPolicy, RateLimitStatus
from ..repositories.rate_limits import RateLimitRepository

logger = structlog.get_logger(__name__)

OTP_SEND = "otp-send"
OTP_VERIFY = "otp-verify"
OTP_SEND_CLIENT = "otp-send-client"
OTP_VERIFY_CLIENT = "otp-verify-client"


def build_policies(settings: Settings) -> dict[str, RateLimitPolicy]:
    """Policies keyed by name; send limits are coarse, verify limits guard brute force."""

    policies = [
        RateLimitPolicy(
            name=OTP_SEND,
            limit=settings.otp_send_limit,
            window_seconds=settings.otp_send_window_seconds,
        ),
        RateLimitPolicy(
            name=OTP_VERIFY,
            limit=settings.otp_verify_limit,
            window_seconds=settings.otp_verify_window_seconds,
        ),
        RateLimitPolicy(
            name=OTP_SEND_CLIENT,
            limit=settings.otp_send_client_limit,
            window_seconds=settings.otp_send_window_seconds,
        ),
        RateLimitPolicy(
            name=OTP_VERIFY_CLIENT,
            limit=settings.otp_verify_client_limit,
            window_seconds=settings.otp_verify_window_seconds,
        ),
    ]
    return {policy.name: policy for policy in policies}


class RateLimiter:
    """Evaluates ``allow(identifier, policy)`` decisions.

    Store failures raise ``StoreUnavailable`` so callers deny the action
    instead of letting it through unmetered.
    """

    def __init__(
        self,
        repository: RateLimitRepository,
        policies: Mapping[str, RateLimitPolicy],
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._repository = repository
        self._policies = dict(policies)
        self._clock = clock

    def policy(self, name: str) -> RateLimitPolicy:
        try:
            return self._policies[name]
        except KeyError as exc:
            raise ValueError(f"unknown rate limit policy {name!r}") from exc

    async def check(self, identifier: str, policy_name: str) -> RateLimitStatus:
        policy = self.policy(policy_name)
        try:
            status = await self._repository.hit(
                scope=policy.name,
                key=identifier,
                limit=policy.limit,
                window_seconds=policy.window_seconds,
                now=self._clock(),
            )
        except (SQLAlchemyError, RedisError) as exc:
            logger.error("rate_limit.store_unavailable", scope=policy.name, error=str(exc))
            raise StoreUnavailable() from exc
        if not status.allowed:
            logger.info(
                "rate_limit.rejected",
                scope=policy.name,
                limit=status.limit,
                retry_after=status.retry_after_seconds,
            )
        return status

    async def allow(self, identifier: str, policy_name: str) -> bool:
        return (await self.check(identifier, policy_name)).allowed

    async def sweep(self) -> int:
        if not self._policies:
            return 0
        longest = max(policy.window_seconds for policy in self._policies.values())
        return await self._repository.sweep(older_than=self._clock() - timedelta(seconds=longest))
