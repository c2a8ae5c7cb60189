"""Rate limit counter stores."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timedelta
from typing import DefaultDict, Tuple
from uuid import uuid4

from redis.asyncio import Redis
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import to_epoch_ms
from ..domain.errors import StoreUnavailable
from ..domain.rate_limits import RateLimitStatus
from ..models.rate_limit import RateLimitCounterModel


def _allowed(limit: int, used: int) -> RateLimitStatus:
    return RateLimitStatus(
        allowed=True,
        limit=limit,
        remaining=max(limit - used, 0),
        retry_after_seconds=0,
    )


def _denied(limit: int, retry_after: float) -> RateLimitStatus:
    return RateLimitStatus(
        allowed=False,
        limit=limit,
        remaining=0,
        retry_after_seconds=max(math.ceil(retry_after), 1),
    )


class RateLimitRepository(ABC):
    """Interface describing operations for tracking request quotas."""

    @abstractmethod
    async def hit(
        self,
        *,
        scope: str,
        key: str,
        limit: int,
        window_seconds: int,
        now: datetime,
    ) -> RateLimitStatus:
        """Record a request and return the latest quota status.

        Rejected requests are recorded without consuming quota.
        """

    @abstractmethod
    async def sweep(self, *, older_than: datetime) -> int:
        """Drop counters whose newest activity predates ``older_than``."""


class InMemoryRateLimitRepository(RateLimitRepository):
    """Sliding-window limiter using per-scope timestamp buckets."""

    def __init__(self) -> None:
        self._buckets: DefaultDict[Tuple[str, str], list[datetime]] = defaultdict(list)
        self._rejections: DefaultDict[Tuple[str, str], int] = defaultdict(int)

    async def hit(
        self,
        *,
        scope: str,
        key: str,
        limit: int,
        window_seconds: int,
        now: datetime,
    ) -> RateLimitStatus:
        bucket_key = (scope, key)
        entries = self._buckets[bucket_key]
        window_start = now - timedelta(seconds=window_seconds)
        # Drop timestamps that are outside of the active window
        entries[:] = [timestamp for timestamp in entries if timestamp > window_start]

        if len(entries) >= limit:
            self._rejections[bucket_key] += 1
            retry_after = (entries[0] - window_start).total_seconds()
            return _denied(limit, retry_after)

        entries.append(now)
        return _allowed(limit, len(entries))

    async def sweep(self, *, older_than: datetime) -> int:
        stale = [
            bucket_key
            for bucket_key, entries in self._buckets.items()
            if not entries or entries[-1] <= older_than
        ]
        for bucket_key in stale:
            del self._buckets[bucket_key]
            self._rejections.pop(bucket_key, None)
        return len(stale)

    def rejections(self, scope: str, key: str) -> int:
        return self._rejections.get((scope, key), 0)


class SqlAlchemyRateLimitRepository(RateLimitRepository):
    """Fixed-window counters in SQL, advanced only through conditional updates."""

    max_insert_retries = 3

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def hit(
        self,
        *,
        scope: str,
        key: str,
        limit: int,
        window_seconds: int,
        now: datetime,
    ) -> RateLimitStatus:
        model = RateLimitCounterModel
        window_start = now - timedelta(seconds=window_seconds)
        same_counter = (model.scope == scope, model.identity == key)

        for _ in range(self.max_insert_retries):
            result = await self._session.execute(
                update(model)
                .where(*same_counter, model.window_started_at > window_start, model.count < limit)
                .values(count=model.count + 1)
                .returning(model.count)
                .execution_options(synchronize_session=False)
            )
            used = result.scalar_one_or_none()
            if used is not None:
                await self._session.commit()
                return _allowed(limit, used)

            result = await self._session.execute(
                update(model)
                .where(*same_counter, model.window_started_at <= window_start)
                .values(window_started_at=now, count=1, rejected=0)
                .returning(model.count)
                .execution_options(synchronize_session=False)
            )
            if result.scalar_one_or_none() is not None:
                await self._session.commit()
                return _allowed(limit, 1)

            result = await self._session.execute(
                update(model)
                .where(*same_counter)
                .values(rejected=model.rejected + 1)
                .returning(model.window_started_at)
                .execution_options(synchronize_session=False)
            )
            started_at = result.scalar_one_or_none()
            if started_at is not None:
                await self._session.commit()
                elapsed = (now - started_at).total_seconds()
                return _denied(limit, window_seconds - elapsed)

            self._session.add(
                model(scope=scope, identity=key, window_started_at=now, count=1, rejected=0)
            )
            try:
                await self._session.commit()
            except IntegrityError:
                # Another request created the counter first; evaluate against it.
                await self._session.rollback()
                continue
            return _allowed(limit, 1)

        raise StoreUnavailable("Rate limit counter is contended")

    async def sweep(self, *, older_than: datetime) -> int:
        result = await self._session.execute(
            delete(RateLimitCounterModel)
            .where(RateLimitCounterModel.window_started_at <= older_than)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        return result.rowcount or 0


_SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local rejected_key = KEYS[2]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local used = redis.call('ZCARD', key)
if used >= limit then
  redis.call('INCR', rejected_key)
  redis.call('PEXPIRE', rejected_key, window)
  local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
  return {0, used, tonumber(oldest[2])}
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('PEXPIRE', key, window)
return {1, used + 1, now}
"""


class RedisRateLimitRepository(RateLimitRepository):
    """Sliding-window limiter on a Redis sorted set, evaluated atomically in Lua."""

    def __init__(self, client: Redis, *, prefix: str = "ratelimit") -> None:
        self._client = client
        self._prefix = prefix
        self._script = client.register_script(_SLIDING_WINDOW_SCRIPT)

    @classmethod
    def from_url(cls, url: str) -> "RedisRateLimitRepository":
        return cls(Redis.from_url(url, decode_responses=True, socket_timeout=5))

    async def hit(
        self,
        *,
        scope: str,
        key: str,
        limit: int,
        window_seconds: int,
        now: datetime,
    ) -> RateLimitStatus:
        now_ms = to_epoch_ms(now)
        window_ms = window_seconds * 1000
        full_key = f"{self._prefix}:{scope}:{key}"
        allowed, used, oldest_ms = await self._script(
            keys=[full_key, f"{full_key}:rejected"],
            args=[now_ms, window_ms, limit, f"{now_ms}-{uuid4().hex}"],
        )
        if int(allowed):
            return _allowed(limit, int(used))
        return _denied(limit, (int(oldest_ms) + window_ms - now_ms) / 1000)

    async def sweep(self, *, older_than: datetime) -> int:
        # Keys carry a PEXPIRE of one window, Redis evicts them itself.
        return 0

    async def close(self) -> None:
        await self._client.aclose()
