"""
Rate limiter behaviour.

Property: within one window the number of accepted hits never exceeds the
policy limit, and rejected hits are recorded without consuming quota.
"""

from __future__ import annotations

import asyncio

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from hypothesis import given, settings, strategies as st

from conftest import ManualClock
from vipreshana.domain.errors import StoreUnavailable
from vipreshana.domain.rate_limits import RateLimitPolicy
from vipreshana.repositories.rate_limits import (
    InMemoryRateLimitRepository,
    RedisRateLimitRepository,
)
from vipreshana.services.rate_limiter import OTP_SEND, RateLimiter


def _limiter(limit: int, window: int, clock: ManualClock, repo=None) -> RateLimiter:
    repo = repo or InMemoryRateLimitRepository()
    policy = RateLimitPolicy(name="test", limit=limit, window_seconds=window)
    return RateLimiter(repo, {policy.name: policy}, clock=clock)


def test_allows_up_to_limit_then_rejects(clock):
    repo = InMemoryRateLimitRepository()
    limiter = _limiter(3, 60, clock, repo)

    async def scenario():
        return [await limiter.allow("9990001111", "test") for _ in range(5)]

    assert asyncio.run(scenario()) == [True, True, True, False, False]
    assert repo.rejections("test", "9990001111") == 2


def test_rejection_reports_retry_after(clock):
    limiter = _limiter(1, 60, clock)

    async def scenario():
        await limiter.check("9990001111", "test")
        clock.advance(20)
        return await limiter.check("9990001111", "test")

    status = asyncio.run(scenario())
    assert not status.allowed
    assert status.remaining == 0
    assert status.retry_after_seconds == 40


def test_window_slides(clock):
    limiter = _limiter(2, 60, clock)

    async def scenario():
        await limiter.allow("a", "test")
        clock.advance(30)
        await limiter.allow("a", "test")
        clock.advance(31)
        first_expired = await limiter.allow("a", "test")
        second_still_live = await limiter.allow("a", "test")
        return first_expired, second_still_live

    assert asyncio.run(scenario()) == (True, False)


def test_identifiers_are_independent(clock):
    limiter = _limiter(1, 60, clock)

    async def scenario():
        return [
            await limiter.allow("a", "test"),
            await limiter.allow("b", "test"),
            await limiter.allow("a", "test"),
        ]

    assert asyncio.run(scenario()) == [True, True, False]


def test_unknown_policy_is_rejected(clock):
    limiter = _limiter(1, 60, clock)
    with pytest.raises(ValueError):
        asyncio.run(limiter.check("a", OTP_SEND))


def test_store_failure_fails_closed(clock):
    from sqlalchemy.exc import OperationalError

    class BrokenRepository(InMemoryRateLimitRepository):
        async def hit(self, **kwargs):
            raise OperationalError("UPDATE rate_limits", {}, Exception("down"))

    limiter = _limiter(1, 60, clock, BrokenRepository())
    with pytest.raises(StoreUnavailable):
        asyncio.run(limiter.check("a", "test"))


def test_sweep_drops_stale_buckets(clock):
    repo = InMemoryRateLimitRepository()
    limiter = _limiter(5, 60, clock, repo)

    async def scenario():
        await limiter.allow("a", "test")
        clock.advance(61)
        await limiter.allow("b", "test")
        return await limiter.sweep()

    assert asyncio.run(scenario()) == 1



def test_redis_rejects_over_limit_without_consuming_quota(clock):
    async def scenario():
        client = FakeAsyncRedis(server=FakeServer(), decode_responses=True)
        repo = RedisRateLimitRepository(client)
        limiter = _limiter(2, 60, clock, repo)
        statuses = []
        for _ in range(3):
            statuses.append(await limiter.check("9990001111", "test"))
            clock.advance(10)
        rejected = await client.get("ratelimit:test:9990001111:rejected")
        clock.advance(31)
        after_oldest_expired = await limiter.check("9990001111", "test")
        await repo.close()
        return statuses, rejected, after_oldest_expired

    statuses, rejected, after_oldest_expired = asyncio.run(scenario())
    assert [status.allowed for status in statuses] == [True, True, False]
    assert statuses[1].remaining == 0
    assert statuses[2].retry_after_seconds == 40
    assert rejected == "1"
    assert after_oldest_expired.allowed
    assert after_oldest_expired.remaining == 0


def test_redis_window_slides(clock):
    async def scenario():
        repo = RedisRateLimitRepository(
            FakeAsyncRedis(server=FakeServer(), decode_responses=True)
        )
        limiter = _limiter(2, 60, clock, repo)
        await limiter.allow("a", "test")
        clock.advance(30)
        await limiter.allow("a", "test")
        clock.advance(31)
        first_expired = await limiter.allow("a", "test")
        second_still_live = await limiter.check("a", "test")
        await repo.close()
        return first_expired, second_still_live

    first_expired, second_still_live = asyncio.run(scenario())
    assert first_expired
    assert not second_still_live.allowed
    assert second_still_live.retry_after_seconds == 29

@settings(max_examples=50, deadline=None)
@given(
    limit=st.integers(min_value=1, max_value=10),
    gaps=st.lists(st.integers(min_value=0, max_value=30), min_size=1, max_size=40),
)
def test_accepted_hits_never_exceed_limit_in_any_window(limit, gaps):
    """
    Property: for any sequence of hits, every window of ``window_seconds``
    contains at most ``limit`` accepted hits.
    """
    window = 60
    clock = ManualClock()
    limiter = _limiter(limit, window, clock)

    async def scenario():
        accepted = []
        for gap in gaps:
            clock.advance(gap)
            if await limiter.allow("9990001111", "test"):
                accepted.append(clock.now)
        return accepted

    accepted = asyncio.run(scenario())
    for index, started in enumerate(accepted):
        in_window = [t for t in accepted[index:] if (t - started).total_seconds() < window]
        assert len(in_window) <= limit
