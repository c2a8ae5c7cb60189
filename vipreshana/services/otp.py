"""Issuing and verifying one-time codes that prove control of a phone number."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ..core.clock import Clock, utcnow
from ..core.logging import mask_phone
from ..core.security import code_matches, digest_code, generate_numeric_code
from ..domain.errors import (
    AttemptsExhausted,
    ChallengeExpired,
    CodeMismatch,
    DeliveryFailed,
    NoActiveChallenge,
    RateLimited,
    StoreUnavailable,
)
from ..domain.otp import OtpChallenge
from ..domain.phones import normalize_phone, validate_code
from ..repositories.otp import OtpChallengeRepository
from ..telemetry import OTP_EVENTS
from .locks import KeyedLock
from .notifier import DeliveryError, Notifier
from .rate_limiter import OTP_SEND, OTP_VERIFY, RateLimiter

logger = structlog.get_logger(__name__)

OTP_MESSAGE = "Your Vipreshana verification code is {code}. It expires in {minutes} minutes."


class OtpService:
    """Issues single-use codes and checks submitted ones.

    Work for one phone is serialised by a keyed lock shared across requests;
    the store's conditional updates keep separate processes consistent. Codes
    are delivered only after the challenge is stored and the lock released.
    """

    def __init__(
        self,
        repository: OtpChallengeRepository,
        limiter: RateLimiter,
        notifier: Notifier,
        *,
        secret_key: str,
        code_length: int = 6,
        ttl_seconds: int = 300,
        max_attempts: int = 5,
        locks: KeyedLock | None = None,
        clock: Clock = utcnow,
        code_factory: Callable[[int], str] = generate_numeric_code,
    ) -> None:
        self._repository = repository
        self._limiter = limiter
        self._notifier = notifier
        self._secret_key = secret_key
        self._code_length = code_length
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_attempts = max_attempts
        self._locks = locks or KeyedLock()
        self._clock = clock
        self._code_factory = code_factory

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    async def issue(self, phone: str) -> OtpChallenge:
        phone = normalize_phone(phone)
        async with self._locks.hold(phone):
            status = await self._limiter.check(phone, OTP_SEND)
            if not status.allowed:
                OTP_EVENTS.labels(event="send_rate_limited").inc()
                raise RateLimited(status.retry_after_seconds)

            code = self._code_factory(self._code_length)
            now = self._clock()
            challenge = OtpChallenge(
                phone=phone,
                code_digest=digest_code(self._secret_key, phone, code),
                created_at=now,
                expires_at=now + self._ttl,
                attempts_remaining=self._max_attempts,
            )
            try:
                challenge = await self._repository.replace(challenge)
            except SQLAlchemyError as exc:
                logger.error("otp.store_unavailable", phone=mask_phone(phone), error=str(exc))
                raise StoreUnavailable() from exc

        logger.info("otp.issued", phone=mask_phone(phone), challenge_id=str(challenge.id))
        OTP_EVENTS.labels(event="issued").inc()

        message = OTP_MESSAGE.format(code=code, minutes=max(self.ttl_seconds // 60, 1))
        try:
            await self._notifier.send(phone, message)
        except DeliveryError as exc:
            # The stored challenge stays valid; the user can retry or re-issue.
            logger.error(
                "otp.delivery_failed",
                phone=mask_phone(phone),
                challenge_id=str(challenge.id),
                error=str(exc),
            )
            OTP_EVENTS.labels(event="delivery_failed").inc()
            raise DeliveryFailed() from exc
        return challenge

    async def verify(self, phone: str, code: str) -> OtpChallenge:
        phone = normalize_phone(phone)
        code = validate_code(code, self._code_length)
        async with self._locks.hold(phone):
            status = await self._limiter.check(phone, OTP_VERIFY)
            if not status.allowed:
                OTP_EVENTS.labels(event="verify_rate_limited").inc()
                raise RateLimited(status.retry_after_seconds)

            now = self._clock()
            try:
                challenge = await self._repository.consume_attempt(phone, now)
                if challenge is None:
                    raise self._explain_missing(await self._repository.get(phone), now)

                if code_matches(self._secret_key, phone, code, challenge.code_digest):
                    if not await self._repository.mark_consumed(challenge.id, verified_at=now):
                        raise NoActiveChallenge()
                    logger.info("otp.verified", phone=mask_phone(phone))
                    OTP_EVENTS.labels(event="verified").inc()
                    return challenge.model_copy(update={"consumed": True, "verified_at": now})

                if challenge.attempts_remaining == 0:
                    await self._repository.mark_consumed(challenge.id, verified_at=None)
                    logger.warning("otp.attempts_exhausted", phone=mask_phone(phone))
                    OTP_EVENTS.labels(event="exhausted").inc()
                    raise AttemptsExhausted()
            except SQLAlchemyError as exc:
                logger.error("otp.store_unavailable", phone=mask_phone(phone), error=str(exc))
                raise StoreUnavailable() from exc

        OTP_EVENTS.labels(event="mismatch").inc()
        raise CodeMismatch(challenge.attempts_remaining)

    @staticmethod
    def _explain_missing(challenge: OtpChallenge | None, now: datetime) -> Exception:
        if challenge is None:
            return NoActiveChallenge()
        if challenge.exhausted:
            return AttemptsExhausted()
        if not challenge.consumed and challenge.expires_at <= now:
            return ChallengeExpired()
        return NoActiveChallenge()
