from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import StoreUnavailable
from ..domain.otp import OtpChallenge
from ..models.otp import OtpChallengeModel


class OtpChallengeRepository(Protocol):
    """Keyed store of verification challenges, one record per phone."""

    async def replace(self, challenge: OtpChallenge) -> OtpChallenge: ...

    async def get(self, phone: str) -> OtpChallenge | None: ...

    async def consume_attempt(self, phone: str, now: datetime) -> OtpChallenge | None:
        """Atomically take one attempt from the active challenge, if any."""
        ...

    async def mark_consumed(self, challenge_id: UUID, verified_at: datetime | None) -> bool:
        """Consume a challenge unless already consumed; report whether this call did it."""
        ...

    async def purge_expired(self, now: datetime) -> int: ...


class InMemoryOtpChallengeRepository:
    def __init__(self) -> None:
        self._challenges: dict[str, OtpChallenge] = {}

    async def replace(self, challenge: OtpChallenge) -> OtpChallenge:
        self._challenges[challenge.phone] = challenge
        return challenge

    async def get(self, phone: str) -> OtpChallenge | None:
        return self._challenges.get(phone)

    async def consume_attempt(self, phone: str, now: datetime) -> OtpChallenge | None:
        challenge = self._challenges.get(phone)
        if challenge is None or not challenge.is_active(now):
            return None
        updated = challenge.model_copy(
            update={"attempts_remaining": challenge.attempts_remaining - 1}
        )
        self._challenges[phone] = updated
        return updated

    async def mark_consumed(self, challenge_id: UUID, verified_at: datetime | None) -> bool:
        for phone, challenge in self._challenges.items():
            if challenge.id != challenge_id:
                continue
            if challenge.consumed:
                return False
            self._challenges[phone] = challenge.model_copy(
                update={"consumed": True, "verified_at": verified_at}
            )
            return True
        return False

    async def purge_expired(self, now: datetime) -> int:
        expired = [phone for phone, item in self._challenges.items() if item.expires_at <= now]
        for phone in expired:
            del self._challenges[phone]
        return len(expired)


_COLUMNS = tuple(OtpChallengeModel.__table__.c)


class SqlAlchemyOtpChallengeRepository:
    """SQL-backed challenge store; every mutation is a single guarded statement."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def replace(self, challenge: OtpChallenge) -> OtpChallenge:
        values = challenge.model_dump()
        for _ in range(3):
            result = await self._session.execute(
                update(OtpChallengeModel)
                .where(OtpChallengeModel.phone == challenge.phone)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                await self._session.commit()
                return challenge
            self._session.add(OtpChallengeModel(**values))
            try:
                await self._session.commit()
            except IntegrityError:
                await self._session.rollback()
                continue
            return challenge
        raise StoreUnavailable("Verification store is contended")

    async def get(self, phone: str) -> OtpChallenge | None:
        result = await self._session.execute(
            select(*_COLUMNS).where(OtpChallengeModel.phone == phone)
        )
        row = result.mappings().first()
        if row is None:
            return None
        return OtpChallenge.model_validate(dict(row))

    async def consume_attempt(self, phone: str, now: datetime) -> OtpChallenge | None:
        result = await self._session.execute(
            update(OtpChallengeModel)
            .where(
                OtpChallengeModel.phone == phone,
                OtpChallengeModel.consumed.is_(False),
                OtpChallengeModel.attempts_remaining > 0,
                OtpChallengeModel.expires_at > now,
            )
            .values(attempts_remaining=OtpChallengeModel.attempts_remaining - 1)
            .returning(*_COLUMNS)
            .execution_options(synchronize_session=False)
        )
        row = result.mappings().first()
        await self._session.commit()
        if row is None:
            return None
        return OtpChallenge.model_validate(dict(row))

    async def mark_consumed(self, challenge_id: UUID, verified_at: datetime | None) -> bool:
        result = await self._session.execute(
            update(OtpChallengeModel)
            .where(
                OtpChallengeModel.id == challenge_id,
                OtpChallengeModel.consumed.is_(False),
            )
            .values(consumed=True, verified_at=verified_at)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        return bool(result.rowcount)

    async def purge_expired(self, now: datetime) -> int:
        result = await self._session.execute(
            delete(OtpChallengeModel)
            .where(OtpChallengeModel.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        return result.rowcount or 0
