from __future__ import annotations

from collections.abc import Collection
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.bookings import Booking, BookingCreate, BookingStatus
from ..models.booking import BookingModel
from ..services.locks import KeyedLock


class BookingsRepository(Protocol):
    async def create(self, payload: BookingCreate, now: datetime) -> Booking: ...

    async def get(self, booking_id: UUID) -> Booking | None: ...

    async def list(self, status: BookingStatus | None = None) -> list[Booking]: ...

    async def list_for_phone(self, phone: str) -> list[Booking]: ...

    async def compare_and_set(
        self,
        booking_id: UUID,
        *,
        expected_statuses: Collection[BookingStatus],
        values: dict[str, Any],
        now: datetime,
        expected_version: int | None = None,
    ) -> Booking | None:
        """Apply ``values`` only if the stored booking still matches the guard.

        Returns the updated booking, or ``None`` when the booking is missing or
        the guard failed. The check and the write are one indivisible step.
        """
        ...

    async def delete(self, booking_id: UUID) -> bool: ...


def _newest_first(bookings: list[Booking]) -> list[Booking]:
    return sorted(bookings, key=lambda booking: booking.created_at, reverse=True)


class InMemoryBookingsRepository:
    """Volatile repository guarded by one lock per booking."""

    def __init__(self) -> None:
        self._bookings: dict[UUID, Booking] = {}
        self._locks = KeyedLock()

    async def create(self, payload: BookingCreate, now: datetime) -> Booking:
        booking = Booking(**payload.model_dump(), created_at=now, updated_at=now)
        self._bookings[booking.id] = booking
        return booking

    async def get(self, booking_id: UUID) -> Booking | None:
        return self._bookings.get(booking_id)

    async def list(self, status: BookingStatus | None = None) -> list[Booking]:
        return _newest_first(
            [
                booking
                for booking in self._bookings.values()
                if status is None or booking.status == status
            ]
        )

    async def list_for_phone(self, phone: str) -> list[Booking]:
        return _newest_first(
            [
                booking
                for booking in self._bookings.values()
                if phone in (booking.customer_ref, booking.driver_ref)
            ]
        )

    async def compare_and_set(
        self,
        booking_id: UUID,
        *,
        expected_statuses: Collection[BookingStatus],
        values: dict[str, Any],
        now: datetime,
        expected_version: int | None = None,
    ) -> Booking | None:
        async with self._locks.hold(str(booking_id)):
            booking = self._bookings.get(booking_id)
            if booking is None or booking.status not in expected_statuses:
                return None
            if expected_version is not None and booking.version != expected_version:
                return None
            updated = booking.model_copy(
                update={**values, "version": booking.version + 1, "updated_at": now}
            )
            self._bookings[booking_id] = updated
            return updated

    async def delete(self, booking_id: UUID) -> bool:
        async with self._locks.hold(str(booking_id)):
            return self._bookings.pop(booking_id, None) is not None


_COLUMNS = tuple(BookingModel.__table__.c)


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


class SqlAlchemyBookingsRepository:
    """SQL-backed bookings; guarded writes are single ``UPDATE … RETURNING`` statements."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, payload: BookingCreate, now: datetime) -> Booking:
        booking = Booking(**payload.model_dump(), created_at=now, updated_at=now)
        model = BookingModel(
            **{
                key: _column_value(getattr(booking, key))
                for key in Booking.model_fields
            }
        )
        self._session.add(model)
        await self._session.commit()
        return booking

    async def get(self, booking_id: UUID) -> Booking | None:
        result = await self._session.execute(
            select(*_COLUMNS).where(BookingModel.id == booking_id)
        )
        row = result.mappings().first()
        if row is None:
            return None
        return Booking.model_validate(dict(row))

    async def list(self, status: BookingStatus | None = None) -> list[Booking]:
        stmt = select(*_COLUMNS).order_by(BookingModel.created_at.desc())
        if status is not None:
            stmt = stmt.where(BookingModel.status == status.value)
        result = await self._session.execute(stmt)
        return [Booking.model_validate(dict(row)) for row in result.mappings().all()]

    async def list_for_phone(self, phone: str) -> list[Booking]:
        result = await self._session.execute(
            select(*_COLUMNS)
            .where(or_(BookingModel.customer_ref == phone, BookingModel.driver_ref == phone))
            .order_by(BookingModel.created_at.desc())
        )
        return [Booking.model_validate(dict(row)) for row in result.mappings().all()]

    async def compare_and_set(
        self,
        booking_id: UUID,
        *,
        expected_statuses: Collection[BookingStatus],
        values: dict[str, Any],
        now: datetime,
        expected_version: int | None = None,
    ) -> Booking | None:
        stmt = update(BookingModel).where(
            BookingModel.id == booking_id,
            BookingModel.status.in_([status.value for status in expected_statuses]),
        )
        if expected_version is not None:
            stmt = stmt.where(BookingModel.version == expected_version)
        result = await self._session.execute(
            stmt.values(
                **{key: _column_value(value) for key, value in values.items()},
                version=BookingModel.version + 1,
                updated_at=now,
            )
            .returning(*_COLUMNS)
            .execution_options(synchronize_session=False)
        )
        row = result.mappings().first()
        await self._session.commit()
        if row is None:
            return None
        return Booking.model_validate(dict(row))

    async def delete(self, booking_id: UUID) -> bool:
        result = await self._session.execute(
            delete(BookingModel)
            .where(BookingModel.id == booking_id)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        return bool(result.rowcount)
