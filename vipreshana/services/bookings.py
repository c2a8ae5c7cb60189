"""Booking lifecycle: pending → accepted → completed, cancellable until completion."""

from __future__ import annotations

from typing import Callable
from uuid import UUID

import structlog

from ..core.clock import Clock, utcnow
from ..core.logging import mask_phone
from ..domain.bookings import (
    Actor,
    Booking,
    BookingChanges,
    BookingCreate,
    BookingStatus,
    can_transition,
)
from ..domain.errors import (
    AlreadyAccepted,
    BookingNotFound,
    InvalidTransition,
    Unauthorized,
)
from ..domain.phones import normalize_phone
from ..repositories.bookings import BookingsRepository
from ..telemetry import BOOKING_TRANSITIONS
from .notifier import DeliveryError, Notifier

logger = structlog.get_logger(__name__)

STATUS_MESSAGES = {
    BookingStatus.ACCEPTED: "Your Vipreshana booking {ref} was accepted by driver {driver}.",
    BookingStatus.COMPLETED: "Your Vipreshana booking {ref} has been delivered. Thank you!",
    BookingStatus.CANCELLED: "Your Vipreshana booking {ref} has been cancelled.",
}


class BookingLifecycle:
    """Enforces legal status moves and the single-winner driver acceptance.

    Every write goes through ``compare_and_set`` so the store evaluates the
    guard and applies the change in one step.
    """

    def __init__(
        self,
        repository: BookingsRepository,
        *,
        notifier: Notifier | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._repository = repository
        self._notifier = notifier
        self._clock = clock

    async def create(self, payload: BookingCreate) -> Booking:
        payload = payload.model_copy(
            update={"customer_ref": normalize_phone(payload.customer_ref)}
        )
        booking = await self._repository.create(payload, self._clock())
        logger.info(
            "booking.created",
            booking_id=str(booking.id),
            customer=mask_phone(booking.customer_ref),
            vehicle_type=booking.vehicle_type.value,
        )
        BOOKING_TRANSITIONS.labels(operation="create", outcome="ok").inc()
        return booking

    async def get(self, booking_id: UUID) -> Booking:
        booking = await self._repository.get(booking_id)
        if booking is None:
            raise BookingNotFound()
        return booking

    async def list(self, status: BookingStatus | None = None) -> list[Booking]:
        return await self._repository.list(status)

    async def list_for_phone(self, phone: str) -> list[Booking]:
        return await self._repository.list_for_phone(normalize_phone(phone))

    async def accept(self, booking_id: UUID, driver_ref: str) -> Booking:
        driver_ref = normalize_phone(driver_ref)
        now = self._clock()
        booking = await self._repository.compare_and_set(
            booking_id,
            expected_statuses={BookingStatus.PENDING},
            values={
                "status": BookingStatus.ACCEPTED,
                "driver_ref": driver_ref,
                "accepted_at": now,
            },
            now=now,
        )
        if booking is None:
            current = await self.get(booking_id)
            BOOKING_TRANSITIONS.labels(operation="accept", outcome="conflict").inc()
            if current.status in (BookingStatus.ACCEPTED, BookingStatus.COMPLETED):
                logger.info(
                    "booking.accept_lost",
                    booking_id=str(booking_id),
                    driver=mask_phone(driver_ref),
                )
                raise AlreadyAccepted()
            raise InvalidTransition(f"Cannot accept a {current.status.value} booking")

        logger.info("booking.accepted", booking_id=str(booking_id), driver=mask_phone(driver_ref))
        BOOKING_TRANSITIONS.labels(operation="accept", outcome="ok").inc()
        await self._notify_customer(booking)
        return booking

    async def complete(self, booking_id: UUID, actor: Actor) -> Booking:
        def prepare(current: Booking) -> dict:
            self._ensure_transition(current, BookingStatus.COMPLETED)
            if not (actor.is_admin or actor.ref == current.driver_ref):
                raise Unauthorized("Only the assigned driver can complete this booking")
            return {"status": BookingStatus.COMPLETED, "completed_at": self._clock()}

        _, booking = await self._guarded_write(booking_id, "complete", prepare)
        logger.info("booking.completed", booking_id=str(booking_id))
        await self._notify_customer(booking)
        return booking

    async def cancel(self, booking_id: UUID, actor: Actor) -> Booking:
        def prepare(current: Booking) -> dict:
            self._ensure_transition(current, BookingStatus.CANCELLED)
            if not (actor.is_admin or actor.ref in (current.customer_ref, current.driver_ref)):
                raise Unauthorized("Only the customer, the assigned driver or an admin can cancel")
            return {
                "status": BookingStatus.CANCELLED,
                "driver_ref": None,
                "cancelled_by": actor.ref,
                "cancelled_at": self._clock(),
            }

        previous, booking = await self._guarded_write(booking_id, "cancel", prepare)
        logger.info(
            "booking.cancelled",
            booking_id=str(booking_id),
            by=mask_phone(actor.ref),
            previous_status=previous.status.value,
        )
        await self._notify_customer(booking)
        return booking

    async def update_details(
        self, booking_id: UUID, actor: Actor, changes: BookingChanges
    ) -> Booking:
        values = changes.model_dump(exclude_unset=True, exclude_none=True)
        # Re-wrap nested locations so the repositories receive models, not dicts.
        for field in ("pickup", "dropoff"):
            if field in values:
                values[field] = getattr(changes, field)

        def prepare(current: Booking) -> dict:
            if current.status != BookingStatus.PENDING:
                raise InvalidTransition("Only pending bookings can be edited")
            if not (actor.is_admin or actor.ref == current.customer_ref):
                raise Unauthorized("Only the customer can edit this booking")
            return values

        _, booking = await self._guarded_write(booking_id, "update", prepare)
        if values:
            logger.info("booking.updated", booking_id=str(booking_id), fields=sorted(values))
        return booking

    async def delete(self, booking_id: UUID, actor: Actor) -> None:
        if not actor.is_admin:
            raise Unauthorized("Only administrators can delete bookings")
        if not await self._repository.delete(booking_id):
            raise BookingNotFound()
        logger.info("booking.deleted", booking_id=str(booking_id), by=mask_phone(actor.ref))
        BOOKING_TRANSITIONS.labels(operation="delete", outcome="ok").inc()

    @staticmethod
    def _ensure_transition(booking: Booking, target: BookingStatus) -> None:
        if not can_transition(booking.status, target):
            raise InvalidTransition(
                f"Cannot move a {booking.status.value} booking to {target.value}"
            )

    async def _guarded_write(
        self,
        booking_id: UUID,
        operation: str,
        prepare: Callable[[Booking], dict],
    ) -> tuple[Booking, Booking]:
        """Write the values ``prepare`` derives from the stored booking.

        When the version guard rejects the write the booking is re-read and
        ``prepare`` evaluated again, once. Returns the booking as read and as
        written.
        """

        current = await self.get(booking_id)
        for _ in range(2):
            values = prepare(current)
            if not values:
                return current, current
            booking = await self._repository.compare_and_set(
                current.id,
                expected_statuses={current.status},
                expected_version=current.version,
                values=values,
                now=self._clock(),
            )
            if booking is not None:
                BOOKING_TRANSITIONS.labels(operation=operation, outcome="ok").inc()
                return current, booking
            BOOKING_TRANSITIONS.labels(operation=operation, outcome="conflict").inc()
            current = await self.get(booking_id)
        raise InvalidTransition(
            f"Booking changed concurrently and is now {current.status.value}"
        )

    async def _notify_customer(self, booking: Booking) -> None:
        template = STATUS_MESSAGES.get(booking.status)
        if self._notifier is None or template is None:
            return
        message = template.format(ref=str(booking.id)[:8], driver=booking.driver_ref or "")
        try:
            await self._notifier.send(booking.customer_ref, message)
        except DeliveryError as exc:
            # The transition is already stored; the text is best effort.
            logger.warning(
                "booking.notification_failed",
                booking_id=str(booking.id),
                status=booking.status.value,
                error=str(exc),
            )
