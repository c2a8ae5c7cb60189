"""Booking ORM model."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Float, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


class BookingModel(Base):
    """Persisted transport bookings.

    ``version`` increases on every write so guarded updates can detect that
    the row changed since it was read.
    """

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    customer_ref: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    driver_ref: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    pickup: Mapped[dict] = mapped_column(JSON, nullable=False)
    dropoff: Mapped[dict] = mapped_column(JSON, nullable=False)
    vehicle_type: Mapped[str] = mapped_column(String(32), nullable=False)
    goods_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price_estimate: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(20), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
