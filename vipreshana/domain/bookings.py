from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from .pagination import PaginationMeta
from .users import UserRole


class BookingStatus(str, Enum):
    """Lifecycle states for a transport booking."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.ACCEPTED, BookingStatus.CANCELLED}),
    BookingStatus.ACCEPTED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class VehicleType(str, Enum):
    BIKE = "bike"
    THREE_WHEELER = "three_wheeler"
    MINI_TRUCK = "mini_truck"
    PICKUP = "pickup"
    TRUCK = "truck"


class Location(BaseModel):
    address: str = Field(..., min_length=3, max_length=300)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class BookingDetails(BaseModel):
    """Customer supplied description of the transport job."""

    pickup: Location
    dropoff: Location
    vehicle_type: VehicleType
    goods_description: Optional[str] = Field(default=None, max_length=500)
    price_estimate: Optional[float] = Field(default=None, ge=0)


class BookingCreate(BookingDetails):
    customer_ref: str = Field(..., max_length=32, description="Customer phone")


class BookingChanges(BaseModel):
    """Fields a customer may still edit while the booking is pending."""

    pickup: Optional[Location] = None
    dropoff: Optional[Location] = None
    vehicle_type: Optional[VehicleType] = None
    goods_description: Optional[str] = Field(default=None, max_length=500)
    price_estimate: Optional[float] = Field(default=None, ge=0)


class Booking(BookingDetails):
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    customer_ref: str
    status: BookingStatus = BookingStatus.PENDING
    driver_ref: Optional[str] = None
    cancelled_by: Optional[str] = None
    version: int = 1
    created_at: datetime
    updated_at: datetime
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class Actor(BaseModel):
    """Account performing a booking action."""

    ref: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class AcceptBookingRequest(BaseModel):
    driver_ref: str = Field(..., max_length=32)


class BookingActionRequest(BaseModel):
    actor_ref: str = Field(..., max_length=32)


class BookingUpdateRequest(BookingChanges):
    actor_ref: str = Field(..., max_length=32)


class BookingResponse(BaseModel):
    data: Booking


class BookingListResponse(BaseModel):
    data: list[Booking]
    count: int
    pagination: PaginationMeta
