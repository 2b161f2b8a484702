"""
Pydantic schemas for availability search and bookings
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from lodgecore.models.core import PaymentMethod


# ========== AVAILABILITY ==========

class AvailabilityItem(BaseModel):
    room_type_id: int
    name: str
    description: Optional[str] = None
    max_occupancy: int
    available_count: int
    effective_price: Decimal  # nightly
    nights: int
    total_price: Decimal


# ========== BOOKING INPUT ==========

class GuestInput(BaseModel):
    first_name: str = Field(..., max_length=60)
    last_name: str = Field(..., max_length=60)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)


class RoomRequest(BaseModel):
    room_type_id: int
    quantity: int = 1


class BookingRequest(BaseModel):
    check_in: date
    check_out: date
    rooms: List[RoomRequest]
    guest: GuestInput
    payment_method: PaymentMethod
    number_of_guests: int = 1
    special_requests: Optional[str] = None
    source: Optional[str] = "online"
    initial_payment_amount: Optional[Decimal] = None


# ========== BOOKING OUTPUT ==========

class GuestSummary(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class BookedRoom(BaseModel):
    reservation_room_id: int
    room_type_id: int
    room_type_name: str
    room_id: Optional[int] = None
    room_number: Optional[str] = None
    price_per_night: Decimal
    nights: int
    subtotal: Decimal


class BookingConfirmation(BaseModel):
    """Read-only snapshot of a reservation at the time it was produced"""
    reservation_id: int
    booking_reference: str
    status: str
    check_in: date
    check_out: date
    nights: int
    number_of_guests: int
    guest: GuestSummary
    rooms: List[BookedRoom]
    total_amount: Decimal
    payment_status: str
    amount_paid: Decimal
    balance_due: Decimal
    special_requests: Optional[str] = None
    created_at: Optional[datetime] = None


class CancelBookingRequest(BaseModel):
    last_name: str
    reason: Optional[str] = Field(None, max_length=500)
