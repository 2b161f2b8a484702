from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from lodgecore.models.core import ReservationStatus


class TransitionRequest(BaseModel):
    target_status: ReservationStatus
    reason: Optional[str] = Field(None, max_length=500)
    override: bool = False  # staff override of the deposit rule


class AllocationResult(BaseModel):
    reservation_room_id: int
    room_id: int
    room_number: Optional[str] = None


class ReservationRoomRead(BaseModel):
    id: int
    room_type_id: int
    room_id: Optional[int] = None
    price_per_night: Decimal

    model_config = ConfigDict(from_attributes=True)


class ReservationRead(BaseModel):
    id: int
    booking_reference: str
    status: str
    check_in: date
    check_out: date
    number_of_guests: int
    total_amount: Decimal
    payment_status: str
    guest_id: int
    cancel_reason: Optional[str] = None
    checked_in_at: Optional[datetime] = None
    checked_out_at: Optional[datetime] = None
    rooms: List[ReservationRoomRead] = []

    model_config = ConfigDict(from_attributes=True)
