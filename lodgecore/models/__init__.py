"""
Exposes every model so Base.metadata sees all tables on import.
"""

from .core import (
    Tenant,
    RoomType,
    Room,
    Guest,
    Reservation,
    ReservationRoom,
    Payment,
    HousekeepingTask,
    AuditEvent,
    ReservationStatus,
    RoomStatus,
    PaymentStatus,
    PaymentMethod,
    ReservationPaymentStatus,
    FailureReason,
    HousekeepingStatus,
    HOLDING_STATUSES,
    TERMINAL_STATUSES,
    MANUAL_METHODS,
)

__all__ = [
    "Tenant", "RoomType", "Room", "Guest",
    "Reservation", "ReservationRoom", "Payment",
    "HousekeepingTask", "AuditEvent",
    "ReservationStatus", "RoomStatus", "PaymentStatus", "PaymentMethod",
    "ReservationPaymentStatus", "FailureReason", "HousekeepingStatus",
    "HOLDING_STATUSES", "TERMINAL_STATUSES", "MANUAL_METHODS",
]
