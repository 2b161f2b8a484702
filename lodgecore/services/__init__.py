from .inventory_service import InventoryService
from .housekeeping_service import HousekeepingService
from .availability_service import AvailabilityService
from .allocation_service import AllocationService
from .reservation_service import ReservationService
from .payment_service import PaymentService
from .booking_service import BookingService

__all__ = [
    "InventoryService",
    "HousekeepingService",
    "AvailabilityService",
    "AllocationService",
    "ReservationService",
    "PaymentService",
    "BookingService",
]
