"""
Typed failures raised by the booking engine services.
"""
from typing import Any, Dict, List, Optional


class LodgeError(Exception):
    """Base class for every locally detected failure"""

    code = "lodge_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(LodgeError):
    """Malformed input. Not retried."""

    code = "validation_error"


class NotFoundError(LodgeError):
    code = "not_found"


class InvalidTransition(LodgeError):
    code = "invalid_transition"

    def __init__(self, current: str, target: str, reason: Optional[str] = None):
        message = f'Cannot transition from "{current}" to "{target}"'
        if reason:
            message += f": {reason}"
        super().__init__(message, {"from": current, "to": target})
        self.current = current
        self.target = target


class InsufficientAvailability(LodgeError):
    """Lost the availability race. The caller may search again."""

    code = "insufficient_availability"

    def __init__(self, message: str, room_type_ids: List[int]):
        super().__init__(message, {"room_type_ids": room_type_ids})
        self.room_type_ids = room_type_ids


class NoRoomAvailable(LodgeError):
    """Allocation-time shortage. Needs manual resolution."""

    code = "no_room_available"

    def __init__(self, room_type_id: int, reservation_room_id: Optional[int] = None):
        super().__init__(
            f"No free room of type {room_type_id} to allocate",
            {"room_type_id": room_type_id, "reservation_room_id": reservation_room_id},
        )
        self.room_type_id = room_type_id


class OverpaymentError(LodgeError):
    code = "overpayment"

    def __init__(self, amount, outstanding):
        super().__init__(
            f"Payment of {amount} exceeds outstanding balance of {outstanding}",
            {"amount": str(amount), "outstanding": str(outstanding)},
        )
        self.outstanding = outstanding


class PaymentProviderError(LodgeError):
    """Transport-level failure talking to an external payment provider"""

    code = "payment_provider_error"

    def __init__(self, provider: str, message: str):
        super().__init__(message, {"provider": provider})
        self.provider = provider


class ReferenceGenerationError(LodgeError):
    code = "reference_generation_error"
