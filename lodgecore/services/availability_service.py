"""
Availability calculator.

Availability is always computed from ReservationRooms in a holding status;
no counter is ever stored. The search result is advisory; bookings re-check
under lock with ensure_available().
"""
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from lodgecore.errors import ValidationError, NotFoundError, InsufficientAvailability
from lodgecore.models.core import RoomType, Reservation, ReservationRoom, HOLDING_STATUSES
from lodgecore.schemas.booking import AvailabilityItem
from lodgecore.services.inventory_service import InventoryService
from lodgecore.utils.money import to_money


def validate_stay(check_in: date, check_out: date) -> int:
    """Returns the number of nights; rejects empty or inverted ranges"""
    if check_in is None or check_out is None:
        raise ValidationError("check_in and check_out are required")
    if check_in >= check_out:
        raise ValidationError(
            "check_out must be after check_in",
            {"check_in": check_in.isoformat(), "check_out": check_out.isoformat()},
        )
    return (check_out - check_in).days


def effective_price(room_type: RoomType, check_in: date, check_out: date) -> Decimal:
    """Nightly price for a stay. Pricing rules plug in here; base price today."""
    return to_money(room_type.base_price)


class AvailabilityService:

    @staticmethod
    def occupied_units(
        db: Session,
        tenant_id: int,
        room_type_ids: Iterable[int],
        check_in: date,
        check_out: date,
    ) -> Dict[int, int]:
        """
        Units of each type held by reservations overlapping [check_in, check_out).
        Half-open: a stay ending on day D does not collide with one starting on D.
        """
        room_type_ids = list(room_type_ids)
        if not room_type_ids:
            return {}

        rows = (
            db.query(ReservationRoom.room_type_id, func.count(ReservationRoom.id))
            .join(Reservation, Reservation.id == ReservationRoom.reservation_id)
            .filter(
                Reservation.tenant_id == tenant_id,
                Reservation.status.in_(HOLDING_STATUSES),
                Reservation.check_in < check_out,
                Reservation.check_out > check_in,
                ReservationRoom.room_type_id.in_(room_type_ids),
            )
            .group_by(ReservationRoom.room_type_id)
            .all()
        )
        occupied = {room_type_id: 0 for room_type_id in room_type_ids}
        for room_type_id, count in rows:
            occupied[room_type_id] = count
        return occupied

    @staticmethod
    def find_availability(
        db: Session,
        tenant_id: int,
        check_in: date,
        check_out: date,
        guests: int = 1,
    ) -> List[AvailabilityItem]:
        nights = validate_stay(check_in, check_out)
        if guests is None or guests < 1:
            raise ValidationError("guests must be at least 1")
        InventoryService.get_active_tenant(db, tenant_id)

        room_types = (
            db.query(RoomType)
            .filter(
                RoomType.tenant_id == tenant_id,
                RoomType.active.is_(True),
                RoomType.max_occupancy >= guests,
            )
            .order_by(RoomType.base_price, RoomType.id)
            .all()
        )
        occupied = AvailabilityService.occupied_units(
            db, tenant_id, [rt.id for rt in room_types], check_in, check_out
        )

        results = []
        for rt in room_types:
            available = rt.total_units - occupied.get(rt.id, 0)
            if available <= 0:
                continue
            price = effective_price(rt, check_in, check_out)
            results.append(AvailabilityItem(
                room_type_id=rt.id,
                name=rt.name,
                description=rt.description,
                max_occupancy=rt.max_occupancy,
                available_count=available,
                effective_price=price,
                nights=nights,
                total_price=to_money(price * nights),
            ))
        return results

    @staticmethod
    def lock_room_types(
        db: Session,
        tenant_id: int,
        room_type_ids: Iterable[int],
        lock: bool = True,
    ) -> Dict[int, RoomType]:
        """
        Loads the requested room types FOR UPDATE (plain read with lock=False).
        Id order, so two bookings touching the same types lock them in the
        same sequence.
        """
        ids = sorted(set(room_type_ids))
        query = (
            db.query(RoomType)
            .filter(RoomType.tenant_id == tenant_id, RoomType.id.in_(ids))
            .order_by(RoomType.id)
        )
        if lock:
            query = query.with_for_update()
        locked = query.all()
        by_id = {rt.id: rt for rt in locked}
        missing = [i for i in ids if i not in by_id or not by_id[i].active]
        if missing:
            raise NotFoundError(
                f"Room type(s) not found: {', '.join(str(i) for i in missing)}",
                {"room_type_ids": missing},
            )
        return by_id

    @staticmethod
    def ensure_available(
        db: Session,
        tenant_id: int,
        demand: Dict[int, int],
        check_in: date,
        check_out: date,
    ) -> Dict[int, RoomType]:
        """
        Authoritative check. Must run inside the transaction that writes the
        ReservationRooms; the room type locks are held until it commits.
        """
        room_types = AvailabilityService.lock_room_types(db, tenant_id, demand.keys())
        occupied = AvailabilityService.occupied_units(db, tenant_id, room_types.keys(), check_in, check_out)

        short = sorted(
            room_type_id
            for room_type_id, quantity in demand.items()
            if room_types[room_type_id].total_units - occupied.get(room_type_id, 0) < quantity
        )
        if short:
            names = ", ".join(room_types[i].name for i in short)
            raise InsufficientAvailability(
                f"Not enough rooms available for: {names}",
                short,
            )
        return room_types
