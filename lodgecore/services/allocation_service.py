"""
Room allocation: binds each ReservationRoom to a physical Room.

Happens at check-in, or earlier when staff pre-assign rooms to a confirmed
reservation. A ReservationRoom's room_id is written once and never changed.
"""
from typing import List, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from lodgecore.database.conexion import unit_of_work
from lodgecore.errors import NoRoomAvailable, ValidationError, LodgeError
from lodgecore.models.core import Reservation, ReservationRoom, Room, RoomStatus, ReservationStatus
from lodgecore.schemas.reservations import AllocationResult
from lodgecore.utils.audit import record_audit
from lodgecore.utils.logging_utils import log_event, log_failure


class AllocationService:

    @staticmethod
    def _free_rooms(db: Session, tenant_id: int, room_type_id: int, exclude: Set[int]) -> List[Room]:
        """
        Locks every available room of the type. Rows taken by a concurrent
        allocation drop out of the result once that transaction commits.
        """
        query = db.query(Room).filter(
            Room.tenant_id == tenant_id,
            Room.room_type_id == room_type_id,
            Room.active.is_(True),
            Room.status == RoomStatus.AVAILABLE.value,
        )
        if exclude:
            query = query.filter(~Room.id.in_(exclude))
        return (
            query.order_by(func.length(Room.number), Room.number, Room.id)
            .with_for_update()
            .populate_existing()
            .all()
        )

    @staticmethod
    def _lock_room(db: Session, room_id: int) -> Room:
        return db.query(Room).filter(Room.id == room_id).with_for_update().populate_existing().one()

    @staticmethod
    def assign_rooms(db: Session, reservation: Reservation, room_status: str) -> List[AllocationResult]:
        """
        Gives every unassigned ReservationRoom the lowest-numbered available
        room of its type and moves that room to room_status. Does not commit.
        """
        taken: Set[int] = set()
        results = []
        for rr in reservation.rooms:
            if rr.room_id is not None:
                continue
            candidates = AllocationService._free_rooms(db, reservation.tenant_id, rr.room_type_id, taken)
            if not candidates:
                raise NoRoomAvailable(rr.room_type_id, rr.id)
            room = candidates[0]
            room.status = room_status
            rr.room_id = room.id
            taken.add(room.id)
            results.append(AllocationResult(reservation_room_id=rr.id, room_id=room.id, room_number=room.number))
        db.flush()
        return results

    @staticmethod
    def allocate_for_checkin(db: Session, reservation: Reservation) -> List[AllocationResult]:
        """
        Pre-assigned rooms go from reserved to occupied, the rest are picked
        now and go straight to occupied. Does not commit.
        """
        results = []
        for rr in reservation.rooms:
            if rr.room_id is None:
                continue
            room = AllocationService._lock_room(db, rr.room_id)
            if room.status != RoomStatus.RESERVED.value:
                # pre-assigned room was taken out of service or reused meanwhile
                raise NoRoomAvailable(rr.room_type_id, rr.id)
            room.status = RoomStatus.OCCUPIED.value
            results.append(AllocationResult(reservation_room_id=rr.id, room_id=room.id, room_number=room.number))

        results.extend(AllocationService.assign_rooms(db, reservation, RoomStatus.OCCUPIED.value))
        return sorted(results, key=lambda r: r.reservation_room_id)

    @staticmethod
    def release_rooms(db: Session, reservation: Reservation) -> List[int]:
        """Pre-assigned rooms of a reservation that will never arrive go back to available"""
        released = []
        for rr in reservation.rooms:
            if rr.room_id is None:
                continue
            room = AllocationService._lock_room(db, rr.room_id)
            if room.status == RoomStatus.RESERVED.value:
                room.status = RoomStatus.AVAILABLE.value
                released.append(room.id)
        return released

    @staticmethod
    def allocate_rooms(
        db: Session,
        tenant_id: int,
        reservation_id: int,
        actor: Optional[str] = None,
    ) -> List[AllocationResult]:
        """
        Staff pre-assignment for a confirmed reservation. Assigned rooms are
        held as reserved until check-in.
        """
        from lodgecore.services.reservation_service import ReservationService

        try:
            with unit_of_work(db):
                reservation = ReservationService.lock_reservation(db, tenant_id, reservation_id)
                if reservation.status != ReservationStatus.CONFIRMED.value:
                    raise ValidationError(
                        f"Rooms can only be pre-assigned to confirmed reservations (is {reservation.status})",
                        {"status": reservation.status},
                    )
                assigned = AllocationService.assign_rooms(db, reservation, RoomStatus.RESERVED.value)
                results = [
                    AllocationResult(reservation_room_id=rr.id, room_id=rr.room_id, room_number=rr.room.number)
                    for rr in reservation.rooms
                ]
                record_audit(db, tenant_id, "reservation", reservation.id, "ALLOCATE", actor,
                             f"{len(assigned)} room(s) pre-assigned",
                             {"rooms": [r.model_dump() for r in assigned]})
        except LodgeError as e:
            log_failure("allocation", actor, "Pre-assignment rejected", f"reservation={reservation_id}, {e.message}")
            raise

        log_event("allocation", actor, "Rooms pre-assigned",
                  f"reservation={reservation_id}, rooms={[r.room_number for r in results]}")
        return results
