"""
Reservation lifecycle.

    inquiry    -> pending, cancelled
    pending    -> confirmed, cancelled
    confirmed  -> checked_in, cancelled, no_show
    checked_in -> checked_out

checked_out, cancelled and no_show are terminal. Every edge is applied as a
compare-and-swap on the persisted status, in the same transaction as its
side effects (allocation, room release, housekeeping, audit).
"""
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from lodgecore import config
from lodgecore.database.conexion import unit_of_work
from lodgecore.errors import InvalidTransition, NotFoundError, ValidationError, LodgeError
from lodgecore.models.core import (
    Tenant,
    Reservation,
    Payment,
    Room,
    RoomStatus,
    ReservationStatus,
    utc_now,
)
from lodgecore.services.allocation_service import AllocationService
from lodgecore.services.availability_service import AvailabilityService
from lodgecore.services.housekeeping_service import HousekeepingService
from lodgecore.services.inventory_service import InventoryService
from lodgecore.utils.audit import record_audit
from lodgecore.utils.ledger import summarize_ledger
from lodgecore.utils.logging_utils import log_event, log_failure
from lodgecore.utils.money import percent_of, ZERO
from lodgecore.utils.references import normalize_reference
from lodgecore.utils.timezone import tenant_today

S = ReservationStatus

TRANSITIONS: Dict[str, frozenset] = {
    S.INQUIRY.value: frozenset({S.PENDING.value, S.CANCELLED.value}),
    S.PENDING.value: frozenset({S.CONFIRMED.value, S.CANCELLED.value}),
    S.CONFIRMED.value: frozenset({S.CHECKED_IN.value, S.CANCELLED.value, S.NO_SHOW.value}),
    S.CHECKED_IN.value: frozenset({S.CHECKED_OUT.value}),
    S.CHECKED_OUT.value: frozenset(),
    S.CANCELLED.value: frozenset(),
    S.NO_SHOW.value: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def required_deposit(total_amount) -> Decimal:
    return percent_of(total_amount, config.REQUIRED_DEPOSIT_PERCENT)


class ReservationService:

    # ========== LOOKUPS ==========

    @staticmethod
    def get_reservation(db: Session, tenant_id: int, reservation_id: int) -> Reservation:
        reservation = db.query(Reservation).filter(
            Reservation.id == reservation_id,
            Reservation.tenant_id == tenant_id,
        ).first()
        if not reservation:
            raise NotFoundError(f"Reservation {reservation_id} not found", {"reservation_id": reservation_id})
        return reservation

    @staticmethod
    def lock_reservation(db: Session, tenant_id: int, reservation_id: int) -> Reservation:
        """Loads the reservation row FOR UPDATE, discarding any stale in-session copy"""
        reservation = (
            db.query(Reservation)
            .filter(Reservation.id == reservation_id, Reservation.tenant_id == tenant_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not reservation:
            raise NotFoundError(f"Reservation {reservation_id} not found", {"reservation_id": reservation_id})
        return reservation

    @staticmethod
    def get_by_reference(
        db: Session,
        tenant_id: int,
        reference: str,
        last_name: Optional[str] = None,
    ) -> Reservation:
        """
        With last_name the lookup behaves like guest self-service: a wrong
        name is indistinguishable from an unknown reference.
        """
        reference = normalize_reference(reference)
        reservation = db.query(Reservation).filter(
            Reservation.tenant_id == tenant_id,
            Reservation.booking_reference == reference,
        ).first()
        if reservation and last_name is not None:
            if reservation.guest.last_name.strip().lower() != last_name.strip().lower():
                reservation = None
        if not reservation:
            raise NotFoundError(f"Booking {reference} not found")
        return reservation

    @staticmethod
    def list_reservations(
        db: Session,
        tenant_id: int,
        status: Optional[str] = None,
        check_in_from: Optional[date] = None,
        check_in_to: Optional[date] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Reservation]:
        query = db.query(Reservation).filter(Reservation.tenant_id == tenant_id)
        if status:
            query = query.filter(Reservation.status == status)
        if check_in_from:
            query = query.filter(Reservation.check_in >= check_in_from)
        if check_in_to:
            query = query.filter(Reservation.check_in <= check_in_to)
        return query.order_by(Reservation.check_in, Reservation.id).offset(offset).limit(limit).all()

    @staticmethod
    def arrivals(db: Session, tenant_id: int, day: Optional[date] = None) -> List[Reservation]:
        tenant = InventoryService.get_active_tenant(db, tenant_id)
        day = day or tenant_today(tenant)
        return db.query(Reservation).filter(
            Reservation.tenant_id == tenant_id,
            Reservation.status == S.CONFIRMED.value,
            Reservation.check_in == day,
        ).order_by(Reservation.id).all()

    @staticmethod
    def departures(db: Session, tenant_id: int, day: Optional[date] = None) -> List[Reservation]:
        tenant = InventoryService.get_active_tenant(db, tenant_id)
        day = day or tenant_today(tenant)
        return db.query(Reservation).filter(
            Reservation.tenant_id == tenant_id,
            Reservation.status == S.CHECKED_IN.value,
            Reservation.check_out == day,
        ).order_by(Reservation.id).all()

    # ========== STATE MACHINE ==========

    @staticmethod
    def _check_preconditions(
        db: Session,
        reservation: Reservation,
        target: str,
        override: bool,
        today: date,
    ) -> None:
        current = reservation.status

        if current == S.INQUIRY.value and target == S.PENDING.value:
            demand: Dict[int, int] = {}
            for rr in reservation.rooms:
                demand[rr.room_type_id] = demand.get(rr.room_type_id, 0) + 1
            AvailabilityService.ensure_available(
                db, reservation.tenant_id, demand, reservation.check_in, reservation.check_out
            )

        elif current == S.PENDING.value and target == S.CONFIRMED.value and not override:
            payments = db.query(Payment).filter(Payment.reservation_id == reservation.id).all()
            net_paid = summarize_ledger(payments).net_paid
            deposit = required_deposit(reservation.total_amount)
            if net_paid < deposit:
                raise InvalidTransition(current, target, f"deposit of {deposit} required, {net_paid} received")

        elif current == S.CONFIRMED.value and target == S.CANCELLED.value:
            if today > reservation.check_in:
                raise InvalidTransition(current, target, "check-in date has passed")

        elif current == S.CONFIRMED.value and target == S.NO_SHOW.value:
            if today <= reservation.check_in:
                raise InvalidTransition(current, target, "check-in date has not passed yet")

    @staticmethod
    def _compare_and_swap(db: Session, reservation: Reservation, current: str, target: str, **values) -> None:
        result = db.execute(
            update(Reservation)
            .where(
                Reservation.id == reservation.id,
                Reservation.tenant_id == reservation.tenant_id,
                Reservation.status == current,
            )
            .values(status=target, updated_at=utc_now(), **values)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise InvalidTransition(current, target, "reservation was modified concurrently")

    @staticmethod
    def apply_transition(
        db: Session,
        reservation: Reservation,
        target_status: str,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
        override: bool = False,
        today: Optional[date] = None,
    ) -> str:
        """
        Validates and applies one edge inside the caller's transaction.
        Returns the previous status. Does not commit.
        """
        try:
            target = ReservationStatus(target_status).value
        except ValueError as e:
            raise ValidationError(f"Unknown reservation status '{target_status}'") from e

        current = reservation.status
        if not can_transition(current, target):
            raise InvalidTransition(current, target)

        if today is None:
            tenant = db.query(Tenant).filter(Tenant.id == reservation.tenant_id).one()
            today = tenant_today(tenant)

        ReservationService._check_preconditions(db, reservation, target, override, today)

        now = utc_now()
        values = {}
        if target == S.CANCELLED.value:
            values = {"cancelled_at": now, "cancel_reason": reason}
        elif target == S.CHECKED_IN.value:
            values = {"checked_in_at": now}
        elif target == S.CHECKED_OUT.value:
            values = {"checked_out_at": now}
        ReservationService._compare_and_swap(db, reservation, current, target, **values)

        payload = {"from": current, "to": target}
        if reason:
            payload["reason"] = reason
        if override:
            payload["override"] = True

        if target == S.CHECKED_IN.value:
            allocations = AllocationService.allocate_for_checkin(db, reservation)
            payload["rooms"] = [a.room_number for a in allocations]

        elif target in (S.CANCELLED.value, S.NO_SHOW.value):
            released = AllocationService.release_rooms(db, reservation)
            if released:
                payload["released_room_ids"] = released

        elif target == S.CHECKED_OUT.value:
            dirty = []
            for rr in reservation.rooms:
                if rr.room_id is None:
                    continue
                room = db.query(Room).filter(Room.id == rr.room_id).with_for_update().populate_existing().one()
                room.status = RoomStatus.DIRTY.value
                HousekeepingService.open_task(db, reservation.tenant_id, room, reservation.id)
                dirty.append(room.number)
            payload["dirty_rooms"] = dirty

        record_audit(
            db,
            reservation.tenant_id,
            "reservation",
            reservation.id,
            "STATUS_CHANGE",
            actor,
            f"{reservation.booking_reference}: {current} -> {target}",
            payload,
        )
        db.flush()
        return current

    @staticmethod
    def transition(
        db: Session,
        tenant_id: int,
        reservation_id: int,
        target_status: str,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
        override: bool = False,
        today: Optional[date] = None,
    ) -> Reservation:
        InventoryService.get_active_tenant(db, tenant_id)
        try:
            with unit_of_work(db):
                reservation = ReservationService.lock_reservation(db, tenant_id, reservation_id)
                previous = ReservationService.apply_transition(
                    db, reservation, target_status, actor=actor, reason=reason, override=override, today=today
                )
        except LodgeError as e:
            log_failure("reservations", actor, f"Transition to {target_status} rejected",
                        f"reservation={reservation_id}, {e.message}")
            raise

        log_event("reservations", actor, f"Transition {previous} -> {reservation.status}",
                  f"reference={reservation.booking_reference}")
        return reservation

    @staticmethod
    def check_in(db: Session, tenant_id: int, reservation_id: int, actor: Optional[str] = None) -> Reservation:
        return ReservationService.transition(db, tenant_id, reservation_id, S.CHECKED_IN.value, actor=actor)

    @staticmethod
    def check_out(db: Session, tenant_id: int, reservation_id: int, actor: Optional[str] = None) -> Reservation:
        return ReservationService.transition(db, tenant_id, reservation_id, S.CHECKED_OUT.value, actor=actor)

    # ========== SWEEPS ==========

    @staticmethod
    def expire_pending(
        db: Session,
        tenant_id: int,
        now: Optional[datetime] = None,
        actor: str = "system",
    ) -> List[str]:
        """
        Cancels pending reservations older than PENDING_HOLD_MINUTES that hold
        no money and have no payment in flight. Returns the cancelled references.
        """
        InventoryService.get_active_tenant(db, tenant_id)
        now = now or utc_now()
        cutoff = now - timedelta(minutes=config.PENDING_HOLD_MINUTES)

        candidates = db.query(Reservation.id).filter(
            Reservation.tenant_id == tenant_id,
            Reservation.status == S.PENDING.value,
            Reservation.created_at < cutoff,
        ).order_by(Reservation.id).all()
        db.rollback()  # end the read transaction; each row gets its own unit of work

        expired = []
        for (reservation_id,) in candidates:
            try:
                with unit_of_work(db):
                    reservation = ReservationService.lock_reservation(db, tenant_id, reservation_id)
                    if reservation.status != S.PENDING.value:
                        continue
                    payments = db.query(Payment).filter(Payment.reservation_id == reservation.id).all()
                    summary = summarize_ledger(payments)
                    if summary.net_paid > ZERO or summary.in_flight > ZERO:
                        continue
                    ReservationService.apply_transition(
                        db, reservation, S.CANCELLED.value, actor=actor, reason="Payment hold expired"
                    )
            except InvalidTransition as e:
                log_failure("reservations", actor, "Hold expiry skipped", f"reservation={reservation_id}, {e.message}")
                continue
            expired.append(reservation.booking_reference)

        if expired:
            log_event("reservations", actor, "Expired pending holds", f"tenant={tenant_id}, references={expired}")
        return expired

    @staticmethod
    def mark_no_shows(
        db: Session,
        tenant_id: int,
        today: Optional[date] = None,
        actor: str = "system",
    ) -> List[str]:
        """Confirmed reservations whose check-in day has passed become no_show"""
        tenant = InventoryService.get_active_tenant(db, tenant_id)
        today = today or tenant_today(tenant)

        candidates = db.query(Reservation.id).filter(
            Reservation.tenant_id == tenant_id,
            Reservation.status == S.CONFIRMED.value,
            Reservation.check_in < today,
        ).order_by(Reservation.id).all()
        db.rollback()  # end the read transaction; each row gets its own unit of work

        marked = []
        for (reservation_id,) in candidates:
            try:
                with unit_of_work(db):
                    reservation = ReservationService.lock_reservation(db, tenant_id, reservation_id)
                    ReservationService.apply_transition(
                        db, reservation, S.NO_SHOW.value, actor=actor, reason="No arrival", today=today
                    )
            except InvalidTransition as e:
                log_failure("reservations", actor, "No-show skipped", f"reservation={reservation_id}, {e.message}")
                continue
            marked.append(reservation.booking_reference)

        if marked:
            log_event("reservations", actor, "Marked no-shows", f"tenant={tenant_id}, references={marked}")
        return marked
