"""
Booking orchestrator: search, create, look up and cancel bookings.

create_booking re-checks availability while holding locks on the requested
room types and writes the reservation with all its rooms in the same
transaction, so two guests racing for the last unit cannot both win.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lodgecore import config
from lodgecore.database.conexion import unit_of_work
from lodgecore.errors import LodgeError, ReferenceGenerationError, ValidationError
from lodgecore.models.core import (
    Guest,
    Payment,
    PaymentMethod,
    Reservation,
    ReservationRoom,
    ReservationStatus,
    RoomType,
)
from lodgecore.providers.registry import ProviderRegistry
from lodgecore.schemas.booking import (
    AvailabilityItem,
    BookedRoom,
    BookingConfirmation,
    BookingRequest,
    GuestInput,
    GuestSummary,
)
from lodgecore.services.availability_service import AvailabilityService, effective_price, validate_stay
from lodgecore.services.inventory_service import InventoryService
from lodgecore.services.payment_service import PaymentService
from lodgecore.services.reservation_service import ReservationService
from lodgecore.utils.audit import record_audit
from lodgecore.utils.ledger import summarize_ledger
from lodgecore.utils.logging_utils import log_event, log_failure
from lodgecore.utils.money import to_money, ZERO
from lodgecore.utils.references import generate_booking_reference
from lodgecore.utils.timezone import tenant_today

logger = logging.getLogger(__name__)


class BookingService:

    @staticmethod
    def search_availability(
        db: Session,
        tenant_id: int,
        check_in: date,
        check_out: date,
        guests: int = 1,
    ) -> List[AvailabilityItem]:
        return AvailabilityService.find_availability(db, tenant_id, check_in, check_out, guests)

    # ========== VALIDATION ==========

    @staticmethod
    def _validate_request(request: BookingRequest, today: date, backdate_allowed: bool) -> Dict[int, int]:
        """Returns the demand per room type"""
        validate_stay(request.check_in, request.check_out)
        if not request.rooms:
            raise ValidationError("At least one room is required")
        if request.number_of_guests < 1:
            raise ValidationError("number_of_guests must be at least 1")

        demand: Dict[int, int] = {}
        for item in request.rooms:
            if item.quantity < 1:
                raise ValidationError(
                    "Room quantity must be at least 1",
                    {"room_type_id": item.room_type_id, "quantity": item.quantity},
                )
            demand[item.room_type_id] = demand.get(item.room_type_id, 0) + item.quantity

        guest = request.guest
        if not (guest.email or (guest.phone or "").strip()):
            raise ValidationError("Guest needs an email or a phone number")
        if not guest.first_name.strip() or not guest.last_name.strip():
            raise ValidationError("Guest first and last name are required")

        if request.check_in < today and not backdate_allowed:
            raise ValidationError(
                "check_in cannot be in the past",
                {"check_in": request.check_in.isoformat(), "today": today.isoformat()},
            )
        return demand

    @staticmethod
    def _check_capacity(request: BookingRequest, room_types: Dict[int, RoomType]) -> None:
        capacity = sum(room_types[item.room_type_id].max_occupancy * item.quantity for item in request.rooms)
        if request.number_of_guests > capacity:
            raise ValidationError(
                f"{request.number_of_guests} guests exceed the capacity of the selected rooms ({capacity})"
            )

    # ========== GUESTS ==========

    @staticmethod
    def find_or_create_guest(db: Session, tenant_id: int, data: GuestInput) -> Guest:
        """Matches an existing guest by email, then by phone. Names are refreshed on re-use."""
        email = data.email.lower() if data.email else None
        phone = (data.phone or "").strip() or None

        guest = None
        if email:
            guest = db.query(Guest).filter(Guest.tenant_id == tenant_id, func.lower(Guest.email) == email).first()
        if not guest and phone:
            guest = db.query(Guest).filter(Guest.tenant_id == tenant_id, Guest.phone == phone).first()

        if guest:
            guest.first_name = data.first_name.strip()
            guest.last_name = data.last_name.strip()
            if email and not guest.email:
                guest.email = email
            if phone and not guest.phone:
                guest.phone = phone
        else:
            guest = Guest(
                tenant_id=tenant_id,
                first_name=data.first_name.strip(),
                last_name=data.last_name.strip(),
                email=email,
                phone=phone,
            )
            db.add(guest)
        db.flush()
        return guest

    @staticmethod
    def quote(db: Session, tenant_id: int, request: BookingRequest) -> Decimal:
        """Total the request would cost at today's prices. Advisory, takes no lock."""
        nights = validate_stay(request.check_in, request.check_out)
        room_types = AvailabilityService.lock_room_types(
            db, tenant_id, [item.room_type_id for item in request.rooms], lock=False
        )
        total = ZERO
        for item in request.rooms:
            total += effective_price(room_types[item.room_type_id], request.check_in, request.check_out) \
                * nights * item.quantity
        return to_money(total)

    # ========== CREATE ==========

    @staticmethod
    def _reference_taken(db: Session, tenant_id: int, reference: str) -> bool:
        return db.query(Reservation.id).filter(
            Reservation.tenant_id == tenant_id,
            Reservation.booking_reference == reference,
        ).first() is not None

    @staticmethod
    def _write_reservation(
        db: Session,
        tenant_id: int,
        request: BookingRequest,
        demand: Dict[int, int],
        status: str,
        reference: str,
        actor: Optional[str],
        today: date,
    ) -> Reservation:
        """Everything that must land in one transaction. Does not commit."""
        if status == ReservationStatus.INQUIRY.value:
            # an inquiry holds nothing, so no lock and no availability check
            room_types = AvailabilityService.lock_room_types(db, tenant_id, demand.keys(), lock=False)
        else:
            room_types = AvailabilityService.ensure_available(
                db, tenant_id, demand, request.check_in, request.check_out
            )
        BookingService._check_capacity(request, room_types)

        guest = BookingService.find_or_create_guest(db, tenant_id, request.guest)
        nights = (request.check_out - request.check_in).days

        reservation = Reservation(
            tenant_id=tenant_id,
            booking_reference=reference,
            guest_id=guest.id,
            status=status,
            check_in=request.check_in,
            check_out=request.check_out,
            number_of_guests=request.number_of_guests,
            special_requests=request.special_requests,
            source=request.source,
            created_by=actor,
        )
        db.add(reservation)
        db.flush()

        total = ZERO
        for item in request.rooms:
            price = effective_price(room_types[item.room_type_id], request.check_in, request.check_out)
            for _ in range(item.quantity):
                reservation.rooms.append(ReservationRoom(room_type_id=item.room_type_id, price_per_night=price))
                total += price * nights
        reservation.total_amount = to_money(total)
        db.flush()

        record_audit(db, tenant_id, "reservation", reservation.id, "CREATE", actor,
                     f"Booking {reference} created as {status}",
                     {
                         "check_in": request.check_in.isoformat(),
                         "check_out": request.check_out.isoformat(),
                         "rooms": {str(k): v for k, v in demand.items()},
                         "total_amount": str(reservation.total_amount),
                         "payment_method": request.payment_method.value,
                     })

        if (
            status == ReservationStatus.PENDING.value
            and request.payment_method == PaymentMethod.PAY_AT_LODGE
            and config.AUTO_CONFIRM_PAY_AT_LODGE
        ):
            ReservationService.apply_transition(
                db, reservation, ReservationStatus.CONFIRMED.value,
                actor=actor, reason="Pay at lodge", override=True, today=today,
            )
        return reservation

    @staticmethod
    def _create(
        db: Session,
        tenant_id: int,
        request: BookingRequest,
        status: str,
        actor: Optional[str],
        backdate_allowed: bool,
        today: Optional[date],
    ) -> int:
        tenant = InventoryService.get_active_tenant(db, tenant_id)
        today = today or tenant_today(tenant)
        demand = BookingService._validate_request(request, today, backdate_allowed)

        for attempt in range(1, config.BOOKING_REFERENCE_MAX_ATTEMPTS + 1):
            reference = generate_booking_reference()
            if BookingService._reference_taken(db, tenant_id, reference):
                logger.debug("booking reference %s already taken (attempt %s)", reference, attempt)
                continue
            try:
                with unit_of_work(db):
                    reservation = BookingService._write_reservation(
                        db, tenant_id, request, demand, status, reference, actor, today
                    )
                    reservation_id = reservation.id
                return reservation_id
            except IntegrityError:
                # lost a race for the same reference; anything else is a real error
                if not BookingService._reference_taken(db, tenant_id, reference):
                    raise
                db.rollback()
                logger.debug("booking reference %s collided on insert (attempt %s)", reference, attempt)

        raise ReferenceGenerationError(
            f"Could not generate a unique booking reference after {config.BOOKING_REFERENCE_MAX_ATTEMPTS} attempts"
        )

    @staticmethod
    def create_booking(
        db: Session,
        tenant_id: int,
        request: BookingRequest,
        providers: Optional[ProviderRegistry] = None,
        actor: Optional[str] = None,
        backdate_allowed: bool = False,
        today: Optional[date] = None,
    ) -> BookingConfirmation:
        """
        Creates a pending reservation (confirmed straight away for pay-at-lodge
        when AUTO_CONFIRM_PAY_AT_LODGE is on) and, when the request carries an
        initial_payment_amount, records that payment through the ledger.

        Raises InsufficientAvailability naming every room type that can no
        longer cover the requested quantity. Nothing is written in that case.
        """
        actor = actor or "guest"
        try:
            if request.initial_payment_amount is not None:
                initial = to_money(request.initial_payment_amount)
                if initial <= ZERO:
                    raise ValidationError("initial_payment_amount must be positive")
                if request.rooms and initial > BookingService.quote(db, tenant_id, request):
                    raise ValidationError("initial_payment_amount exceeds the booking total")

            reservation_id = BookingService._create(
                db, tenant_id, request, ReservationStatus.PENDING.value, actor, backdate_allowed, today
            )
        except LodgeError as e:
            log_failure("bookings", actor, "Booking rejected", f"tenant={tenant_id}, {e.code}: {e.message}")
            raise

        reservation = ReservationService.get_reservation(db, tenant_id, reservation_id)
        log_event("bookings", actor, "Booking created",
                  f"reference={reservation.booking_reference}, status={reservation.status}, "
                  f"total={reservation.total_amount}")

        if request.initial_payment_amount is not None:
            PaymentService.record_payment(
                db,
                tenant_id,
                reservation_id,
                request.initial_payment_amount,
                request.payment_method,
                allow_overpay=False,
                providers=providers,
                actor=actor,
            )
        return BookingService.get_confirmation(db, tenant_id, reservation_id)

    @staticmethod
    def create_inquiry(
        db: Session,
        tenant_id: int,
        request: BookingRequest,
        actor: Optional[str] = None,
        backdate_allowed: bool = False,
        today: Optional[date] = None,
    ) -> BookingConfirmation:
        """
        Staff-recorded demand. Holds no inventory until moved to pending,
        which re-runs the availability check.
        """
        try:
            reservation_id = BookingService._create(
                db, tenant_id, request, ReservationStatus.INQUIRY.value, actor, backdate_allowed, today
            )
        except LodgeError as e:
            log_failure("bookings", actor, "Inquiry rejected", f"tenant={tenant_id}, {e.message}")
            raise
        log_event("bookings", actor, "Inquiry recorded", f"reservation={reservation_id}")
        return BookingService.get_confirmation(db, tenant_id, reservation_id)

    # ========== LOOKUP / CANCEL ==========

    @staticmethod
    def build_confirmation(db: Session, reservation: Reservation) -> BookingConfirmation:
        nights = reservation.nights
        rooms = []
        for rr in reservation.rooms:
            price = to_money(rr.price_per_night)
            rooms.append(BookedRoom(
                reservation_room_id=rr.id,
                room_type_id=rr.room_type_id,
                room_type_name=rr.room_type.name,
                room_id=rr.room_id,
                room_number=rr.room.number if rr.room else None,
                price_per_night=price,
                nights=nights,
                subtotal=to_money(price * nights),
            ))

        payments = db.query(Payment).filter(Payment.reservation_id == reservation.id).all()
        net_paid = summarize_ledger(payments).net_paid
        total = to_money(reservation.total_amount)
        return BookingConfirmation(
            reservation_id=reservation.id,
            booking_reference=reservation.booking_reference,
            status=reservation.status,
            check_in=reservation.check_in,
            check_out=reservation.check_out,
            nights=nights,
            number_of_guests=reservation.number_of_guests,
            guest=GuestSummary.model_validate(reservation.guest),
            rooms=rooms,
            total_amount=total,
            payment_status=reservation.payment_status,
            amount_paid=net_paid,
            balance_due=max(total - net_paid, ZERO),
            special_requests=reservation.special_requests,
            created_at=reservation.created_at,
        )

    @staticmethod
    def get_confirmation(db: Session, tenant_id: int, reservation_id: int) -> BookingConfirmation:
        reservation = ReservationService.get_reservation(db, tenant_id, reservation_id)
        return BookingService.build_confirmation(db, reservation)

    @staticmethod
    def get_booking(db: Session, tenant_id: int, reference: str, last_name: str) -> BookingConfirmation:
        InventoryService.get_active_tenant(db, tenant_id)
        reservation = ReservationService.get_by_reference(db, tenant_id, reference, last_name)
        return BookingService.build_confirmation(db, reservation)

    @staticmethod
    def cancel_booking(
        db: Session,
        tenant_id: int,
        reference: str,
        last_name: str,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
        today: Optional[date] = None,
    ) -> BookingConfirmation:
        """Guest self-service cancel. Goes through the state machine like any other cancel."""
        InventoryService.get_active_tenant(db, tenant_id)
        reservation = ReservationService.get_by_reference(db, tenant_id, reference, last_name)
        reservation = ReservationService.transition(
            db,
            tenant_id,
            reservation.id,
            ReservationStatus.CANCELLED.value,
            actor=actor or "guest",
            reason=reason or "Cancelled by guest",
            today=today,
        )
        return BookingService.build_confirmation(db, reservation)
