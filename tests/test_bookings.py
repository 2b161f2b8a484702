"""
Tests for the booking orchestrator
"""
import re
from datetime import date
from decimal import Decimal

import pytest

from conftest import TODAY, booking_request
from lodgecore import config
from lodgecore.errors import InsufficientAvailability, NotFoundError, ValidationError, InvalidTransition
from lodgecore.models.core import (
    AuditEvent,
    Guest,
    PaymentMethod,
    Reservation,
    ReservationRoom,
    ReservationStatus,
)
from lodgecore.schemas.booking import GuestInput, RoomRequest
from lodgecore.services.booking_service import BookingService
from lodgecore.services.inventory_service import InventoryService
from lodgecore.services.reservation_service import ReservationService


class TestCreateBooking:

    def test_two_deluxe_for_three_nights_costs_600(self, db, lodge):
        confirmation = BookingService.create_booking(
            db, lodge.tenant_id, booking_request(lodge.deluxe_id, quantity=2), today=TODAY
        )

        assert confirmation.total_amount == Decimal("600.00")
        assert confirmation.nights == 3
        assert confirmation.status == ReservationStatus.PENDING.value
        assert confirmation.payment_status == "unpaid"
        assert confirmation.balance_due == Decimal("600.00")
        assert len(confirmation.rooms) == 2
        assert all(room.price_per_night == Decimal("100.00") for room in confirmation.rooms)
        assert all(room.subtotal == Decimal("300.00") for room in confirmation.rooms)
        assert all(room.room_id is None for room in confirmation.rooms)
        assert re.fullmatch(r"LDG-[A-Z0-9]{6}", confirmation.booking_reference)

    def test_one_reservation_room_row_per_unit(self, db, lodge):
        confirmation = BookingService.create_booking(
            db, lodge.tenant_id,
            booking_request(lodge.deluxe_id, quantity=2, extra_rooms=[(lodge.single_id, 1)]),
            today=TODAY,
        )
        rows = db.query(ReservationRoom).filter(ReservationRoom.reservation_id == confirmation.reservation_id).all()
        assert sorted(r.room_type_id for r in rows) == sorted([lodge.deluxe_id, lodge.deluxe_id, lodge.single_id])
        # 3 nights x (100 + 100 + 60)
        assert confirmation.total_amount == Decimal("780.00")

    def test_overlapping_booking_for_last_unit_fails(self, db, lodge):
        BookingService.create_booking(
            db, lodge.tenant_id,
            booking_request(lodge.single_id, check_in=date(2025, 3, 10), check_out=date(2025, 3, 12),
                            method=PaymentMethod.PAY_AT_LODGE),
            today=TODAY,
        )

        with pytest.raises(InsufficientAvailability) as exc:
            BookingService.create_booking(
                db, lodge.tenant_id,
                booking_request(lodge.single_id, check_in=date(2025, 3, 11), check_out=date(2025, 3, 13),
                                email="other@example.com", last_name="Perez"),
                today=TODAY,
            )
        assert exc.value.room_type_ids == [lodge.single_id]
        assert db.query(Reservation).count() == 1

    def test_same_day_turnover_succeeds(self, db, lodge):
        first = BookingService.create_booking(
            db, lodge.tenant_id,
            booking_request(lodge.single_id, check_in=date(2025, 3, 10), check_out=date(2025, 3, 12)),
            today=TODAY,
        )
        second = BookingService.create_booking(
            db, lodge.tenant_id,
            booking_request(lodge.single_id, check_in=date(2025, 3, 12), check_out=date(2025, 3, 14),
                            email="next@example.com"),
            today=TODAY,
        )
        assert first.status == second.status == ReservationStatus.PENDING.value

    def test_shortage_on_one_type_aborts_whole_booking(self, db, lodge):
        BookingService.create_booking(db, lodge.tenant_id, booking_request(lodge.single_id), today=TODAY)

        with pytest.raises(InsufficientAvailability) as exc:
            BookingService.create_booking(
                db, lodge.tenant_id,
                booking_request(lodge.deluxe_id, quantity=1, extra_rooms=[(lodge.single_id, 1)],
                                email="x@example.com"),
                today=TODAY,
            )
        assert exc.value.room_type_ids == [lodge.single_id]
        assert db.query(Reservation).count() == 1
        assert db.query(ReservationRoom).count() == 1

    def test_pay_at_lodge_is_confirmed_immediately(self, db, lodge):
        confirmation = BookingService.create_booking(
            db, lodge.tenant_id, booking_request(lodge.deluxe_id, method=PaymentMethod.PAY_AT_LODGE), today=TODAY
        )
        assert confirmation.status == ReservationStatus.CONFIRMED.value
        assert confirmation.payment_status == "unpaid"

    def test_pay_at_lodge_stays_pending_when_policy_is_off(self, db, lodge, monkeypatch):
        monkeypatch.setattr(config, "AUTO_CONFIRM_PAY_AT_LODGE", False)
        confirmation = BookingService.create_booking(
            db, lodge.tenant_id, booking_request(lodge.deluxe_id, method=PaymentMethod.PAY_AT_LODGE), today=TODAY
        )
        assert confirmation.status == ReservationStatus.PENDING.value

    def test_initial_cash_payment_settles_and_confirms(self, db, lodge, providers):
        confirmation = BookingService.create_booking(
            db, lodge.tenant_id,
            booking_request(lodge.deluxe_id, method=PaymentMethod.CASH, initial_payment=Decimal("300")),
            providers=providers,
            today=TODAY,
        )
        assert confirmation.payment_status == "paid"
        assert confirmation.amount_paid == Decimal("300.00")
        assert confirmation.balance_due == Decimal("0.00")
        assert confirmation.status == ReservationStatus.CONFIRMED.value

    def test_initial_payment_above_total_is_rejected_before_booking(self, db, lodge, providers):
        with pytest.raises(ValidationError):
            BookingService.create_booking(
                db, lodge.tenant_id,
                booking_request(lodge.deluxe_id, method=PaymentMethod.CASH, initial_payment=Decimal("301")),
                providers=providers,
                today=TODAY,
            )
        assert db.query(Reservation).count() == 0

    def test_price_is_snapshotted_at_booking_time(self, db, lodge):
        confirmation = BookingService.create_booking(
            db, lodge.tenant_id, booking_request(lodge.deluxe_id), today=TODAY
        )
        InventoryService.update_room_type(db, lodge.tenant_id, lodge.deluxe_id, base_price=Decimal("250"))

        again = BookingService.get_confirmation(db, lodge.tenant_id, confirmation.reservation_id)
        assert again.total_amount == Decimal("300.00")
        assert again.rooms[0].price_per_night == Decimal("100.00")

    def test_creation_is_audited(self, db, lodge):
        confirmation = BookingService.create_booking(
            db, lodge.tenant_id, booking_request(lodge.deluxe_id), actor="web", today=TODAY
        )
        event = db.query(AuditEvent).filter(
            AuditEvent.entity_type == "reservation",
            AuditEvent.entity_id == confirmation.reservation_id,
            AuditEvent.action == "CREATE",
        ).one()
        assert event.actor == "web"
        assert event.payload["total_amount"] == "300.00"


class TestBookingValidation:

    def test_inverted_dates(self, db, lodge):
        with pytest.raises(ValidationError):
            BookingService.create_booking(
                db, lodge.tenant_id,
                booking_request(lodge.deluxe_id, check_in=date(2025, 3, 13), check_out=date(2025, 3, 10)),
                today=TODAY,
            )

    def test_no_rooms(self, db, lodge):
        request = booking_request(lodge.deluxe_id)
        request.rooms = []
        with pytest.raises(ValidationError):
            BookingService.create_booking(db, lodge.tenant_id, request, today=TODAY)

    def test_zero_quantity(self, db, lodge):
        with pytest.raises(ValidationError):
            BookingService.create_booking(db, lodge.tenant_id, booking_request(lodge.deluxe_id, quantity=0), today=TODAY)

    def test_guest_without_contact(self, db, lodge):
        with pytest.raises(ValidationError):
            BookingService.create_booking(
                db, lodge.tenant_id, booking_request(lodge.deluxe_id, email=None, phone=None), today=TODAY
            )

    def test_backdating_needs_staff_flag(self, db, lodge):
        request = booking_request(lodge.deluxe_id, check_in=date(2025, 2, 27), check_out=date(2025, 3, 2))
        with pytest.raises(ValidationError):
            BookingService.create_booking(db, lodge.tenant_id, request, today=TODAY)

        confirmation = BookingService.create_booking(
            db, lodge.tenant_id, request, actor="staff", backdate_allowed=True, today=TODAY
        )
        assert confirmation.check_in == date(2025, 2, 27)

    def test_too_many_guests_for_rooms(self, db, lodge):
        with pytest.raises(ValidationError):
            BookingService.create_booking(
                db, lodge.tenant_id, booking_request(lodge.deluxe_id, guests=3), today=TODAY
            )

    def test_unknown_room_type(self, db, lodge):
        with pytest.raises(NotFoundError):
            BookingService.create_booking(db, lodge.tenant_id, booking_request(9999), today=TODAY)


class TestGuests:

    def test_guest_is_reused_by_email(self, db, lodge):
        BookingService.create_booking(db, lodge.tenant_id, booking_request(lodge.deluxe_id), today=TODAY)
        BookingService.create_booking(
            db, lodge.tenant_id,
            booking_request(lodge.deluxe_id, email="ANA.LOPEZ@example.com", last_name="Lopez Diaz"),
            today=TODAY,
        )
        guests = db.query(Guest).all()
        assert len(guests) == 1
        assert guests[0].last_name == "Lopez Diaz"

    def test_guest_is_reused_by_phone(self, db, lodge):
        guest = BookingService.find_or_create_guest(
            db, lodge.tenant_id, GuestInput(first_name="Ana", last_name="Lopez", phone="+5491100000000")
        )
        again = BookingService.find_or_create_guest(
            db, lodge.tenant_id,
            GuestInput(first_name="Ana", last_name="Lopez", email="ana@example.com", phone="+5491100000000"),
        )
        assert again.id == guest.id
        assert again.email == "ana@example.com"


class TestInquiries:

    def test_inquiry_holds_no_inventory(self, db, lodge):
        inquiry = BookingService.create_inquiry(db, lodge.tenant_id, booking_request(lodge.single_id), today=TODAY)
        assert inquiry.status == ReservationStatus.INQUIRY.value

        booked = BookingService.create_booking(
            db, lodge.tenant_id, booking_request(lodge.single_id, email="b@example.com"), today=TODAY
        )
        assert booked.status == ReservationStatus.PENDING.value

    def test_inquiry_to_pending_rechecks_availability(self, db, lodge):
        inquiry = BookingService.create_inquiry(db, lodge.tenant_id, booking_request(lodge.single_id), today=TODAY)
        BookingService.create_booking(
            db, lodge.tenant_id, booking_request(lodge.single_id, email="b@example.com"), today=TODAY
        )

        with pytest.raises(InsufficientAvailability):
            ReservationService.transition(db, lodge.tenant_id, inquiry.reservation_id, "pending", actor="staff")
        assert ReservationService.get_reservation(db, lodge.tenant_id, inquiry.reservation_id).status == "inquiry"


class TestLookupAndCancel:

    def test_lookup_needs_matching_last_name(self, db, lodge):
        confirmation = BookingService.create_booking(db, lodge.tenant_id, booking_request(lodge.deluxe_id), today=TODAY)

        found = BookingService.get_booking(db, lodge.tenant_id, confirmation.booking_reference.lower(), "lopez")
        assert found.reservation_id == confirmation.reservation_id

        with pytest.raises(NotFoundError):
            BookingService.get_booking(db, lodge.tenant_id, confirmation.booking_reference, "Smith")

    def test_lookup_is_tenant_scoped(self, db, lodge):
        confirmation = BookingService.create_booking(db, lodge.tenant_id, booking_request(lodge.deluxe_id), today=TODAY)
        other = InventoryService.create_tenant(db, "river-camp", "River Camp")
        with pytest.raises(NotFoundError):
            BookingService.get_booking(db, other.id, confirmation.booking_reference, "Lopez")

    def test_guest_cancel_frees_inventory(self, db, lodge):
        confirmation = BookingService.create_booking(db, lodge.tenant_id, booking_request(lodge.single_id), today=TODAY)
        cancelled = BookingService.cancel_booking(
            db, lodge.tenant_id, confirmation.booking_reference, "Lopez", reason="Change of plans", today=TODAY
        )
        assert cancelled.status == ReservationStatus.CANCELLED.value

        rebooked = BookingService.create_booking(
            db, lodge.tenant_id, booking_request(lodge.single_id, email="c@example.com"), today=TODAY
        )
        assert rebooked.status == ReservationStatus.PENDING.value

    def test_cancelled_booking_cannot_be_cancelled_again(self, db, lodge):
        confirmation = BookingService.create_booking(db, lodge.tenant_id, booking_request(lodge.single_id), today=TODAY)
        BookingService.cancel_booking(db, lodge.tenant_id, confirmation.booking_reference, "Lopez", today=TODAY)
        with pytest.raises(InvalidTransition):
            BookingService.cancel_booking(db, lodge.tenant_id, confirmation.booking_reference, "Lopez", today=TODAY)
