"""
Shared fixtures: a throwaway SQLite file per test, a seeded lodge and a
provider registry whose external providers are mocks.
"""
import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite:///" + os.path.join(tempfile.gettempdir(), "lodgecore_unused.db"))
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "lodgecore_test.log"))

from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from sqlalchemy.orm import sessionmaker

from lodgecore.database.conexion import Base, build_engine
from lodgecore import models  # noqa: F401  registers tables
from lodgecore.models.core import Guest, Reservation, ReservationRoom, PaymentMethod
from lodgecore.providers.base import PaymentProvider, PaymentInitResult, PaymentVerifyResult, RefundResult
from lodgecore.providers.manual import ManualPaymentProvider
from lodgecore.providers.registry import ProviderRegistry
from lodgecore.schemas.booking import BookingRequest, GuestInput, RoomRequest
from lodgecore.services.inventory_service import InventoryService
from lodgecore.utils.references import generate_booking_reference

# Fixed "today" for date-sensitive rules
TODAY = date(2025, 3, 1)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'lodge.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def lodge(db):
    """
    Tenant "sunset-lodge":
      Deluxe  $100, sleeps 2, 2 units, rooms 101 / 102
      Single  $60,  sleeps 1, 1 unit,  room 201
    """
    tenant = InventoryService.create_tenant(db, "sunset-lodge", "Sunset Lodge", actor="admin")
    deluxe = InventoryService.create_room_type(db, tenant.id, "Deluxe", 2, Decimal("100.00"), 2, actor="admin")
    single = InventoryService.create_room_type(db, tenant.id, "Single", 1, Decimal("60.00"), 1, actor="admin")
    r101 = InventoryService.add_room(db, tenant.id, deluxe.id, "101", floor=1)
    r102 = InventoryService.add_room(db, tenant.id, deluxe.id, "102", floor=1)
    r201 = InventoryService.add_room(db, tenant.id, single.id, "201", floor=2)
    return SimpleNamespace(
        tenant_id=tenant.id,
        deluxe_id=deluxe.id,
        single_id=single.id,
        room_ids={"101": r101.id, "102": r102.id, "201": r201.id},
    )


@pytest.fixture
def card_provider():
    provider = Mock(spec=PaymentProvider)
    provider.name = "fake-card"
    provider.initiate_payment.return_value = PaymentInitResult(
        success=True, transaction_ref="pi_test_1", status="pending"
    )
    provider.verify_payment.return_value = PaymentVerifyResult(success=True, status="paid", amount=Decimal("0"))
    provider.refund_payment.return_value = RefundResult(
        success=True, refunded_amount=Decimal("0"), status="refunded", transaction_ref="re_test_1"
    )
    return provider


@pytest.fixture
def providers(card_provider):
    manual = ManualPaymentProvider()
    return ProviderRegistry({
        PaymentMethod.CASH: manual,
        PaymentMethod.PAY_AT_LODGE: manual,
        PaymentMethod.CARD: card_provider,
        PaymentMethod.ONLINE: card_provider,
        PaymentMethod.MOBILE_MONEY: card_provider,
        PaymentMethod.BANK_TRANSFER: card_provider,
    })


def booking_request(
    room_type_id,
    quantity=1,
    check_in=date(2025, 3, 10),
    check_out=date(2025, 3, 13),
    method=PaymentMethod.CARD,
    email="ana.lopez@example.com",
    phone=None,
    last_name="Lopez",
    guests=1,
    initial_payment=None,
    extra_rooms=(),
):
    rooms = [RoomRequest(room_type_id=room_type_id, quantity=quantity)]
    rooms.extend(RoomRequest(room_type_id=rt, quantity=q) for rt, q in extra_rooms)
    return BookingRequest(
        check_in=check_in,
        check_out=check_out,
        rooms=rooms,
        guest=GuestInput(first_name="Ana", last_name=last_name, email=email, phone=phone),
        payment_method=method,
        number_of_guests=guests,
        initial_payment_amount=initial_payment,
    )


def insert_reservation(
    db,
    tenant_id,
    room_type_id,
    status,
    check_in=date(2025, 3, 10),
    check_out=date(2025, 3, 12),
    units=1,
    price=Decimal("100.00"),
):
    """Writes a reservation straight to the store in any status"""
    guest = Guest(tenant_id=tenant_id, first_name="Test", last_name="Guest", email="guest@example.com")
    db.add(guest)
    db.flush()
    nights = (check_out - check_in).days
    reservation = Reservation(
        tenant_id=tenant_id,
        booking_reference=generate_booking_reference(),
        guest_id=guest.id,
        status=status,
        check_in=check_in,
        check_out=check_out,
        total_amount=price * nights * units,
    )
    for _ in range(units):
        reservation.rooms.append(ReservationRoom(room_type_id=room_type_id, price_per_night=price))
    db.add(reservation)
    db.commit()
    return reservation.id
