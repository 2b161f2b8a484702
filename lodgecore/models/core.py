from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    DateTime,
    Boolean,
    ForeignKey,
    Text,
    UniqueConstraint,
    Index,
    Numeric,
    JSON,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from lodgecore.database.conexion import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class ReservationStatus(str, enum.Enum):
    INQUIRY = "inquiry"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Statuses whose ReservationRooms count against RoomType.total_units
HOLDING_STATUSES = (
    ReservationStatus.PENDING.value,
    ReservationStatus.CONFIRMED.value,
    ReservationStatus.CHECKED_IN.value,
)

TERMINAL_STATUSES = (
    ReservationStatus.CHECKED_OUT.value,
    ReservationStatus.CANCELLED.value,
    ReservationStatus.NO_SHOW.value,
)


class RoomStatus(str, enum.Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    DIRTY = "dirty"
    OUT_OF_SERVICE = "out_of_service"


class PaymentStatus(str, enum.Enum):
    INITIATED = "initiated"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    MOBILE_MONEY = "mobile_money"
    BANK_TRANSFER = "bank_transfer"
    ONLINE = "online"
    PAY_AT_LODGE = "pay_at_lodge"


# Settled by staff at the desk, no provider round trip
MANUAL_METHODS = (PaymentMethod.CASH.value, PaymentMethod.PAY_AT_LODGE.value)


class ReservationPaymentStatus(str, enum.Enum):
    """Projection of the payment ledger onto a reservation"""
    UNPAID = "unpaid"
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class FailureReason(str, enum.Enum):
    DECLINED = "declined"
    TRANSPORT_ERROR = "transport_error"


class HousekeepingStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"


# ============================================================================
# TENANTS & INVENTORY
# ============================================================================

class Tenant(Base):
    """Independently operated lodge sharing the deployment"""
    __tablename__ = "tenants"
    __table_args__ = (
        UniqueConstraint("slug", name="uq_tenant_slug"),
        Index("idx_tenant_active", "active"),
    )

    id = Column(Integer, primary_key=True)
    slug = Column(String(60), nullable=False)
    name = Column(String(150), nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    timezone = Column(String(50), nullable=True)  # None = HOTEL_TIMEZONE

    created_at = Column(DateTime(timezone=True), default=utc_now)

    room_types = relationship("RoomType", back_populates="tenant")
    rooms = relationship("Room", back_populates="tenant")


class RoomType(Base):
    __tablename__ = "room_types"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_roomtype_tenant_name"),
        Index("idx_roomtype_tenant", "tenant_id"),
        CheckConstraint("total_units >= 0", name="ck_roomtype_units"),
        CheckConstraint("max_occupancy >= 1", name="ck_roomtype_occupancy"),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(60), nullable=False)
    description = Column(Text, nullable=True)
    max_occupancy = Column(Integer, nullable=False, default=1)
    base_price = Column(Numeric(12, 2), nullable=False)  # nightly rate
    total_units = Column(Integer, nullable=False, default=0)  # inventory ceiling
    active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now)

    tenant = relationship("Tenant", back_populates="room_types")
    rooms = relationship("Room", back_populates="room_type")


class Room(Base):
    __tablename__ = "rooms"
    __table_args__ = (
        UniqueConstraint("tenant_id", "number", name="uq_room_tenant_number"),
        Index("idx_room_type", "room_type_id"),
        Index("idx_room_status", "status"),
        Index("idx_room_tenant", "tenant_id"),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=False)
    number = Column(String(10), nullable=False)  # "101", "PB1"
    floor = Column(Integer, nullable=True)

    # available | occupied | reserved | dirty | out_of_service
    status = Column(String(20), nullable=False, default=RoomStatus.AVAILABLE.value)

    notes = Column(Text, nullable=True)
    active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    tenant = relationship("Tenant", back_populates="rooms")
    room_type = relationship("RoomType", back_populates="rooms")


# ============================================================================
# RESERVATIONS
# ============================================================================

class Guest(Base):
    __tablename__ = "guests"
    __table_args__ = (
        Index("idx_guest_tenant_email", "tenant_id", "email"),
        Index("idx_guest_tenant_phone", "tenant_id", "phone"),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    first_name = Column(String(60), nullable=False)
    last_name = Column(String(60), nullable=False)
    email = Column(String(100), nullable=True)
    phone = Column(String(30), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "booking_reference", name="uq_res_tenant_reference"),
        Index("idx_res_dates", "tenant_id", "check_in", "check_out"),
        Index("idx_res_status", "status"),
        CheckConstraint("check_out > check_in", name="ck_res_dates"),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    booking_reference = Column(String(20), nullable=False)  # LDG-XXXXXX
    guest_id = Column(Integer, ForeignKey("guests.id"), nullable=False)

    # inquiry | pending | confirmed | checked_in | checked_out | cancelled | no_show
    status = Column(String(20), nullable=False, default=ReservationStatus.PENDING.value)

    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    number_of_guests = Column(Integer, nullable=False, default=1)

    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    # Written only by the payment ledger projection
    payment_status = Column(String(20), nullable=False, default=ReservationPaymentStatus.UNPAID.value)

    special_requests = Column(Text, nullable=True)
    source = Column(String(30), nullable=True)  # online, walk_in, phone...

    cancel_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    checked_out_at = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    guest = relationship("Guest")
    rooms = relationship(
        "ReservationRoom",
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="ReservationRoom.id",
    )
    payments = relationship("Payment", back_populates="reservation", order_by="Payment.id")

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ReservationRoom(Base):
    """
    One booked unit of a RoomType. room_id stays null until allocation.
    """
    __tablename__ = "reservation_rooms"
    __table_args__ = (
        Index("idx_resroom_reservation", "reservation_id"),
        Index("idx_resroom_type", "room_type_id"),
        Index("idx_resroom_room", "room_id"),
    )

    id = Column(Integer, primary_key=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False)
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=False)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True)
    price_per_night = Column(Numeric(12, 2), nullable=False)  # snapshot at booking time

    reservation = relationship("Reservation", back_populates="rooms")
    room_type = relationship("RoomType")
    room = relationship("Room")


# ============================================================================
# PAYMENT LEDGER
# ============================================================================

class Payment(Base):
    """
    Append-only ledger entry. A refund is a new row pointing at the original.
    """
    __tablename__ = "payments"
    __table_args__ = (
        Index("idx_payment_reservation", "reservation_id"),
        Index("idx_payment_tenant_ref", "tenant_id", "transaction_ref"),
        Index("idx_payment_status", "status"),
        CheckConstraint("amount > 0", name="ck_payment_amount"),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String(20), nullable=False)
    # initiated | pending | paid | failed | refunded
    status = Column(String(20), nullable=False, default=PaymentStatus.INITIATED.value)

    transaction_ref = Column(String(120), nullable=True)
    provider = Column(String(30), nullable=True)
    failure_reason = Column(String(30), nullable=True)  # declined | transport_error
    refund_of_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    description = Column(String(500), nullable=True)

    created_by = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    reservation = relationship("Reservation", back_populates="payments")
    refund_of = relationship("Payment", remote_side=[id], uselist=False)

    def is_refund(self) -> bool:
        return self.refund_of_id is not None


# ============================================================================
# HOUSEKEEPING & AUDIT
# ============================================================================

class HousekeepingTask(Base):
    __tablename__ = "housekeeping_tasks"
    __table_args__ = (
        Index("idx_hk_task_room", "room_id"),
        Index("idx_hk_task_tenant_status", "tenant_id", "status"),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    room_id = Column(Integer, ForeignKey("rooms.id", ondelete="RESTRICT"), nullable=False)
    reservation_id = Column(Integer, ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True)

    task_type = Column(String(30), nullable=False, default="checkout")
    status = Column(String(20), nullable=False, default=HousekeepingStatus.PENDING.value)
    assigned_to = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    started_at = Column(DateTime(timezone=True), nullable=True)
    done_at = Column(DateTime(timezone=True), nullable=True)

    room = relationship("Room")


class AuditEvent(Base):
    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_tenant_time", "tenant_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)

    # "reservation" | "payment" | "room" | "housekeeping_task"
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(Integer, nullable=False)

    action = Column(String(50), nullable=False)  # CREATE, STATUS_CHANGE, ALLOCATE, PAYMENT, REFUND...
    actor = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    description = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
