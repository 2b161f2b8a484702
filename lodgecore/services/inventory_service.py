"""
Tenant and inventory administration: tenants, room types, physical rooms
and manual room status changes.
"""
import re
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lodgecore.database.conexion import unit_of_work
from lodgecore.errors import NotFoundError, ValidationError
from lodgecore.models.core import Tenant, RoomType, Room, RoomStatus
from lodgecore.utils.audit import record_audit
from lodgecore.utils.logging_utils import log_event
from lodgecore.utils.money import to_money

SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{1,59}$")

ROOM_TYPE_FIELDS = ("name", "description", "max_occupancy", "base_price", "total_units", "active")

# Statuses staff may set by hand. occupied only comes from check-in.
MANUAL_ROOM_STATUSES = (
    RoomStatus.AVAILABLE.value,
    RoomStatus.DIRTY.value,
    RoomStatus.OUT_OF_SERVICE.value,
)


class InventoryService:

    # ========== TENANTS ==========

    @staticmethod
    def create_tenant(
        db: Session,
        slug: str,
        name: str,
        timezone: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Tenant:
        slug = (slug or "").strip().lower()
        if not SLUG_PATTERN.match(slug):
            raise ValidationError("Slug must be 2-60 lowercase letters, digits or dashes", {"slug": slug})
        if not (name or "").strip():
            raise ValidationError("Tenant name is required")

        if db.query(Tenant).filter(Tenant.slug == slug).first():
            raise ValidationError(f"Tenant slug '{slug}' is already taken", {"slug": slug})

        tenant = Tenant(slug=slug, name=name.strip(), timezone=timezone, active=True)
        try:
            with unit_of_work(db):
                db.add(tenant)
                db.flush()
        except IntegrityError as e:
            raise ValidationError(f"Tenant slug '{slug}' is already taken", {"slug": slug}) from e

        db.refresh(tenant)
        log_event("tenants", actor, "Tenant created", f"id={tenant.id}, slug={slug}")
        return tenant

    @staticmethod
    def set_tenant_active(db: Session, tenant_id: int, active: bool, actor: Optional[str] = None) -> Tenant:
        tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
        if not tenant:
            raise NotFoundError(f"Tenant {tenant_id} not found")

        with unit_of_work(db):
            tenant.active = active

        log_event("tenants", actor, "Tenant activated" if active else "Tenant deactivated", f"id={tenant_id}")
        return tenant

    @staticmethod
    def get_active_tenant(db: Session, tenant_id: int) -> Tenant:
        tenant = db.query(Tenant).filter(Tenant.id == tenant_id, Tenant.active.is_(True)).first()
        if not tenant:
            raise NotFoundError(f"Tenant {tenant_id} not found or inactive", {"tenant_id": tenant_id})
        return tenant

    # ========== ROOM TYPES ==========

    @staticmethod
    def _validate_room_type(max_occupancy, base_price, total_units) -> None:
        if max_occupancy is not None and int(max_occupancy) < 1:
            raise ValidationError("max_occupancy must be at least 1")
        if base_price is not None and to_money(base_price) < 0:
            raise ValidationError("base_price cannot be negative")
        if total_units is not None and int(total_units) < 0:
            raise ValidationError("total_units cannot be negative")

    @staticmethod
    def create_room_type(
        db: Session,
        tenant_id: int,
        name: str,
        max_occupancy: int,
        base_price: Decimal,
        total_units: int,
        description: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> RoomType:
        InventoryService.get_active_tenant(db, tenant_id)
        InventoryService._validate_room_type(max_occupancy, base_price, total_units)
        if not (name or "").strip():
            raise ValidationError("Room type name is required")

        exists = db.query(RoomType).filter(RoomType.tenant_id == tenant_id, RoomType.name == name.strip()).first()
        if exists:
            raise ValidationError(f"Room type '{name}' already exists")

        room_type = RoomType(
            tenant_id=tenant_id,
            name=name.strip(),
            description=description,
            max_occupancy=int(max_occupancy),
            base_price=to_money(base_price),
            total_units=int(total_units),
        )
        with unit_of_work(db):
            db.add(room_type)
            db.flush()
            record_audit(db, tenant_id, "room_type", room_type.id, "CREATE", actor,
                         f"Room type {room_type.name} created",
                         {"base_price": str(room_type.base_price), "total_units": room_type.total_units})

        log_event("inventory", actor, "Room type created", f"tenant={tenant_id}, name={room_type.name}")
        return room_type

    @staticmethod
    def update_room_type(db: Session, tenant_id: int, room_type_id: int, actor: Optional[str] = None, **changes) -> RoomType:
        """
        Price changes only affect future bookings: existing ReservationRooms
        keep the price snapshotted when they were booked.
        """
        unknown = set(changes) - set(ROOM_TYPE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown room type fields: {', '.join(sorted(unknown))}")
        InventoryService._validate_room_type(
            changes.get("max_occupancy"), changes.get("base_price"), changes.get("total_units")
        )

        with unit_of_work(db):
            room_type = InventoryService.get_room_type(db, tenant_id, room_type_id, for_update=True)
            before = {k: str(getattr(room_type, k)) for k in changes}
            for key, value in changes.items():
                if key == "base_price":
                    value = to_money(value)
                setattr(room_type, key, value)
            record_audit(db, tenant_id, "room_type", room_type.id, "UPDATE", actor, None,
                         {"before": before, "after": {k: str(v) for k, v in changes.items()}})

        log_event("inventory", actor, "Room type updated", f"id={room_type_id}, fields={sorted(changes)}")
        return room_type

    @staticmethod
    def get_room_type(db: Session, tenant_id: int, room_type_id: int, for_update: bool = False) -> RoomType:
        query = db.query(RoomType).filter(
            RoomType.id == room_type_id,
            RoomType.tenant_id == tenant_id,
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        room_type = query.first()
        if not room_type:
            raise NotFoundError(f"Room type {room_type_id} not found", {"room_type_id": room_type_id})
        return room_type

    @staticmethod
    def list_room_types(db: Session, tenant_id: int, include_inactive: bool = False) -> List[RoomType]:
        query = db.query(RoomType).filter(RoomType.tenant_id == tenant_id)
        if not include_inactive:
            query = query.filter(RoomType.active.is_(True))
        return query.order_by(RoomType.base_price, RoomType.id).all()

    # ========== ROOMS ==========

    @staticmethod
    def add_room(
        db: Session,
        tenant_id: int,
        room_type_id: int,
        number: str,
        floor: Optional[int] = None,
        actor: Optional[str] = None,
    ) -> Room:
        InventoryService.get_active_tenant(db, tenant_id)
        InventoryService.get_room_type(db, tenant_id, room_type_id)
        number = (number or "").strip()
        if not number:
            raise ValidationError("Room number is required")

        if db.query(Room).filter(Room.tenant_id == tenant_id, Room.number == number).first():
            raise ValidationError(f"Room {number} already exists", {"number": number})

        room = Room(tenant_id=tenant_id, room_type_id=room_type_id, number=number, floor=floor)
        with unit_of_work(db):
            db.add(room)
            db.flush()
            record_audit(db, tenant_id, "room", room.id, "CREATE", actor, f"Room {number} added")

        log_event("inventory", actor, "Room added", f"tenant={tenant_id}, number={number}")
        return room

    @staticmethod
    def get_room(db: Session, tenant_id: int, room_id: int, for_update: bool = False) -> Room:
        query = db.query(Room).filter(Room.id == room_id, Room.tenant_id == tenant_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        room = query.first()
        if not room:
            raise NotFoundError(f"Room {room_id} not found", {"room_id": room_id})
        return room

    @staticmethod
    def list_rooms(
        db: Session,
        tenant_id: int,
        status: Optional[str] = None,
        room_type_id: Optional[int] = None,
    ) -> List[Room]:
        query = db.query(Room).filter(Room.tenant_id == tenant_id, Room.active.is_(True))
        if status:
            query = query.filter(Room.status == status)
        if room_type_id:
            query = query.filter(Room.room_type_id == room_type_id)
        return query.order_by(Room.number).all()

    @staticmethod
    def update_room_status(db: Session, tenant_id: int, room_id: int, status: str, actor: Optional[str] = None) -> Room:
        try:
            status = RoomStatus(status).value
        except ValueError as e:
            raise ValidationError(f"Unknown room status '{status}'") from e
        if status not in MANUAL_ROOM_STATUSES:
            raise ValidationError(f"Room status '{status}' cannot be set manually")

        # guards run against the locked row, not a stale session copy
        with unit_of_work(db):
            room = InventoryService.get_room(db, tenant_id, room_id, for_update=True)
            if room.status == RoomStatus.OCCUPIED.value:
                raise ValidationError(f"Room {room.number} is occupied; check the guest out first")
            if room.status == RoomStatus.RESERVED.value:
                raise ValidationError(f"Room {room.number} is pre-assigned to a reservation")
            previous = room.status
            room.status = status
            record_audit(db, tenant_id, "room", room.id, "STATUS_CHANGE", actor, None,
                         {"from": previous, "to": status})

        log_event("inventory", actor, "Room status changed", f"room={room.number}, {previous} -> {status}")
        return room
