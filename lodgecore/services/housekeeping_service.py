from typing import List, Optional

from sqlalchemy.orm import Session

from lodgecore.database.conexion import unit_of_work
from lodgecore.errors import NotFoundError, ValidationError
from lodgecore.models.core import HousekeepingTask, HousekeepingStatus, Room, RoomStatus, utc_now
from lodgecore.utils.audit import record_audit
from lodgecore.utils.logging_utils import log_event

TASK_TRANSITIONS = {
    HousekeepingStatus.PENDING.value: {HousekeepingStatus.IN_PROGRESS.value, HousekeepingStatus.DONE.value},
    HousekeepingStatus.IN_PROGRESS.value: {HousekeepingStatus.DONE.value},
    HousekeepingStatus.DONE.value: set(),
}


class HousekeepingService:
    """Cleaning tasks opened at check-out and closed by housekeeping staff"""

    @staticmethod
    def open_task(
        db: Session,
        tenant_id: int,
        room: Room,
        reservation_id: Optional[int] = None,
        task_type: str = "checkout",
        notes: Optional[str] = None,
    ) -> HousekeepingTask:
        """Adds a task to the caller's transaction. Does not commit."""
        task = HousekeepingTask(
            tenant_id=tenant_id,
            room_id=room.id,
            reservation_id=reservation_id,
            task_type=task_type,
            status=HousekeepingStatus.PENDING.value,
            notes=notes,
        )
        db.add(task)
        return task

    @staticmethod
    def get_task(db: Session, tenant_id: int, task_id: int) -> HousekeepingTask:
        task = db.query(HousekeepingTask).filter(
            HousekeepingTask.id == task_id,
            HousekeepingTask.tenant_id == tenant_id,
        ).first()
        if not task:
            raise NotFoundError(f"Housekeeping task {task_id} not found")
        return task

    @staticmethod
    def list_tasks(
        db: Session,
        tenant_id: int,
        status: Optional[str] = None,
        room_id: Optional[int] = None,
    ) -> List[HousekeepingTask]:
        query = db.query(HousekeepingTask).filter(HousekeepingTask.tenant_id == tenant_id)
        if status:
            query = query.filter(HousekeepingTask.status == status)
        if room_id:
            query = query.filter(HousekeepingTask.room_id == room_id)
        return query.order_by(HousekeepingTask.created_at, HousekeepingTask.id).all()

    @staticmethod
    def update_task_status(
        db: Session,
        tenant_id: int,
        task_id: int,
        status: str,
        actor: Optional[str] = None,
        assigned_to: Optional[str] = None,
    ) -> HousekeepingTask:
        """
        pending -> in_progress -> done (or pending -> done directly).
        Finishing a task hands a dirty room back to the available pool.
        """
        task = HousekeepingService.get_task(db, tenant_id, task_id)
        allowed = TASK_TRANSITIONS.get(task.status, set())
        if status not in allowed:
            raise ValidationError(
                f'Cannot move task from "{task.status}" to "{status}"',
                {"allowed": sorted(allowed)},
            )

        now = utc_now()
        previous = task.status
        with unit_of_work(db):
            task.status = status
            if assigned_to:
                task.assigned_to = assigned_to
            if task.started_at is None:
                task.started_at = now
            if status == HousekeepingStatus.DONE.value:
                task.done_at = now
                room = db.query(Room).filter(Room.id == task.room_id).with_for_update().one()
                if room.status == RoomStatus.DIRTY.value:
                    room.status = RoomStatus.AVAILABLE.value
            record_audit(db, tenant_id, "housekeeping_task", task.id, "STATUS_CHANGE", actor, None,
                         {"from": previous, "to": status})

        log_event("housekeeping", actor, "Task status changed", f"task={task_id}, {previous} -> {status}")
        return task

    @staticmethod
    def complete_task(db: Session, tenant_id: int, task_id: int, actor: Optional[str] = None) -> HousekeepingTask:
        return HousekeepingService.update_task_status(
            db, tenant_id, task_id, HousekeepingStatus.DONE.value, actor=actor
        )
