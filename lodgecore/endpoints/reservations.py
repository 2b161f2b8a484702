"""
Staff reservation operations: lifecycle transitions and room pre-assignment
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lodgecore.database import conexion
from lodgecore.endpoints.dependencies import get_actor, get_tenant_id
from lodgecore.schemas.reservations import AllocationResult, ReservationRead, TransitionRequest
from lodgecore.services.allocation_service import AllocationService
from lodgecore.services.reservation_service import ReservationService

router = APIRouter(prefix="/reservations", tags=["Reservations"])


@router.get("", response_model=List[ReservationRead])
def list_reservations(
    status: Optional[str] = None,
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(conexion.get_db),
):
    return ReservationService.list_reservations(db, tenant_id, status=status)


@router.post("/{reservation_id}/transitions", response_model=ReservationRead)
def transition_reservation(
    reservation_id: int,
    payload: TransitionRequest,
    tenant_id: int = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor),
    db: Session = Depends(conexion.get_db),
):
    return ReservationService.transition(
        db,
        tenant_id,
        reservation_id,
        payload.target_status.value,
        actor=actor,
        reason=payload.reason,
        override=payload.override,
    )


@router.post("/{reservation_id}/allocate", response_model=List[AllocationResult])
def allocate_rooms(
    reservation_id: int,
    tenant_id: int = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor),
    db: Session = Depends(conexion.get_db),
):
    return AllocationService.allocate_rooms(db, tenant_id, reservation_id, actor=actor)
