"""
Guest-facing booking endpoints
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from lodgecore.database import conexion
from lodgecore.endpoints.dependencies import get_actor, get_providers, get_tenant_id
from lodgecore.providers.registry import ProviderRegistry
from lodgecore.schemas.booking import BookingConfirmation, BookingRequest, CancelBookingRequest
from lodgecore.services.booking_service import BookingService

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("", response_model=BookingConfirmation, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: BookingRequest,
    tenant_id: int = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor),
    providers: ProviderRegistry = Depends(get_providers),
    db: Session = Depends(conexion.get_db),
):
    return BookingService.create_booking(db, tenant_id, payload, providers=providers, actor=actor)


@router.get("/{reference}", response_model=BookingConfirmation)
def get_booking(
    reference: str,
    last_name: str = Query(..., description="Guest last name, as booked"),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(conexion.get_db),
):
    return BookingService.get_booking(db, tenant_id, reference, last_name)


@router.post("/{reference}/cancel", response_model=BookingConfirmation)
def cancel_booking(
    reference: str,
    payload: CancelBookingRequest,
    tenant_id: int = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor),
    db: Session = Depends(conexion.get_db),
):
    return BookingService.cancel_booking(db, tenant_id, reference, payload.last_name, payload.reason, actor=actor)
