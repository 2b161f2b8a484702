"""
Availability search
"""
from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from lodgecore.database import conexion
from lodgecore.endpoints.dependencies import get_tenant_id
from lodgecore.schemas.booking import AvailabilityItem
from lodgecore.services.booking_service import BookingService

router = APIRouter(prefix="/availability", tags=["Availability"])


@router.get("", response_model=List[AvailabilityItem])
def search_availability(
    check_in: date = Query(..., description="Arrival date"),
    check_out: date = Query(..., description="Departure date (exclusive)"),
    guests: int = Query(1, description="Guests per room"),
    tenant_id: int = Depends(get_tenant_id),
    db: Session = Depends(conexion.get_db),
):
    return BookingService.search_availability(db, tenant_id, check_in, check_out, guests)
