"""
Payment ledger endpoints
"""
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from lodgecore.database import conexion
from lodgecore.endpoints.dependencies import get_actor, get_providers, get_tenant_id
from lodgecore.providers.registry import ProviderRegistry
from lodgecore.schemas.payments import ConfirmPaymentRequest, PaymentCreate, PaymentRead, RefundRequest
from lodgecore.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("", response_model=PaymentRead, status_code=status.HTTP_201_CREATED)
def record_payment(
    payload: PaymentCreate,
    tenant_id: int = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor),
    providers: ProviderRegistry = Depends(get_providers),
    db: Session = Depends(conexion.get_db),
):
    return PaymentService.record_payment(
        db,
        tenant_id,
        payload.reservation_id,
        payload.amount,
        payload.method,
        allow_overpay=payload.allow_overpay,
        providers=providers,
        actor=actor,
        description=payload.description,
    )


@router.post("/confirm", response_model=PaymentRead)
def confirm_payment(
    payload: ConfirmPaymentRequest,
    tenant_id: int = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor),
    providers: ProviderRegistry = Depends(get_providers),
    db: Session = Depends(conexion.get_db),
):
    return PaymentService.confirm_payment(db, tenant_id, payload.transaction_ref, providers=providers, actor=actor)


@router.post("/{payment_id}/refund", response_model=PaymentRead, status_code=status.HTTP_201_CREATED)
def refund_payment(
    payment_id: int,
    payload: RefundRequest,
    tenant_id: int = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor),
    providers: ProviderRegistry = Depends(get_providers),
    db: Session = Depends(conexion.get_db),
):
    return PaymentService.refund(
        db, tenant_id, payment_id, payload.amount, providers=providers, actor=actor, reason=payload.reason
    )
