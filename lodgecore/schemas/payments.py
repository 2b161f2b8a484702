from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from lodgecore.models.core import PaymentMethod


class PaymentCreate(BaseModel):
    reservation_id: int
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod
    allow_overpay: bool  # required, no default
    description: Optional[str] = Field(None, max_length=500)


class RefundRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0)  # None = whole remaining amount
    reason: Optional[str] = Field(None, max_length=500)


class ConfirmPaymentRequest(BaseModel):
    transaction_ref: str = Field(..., min_length=1, max_length=120)


class PaymentRead(BaseModel):
    id: int
    reservation_id: int
    amount: Decimal
    method: str
    status: str
    transaction_ref: Optional[str] = None
    provider: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_of_id: Optional[int] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
