import uuid
from decimal import Decimal
from typing import Optional

from lodgecore.models.core import PaymentStatus
from .base import (
    PaymentProvider,
    InitiatePaymentRequest,
    PaymentInitResult,
    PaymentVerifyResult,
    RefundResult,
)


class ManualPaymentProvider(PaymentProvider):
    """Cash and pay-at-lodge: settled by staff, nothing to call."""

    name = "manual"

    def initiate_payment(self, request: InitiatePaymentRequest) -> PaymentInitResult:
        return PaymentInitResult(
            success=True,
            transaction_ref=f"MANUAL-{uuid.uuid4().hex[:12].upper()}",
            status=PaymentStatus.PAID.value,
        )

    def verify_payment(self, transaction_ref: str) -> PaymentVerifyResult:
        return PaymentVerifyResult(success=True, status=PaymentStatus.PAID.value)

    def refund_payment(self, transaction_ref: str, amount: Optional[Decimal] = None) -> RefundResult:
        return RefundResult(
            success=True,
            refunded_amount=amount or Decimal("0"),
            status=PaymentStatus.REFUNDED.value,
            transaction_ref=transaction_ref,
        )
