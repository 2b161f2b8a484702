import logging
from decimal import Decimal
from typing import Optional

import stripe

from lodgecore.errors import PaymentProviderError
from lodgecore.models.core import PaymentStatus
from lodgecore.utils.money import to_minor_units, from_minor_units
from .base import (
    PaymentProvider,
    InitiatePaymentRequest,
    PaymentInitResult,
    PaymentVerifyResult,
    RefundResult,
)

logger = logging.getLogger(__name__)

# PaymentIntent.status -> ledger status
_INTENT_STATUS = {
    "succeeded": PaymentStatus.PAID.value,
    "processing": PaymentStatus.PENDING.value,
    "requires_payment_method": PaymentStatus.PENDING.value,
    "requires_confirmation": PaymentStatus.PENDING.value,
    "requires_action": PaymentStatus.PENDING.value,
    "requires_capture": PaymentStatus.PENDING.value,
    "canceled": PaymentStatus.FAILED.value,
}


class StripePaymentProvider(PaymentProvider):
    """Card and online payments through Stripe PaymentIntents"""

    name = "stripe"

    def __init__(self, client=None):
        # module-level SDK, api_key set in config
        self.stripe = client or stripe

    def initiate_payment(self, request: InitiatePaymentRequest) -> PaymentInitResult:
        try:
            intent = self.stripe.PaymentIntent.create(
                amount=to_minor_units(request.amount),
                currency=request.currency,
                description=request.description,
                metadata={"booking_reference": request.reference, "method": request.method},
            )
        except stripe.CardError as e:
            logger.info("stripe declined %s: %s", request.reference, e.user_message)
            return PaymentInitResult(
                success=False,
                status=PaymentStatus.FAILED.value,
                message=e.user_message or str(e),
            )
        except stripe.StripeError as e:
            raise PaymentProviderError(self.name, f"Stripe error: {e}") from e

        return PaymentInitResult(
            success=True,
            transaction_ref=intent.id,
            status=_INTENT_STATUS.get(intent.status, PaymentStatus.PENDING.value),
            client_secret=intent.client_secret,
        )

    def verify_payment(self, transaction_ref: str) -> PaymentVerifyResult:
        try:
            intent = self.stripe.PaymentIntent.retrieve(transaction_ref)
        except stripe.StripeError as e:
            raise PaymentProviderError(self.name, f"Stripe error: {e}") from e

        status = _INTENT_STATUS.get(intent.status, PaymentStatus.PENDING.value)
        return PaymentVerifyResult(
            success=status == PaymentStatus.PAID.value,
            amount=from_minor_units(intent.amount),
            status=status,
        )

    def refund_payment(self, transaction_ref: str, amount: Optional[Decimal] = None) -> RefundResult:
        params = {"payment_intent": transaction_ref}
        if amount is not None:
            params["amount"] = to_minor_units(amount)
        try:
            refund = self.stripe.Refund.create(**params)
        except stripe.InvalidRequestError as e:
            return RefundResult(success=False, status=PaymentStatus.FAILED.value, message=str(e))
        except stripe.StripeError as e:
            raise PaymentProviderError(self.name, f"Stripe error: {e}") from e

        if refund.status == "failed" or refund.status == "canceled":
            return RefundResult(success=False, status=PaymentStatus.FAILED.value, transaction_ref=refund.id)
        return RefundResult(
            success=True,
            refunded_amount=from_minor_units(refund.amount),
            status=PaymentStatus.REFUNDED.value,
            transaction_ref=refund.id,
        )
