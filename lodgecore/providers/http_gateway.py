"""
Generic JSON gateway used for mobile money and bank transfers.

    POST {base}/payments                 -> {"transaction_ref", "status"}
    GET  {base}/payments/{ref}           -> {"status", "amount"}
    POST {base}/payments/{ref}/refunds   -> {"status", "amount", "refund_ref"}
"""
import logging
from decimal import Decimal
from typing import Optional

import requests

from lodgecore import config
from lodgecore.errors import PaymentProviderError
from lodgecore.models.core import PaymentStatus
from .base import (
    PaymentProvider,
    InitiatePaymentRequest,
    PaymentInitResult,
    PaymentVerifyResult,
    RefundResult,
)

logger = logging.getLogger(__name__)

_GATEWAY_STATUS = {
    "pending": PaymentStatus.PENDING.value,
    "processing": PaymentStatus.PENDING.value,
    "success": PaymentStatus.PAID.value,
    "successful": PaymentStatus.PAID.value,
    "paid": PaymentStatus.PAID.value,
    "failed": PaymentStatus.FAILED.value,
    "declined": PaymentStatus.FAILED.value,
    "refunded": PaymentStatus.REFUNDED.value,
}


class HttpGatewayProvider(PaymentProvider):
    name = "gateway"

    def __init__(self, base_url: str, api_key: str = "", session: requests.Session = None, timeout: float = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout or config.PAYMENT_PROVIDER_TIMEOUT_SECONDS

    def _request(self, method: str, path: str, payload: dict = None):
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise PaymentProviderError(self.name, f"Gateway unreachable: {e}") from e

        if response.status_code >= 500:
            raise PaymentProviderError(self.name, f"Gateway error {response.status_code}")
        try:
            body = response.json()
        except ValueError as e:
            raise PaymentProviderError(self.name, "Gateway returned a non-JSON body") from e
        return response.status_code, body

    @staticmethod
    def _status(raw) -> str:
        return _GATEWAY_STATUS.get(str(raw or "").lower(), PaymentStatus.PENDING.value)

    def initiate_payment(self, request: InitiatePaymentRequest) -> PaymentInitResult:
        code, body = self._request("POST", "/payments", {
            "amount": str(request.amount),
            "currency": request.currency,
            "reference": request.reference,
            "method": request.method,
            "description": request.description,
            "callback_url": request.callback_url,
        })
        if code >= 400:
            # 4xx is a business refusal, not a transport failure
            return PaymentInitResult(
                success=False,
                status=PaymentStatus.FAILED.value,
                message=body.get("message") or f"Gateway refused payment ({code})",
            )

        status = self._status(body.get("status"))
        return PaymentInitResult(
            success=status != PaymentStatus.FAILED.value,
            transaction_ref=body.get("transaction_ref"),
            status=status,
            message=body.get("message"),
            redirect_url=body.get("redirect_url"),
        )

    def verify_payment(self, transaction_ref: str) -> PaymentVerifyResult:
        code, body = self._request("GET", f"/payments/{transaction_ref}")
        if code >= 400:
            return PaymentVerifyResult(success=False, status=PaymentStatus.FAILED.value, message=body.get("message"))

        status = self._status(body.get("status"))
        amount = body.get("amount")
        return PaymentVerifyResult(
            success=status == PaymentStatus.PAID.value,
            amount=Decimal(str(amount)) if amount is not None else None,
            status=status,
        )

    def refund_payment(self, transaction_ref: str, amount: Optional[Decimal] = None) -> RefundResult:
        payload = {"amount": str(amount)} if amount is not None else {}
        code, body = self._request("POST", f"/payments/{transaction_ref}/refunds", payload)
        if code >= 400:
            return RefundResult(success=False, status=PaymentStatus.FAILED.value, message=body.get("message"))

        status = self._status(body.get("status"))
        refunded = body.get("amount", amount)
        return RefundResult(
            success=status in (PaymentStatus.REFUNDED.value, PaymentStatus.PAID.value),
            refunded_amount=Decimal(str(refunded)) if refunded is not None else Decimal("0"),
            status=PaymentStatus.REFUNDED.value if status == PaymentStatus.PAID.value else status,
            transaction_ref=body.get("refund_ref"),
        )
