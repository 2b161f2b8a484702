"""
Payment provider capability.

Every external settlement channel (cash desk, card processor, mobile money
gateway...) is reached through the same three operations. The ledger only
talks to this interface.
"""
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from decimal import Decimal
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel

from lodgecore import config
from lodgecore.errors import PaymentProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================================
# REQUEST / RESULT MODELS
# ============================================================================

class InitiatePaymentRequest(BaseModel):
    amount: Decimal
    currency: str
    reference: str  # booking reference, echoed back by the provider
    method: str
    description: Optional[str] = None
    callback_url: Optional[str] = None


class PaymentInitResult(BaseModel):
    success: bool
    transaction_ref: Optional[str] = None
    status: str  # pending | paid | failed
    message: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_url: Optional[str] = None


class PaymentVerifyResult(BaseModel):
    success: bool
    amount: Optional[Decimal] = None
    status: str  # pending | paid | failed
    message: Optional[str] = None


class RefundResult(BaseModel):
    success: bool
    refunded_amount: Decimal = Decimal("0")
    status: str  # refunded | pending | failed
    transaction_ref: Optional[str] = None
    message: Optional[str] = None


# ============================================================================
# CAPABILITY
# ============================================================================

class PaymentProvider(ABC):
    name = "provider"

    @abstractmethod
    def initiate_payment(self, request: InitiatePaymentRequest) -> PaymentInitResult:
        ...

    @abstractmethod
    def verify_payment(self, transaction_ref: str) -> PaymentVerifyResult:
        ...

    @abstractmethod
    def refund_payment(self, transaction_ref: str, amount: Optional[Decimal] = None) -> RefundResult:
        ...


_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="payment-provider")


def _log_late_result(provider_name: str):
    """Reports what an abandoned call finally returned, for manual reconciliation"""

    def _done(future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning("late %s call failed after timeout: %r", provider_name, error)
        else:
            logger.warning("late %s call returned after timeout: %r", provider_name, future.result())

    return _done


def call_with_timeout(provider_name: str, fn: Callable[[], T], timeout: Optional[float] = None) -> T:
    """
    Runs a provider call with a hard time box. A call that does not return in
    time, or fails with anything other than a PaymentProviderError, is
    reported as a PaymentProviderError. A timed-out worker is abandoned and
    its eventual result is logged.
    """
    timeout = timeout if timeout is not None else config.PAYMENT_PROVIDER_TIMEOUT_SECONDS
    future = _executor.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        if not future.cancel():
            future.add_done_callback(_log_late_result(provider_name))
        logger.warning("provider %s timed out after %ss", provider_name, timeout)
        raise PaymentProviderError(provider_name, f"{provider_name} did not answer within {timeout}s")
    except PaymentProviderError:
        raise
    except Exception as e:
        logger.warning("provider %s raised %r", provider_name, e)
        raise PaymentProviderError(provider_name, f"{provider_name} failed: {e}") from e
