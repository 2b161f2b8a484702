from .base import (
    PaymentProvider,
    InitiatePaymentRequest,
    PaymentInitResult,
    PaymentVerifyResult,
    RefundResult,
    call_with_timeout,
)
from .manual import ManualPaymentProvider
from .stripe_provider import StripePaymentProvider
from .http_gateway import HttpGatewayProvider
from .registry import ProviderRegistry, build_default_registry

__all__ = [
    "PaymentProvider",
    "InitiatePaymentRequest",
    "PaymentInitResult",
    "PaymentVerifyResult",
    "RefundResult",
    "call_with_timeout",
    "ManualPaymentProvider",
    "StripePaymentProvider",
    "HttpGatewayProvider",
    "ProviderRegistry",
    "build_default_registry",
]
