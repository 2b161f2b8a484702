from typing import Dict

from lodgecore import config
from lodgecore.errors import ValidationError
from lodgecore.models.core import PaymentMethod
from .base import PaymentProvider
from .manual import ManualPaymentProvider
from .stripe_provider import StripePaymentProvider
from .http_gateway import HttpGatewayProvider


class ProviderRegistry:
    """Maps each payment method to the provider that settles it"""

    def __init__(self, providers: Dict[str, PaymentProvider] = None):
        self._providers: Dict[str, PaymentProvider] = {}
        for method, provider in (providers or {}).items():
            self.register(method, provider)

    def register(self, method, provider: PaymentProvider) -> None:
        key = method.value if isinstance(method, PaymentMethod) else PaymentMethod(method).value
        self._providers[key] = provider

    def get(self, method) -> PaymentProvider:
        key = method.value if isinstance(method, PaymentMethod) else str(method)
        provider = self._providers.get(key)
        if provider is None:
            raise ValidationError(
                f"Payment method '{key}' is not available",
                {"method": key, "available": sorted(self._providers)},
            )
        return provider

    def methods(self):
        return sorted(self._providers)


def build_default_registry() -> ProviderRegistry:
    registry = ProviderRegistry()

    manual = ManualPaymentProvider()
    registry.register(PaymentMethod.CASH, manual)
    registry.register(PaymentMethod.PAY_AT_LODGE, manual)

    if config.is_stripe_configured():
        card = StripePaymentProvider()
        registry.register(PaymentMethod.CARD, card)
        registry.register(PaymentMethod.ONLINE, card)

    if config.is_gateway_configured():
        gateway = HttpGatewayProvider(config.GATEWAY_BASE_URL, config.GATEWAY_API_KEY)
        registry.register(PaymentMethod.MOBILE_MONEY, gateway)
        registry.register(PaymentMethod.BANK_TRANSFER, gateway)

    return registry
