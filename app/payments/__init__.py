from app.payments.base import (
    CheckoutLink,
    CheckoutRequest,
    PaymentConfigurationError,
    PaymentProvider,
    PaymentProviderError,
    ProviderSession,
)
from app.payments.factory import get_payment_provider

__all__ = [
    "CheckoutLink",
    "CheckoutRequest",
    "PaymentConfigurationError",
    "PaymentProvider",
    "PaymentProviderError",
    "ProviderSession",
    "get_payment_provider",
]
