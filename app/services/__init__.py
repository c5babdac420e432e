from .notifications import (
    BundleDeliveryError,
    BundleResult,
    NotificationService,
    OrderConfirmedInput,
    OrderSummary,
)

__all__ = [
    "BundleDeliveryError",
    "BundleResult",
    "NotificationService",
    "OrderConfirmedInput",
    "OrderSummary",
]
