from app.db.base import Base
from app.db.models import (
    CheckoutSession,
    CheckoutSessionStatus,
    EmailDispatch,
    OnboardingSubmission,
    Order,
    OrderStatus,
    ProcessedWebhookEvent,
    WebhookSource,
)

__all__ = [
    "Base",
    "CheckoutSession",
    "CheckoutSessionStatus",
    "EmailDispatch",
    "OnboardingSubmission",
    "Order",
    "OrderStatus",
    "ProcessedWebhookEvent",
    "WebhookSource",
]
