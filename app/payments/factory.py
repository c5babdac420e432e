from __future__ import annotations

import logging

from app.core.config import Settings, settings as default_settings
from app.payments.base import PaymentConfigurationError, PaymentProvider
from app.payments.diagnostics import get_stripe_diagnostics
from app.payments.placeholder import PlaceholderCheckoutProvider
from app.payments.stripe_checkout import StripeCheckoutProvider

logger = logging.getLogger(__name__)


def get_payment_provider(settings: Settings | None = None) -> PaymentProvider:
    """Stripe when live checkout is enabled, otherwise the placeholder provider.

    Raises PaymentConfigurationError when live mode is forced without a usable key,
    or when production would fall back to placeholder checkout without opting in.
    """
    settings = settings or default_settings
    diagnostics = get_stripe_diagnostics(settings)

    if diagnostics.live_checkout_enabled:
        return StripeCheckoutProvider(settings)

    if diagnostics.live_mode == "true":
        logger.error("stripe_live_mode_misconfigured", extra={"ok": diagnostics.ok})
        raise PaymentConfigurationError(
            "Stripe live checkout is enabled but STRIPE_SECRET_KEY is missing or invalid.",
            diagnostics.as_dict(),
        )

    if settings.is_production and not diagnostics.allow_placeholder:
        logger.error("placeholder_checkout_blocked", extra={"env": settings.env})
        raise PaymentConfigurationError(
            "Live Stripe checkout is not configured for this environment.",
            diagnostics.as_dict(),
        )

    return PlaceholderCheckoutProvider()
