from __future__ import annotations

import logging
import re

import stripe

from app.core.catalog import CURRENCY
from app.core.config import Settings
from app.core.pricing import to_cents
from app.payments.base import (
    CheckoutLink,
    CheckoutRequest,
    PaymentProvider,
    PaymentProviderError,
    ProviderSession,
    provider_session_from_payload,
)

logger = logging.getLogger(__name__)

STRIPE_SESSION_ID_PATTERN = re.compile(r"^cs_(test_|live_)?[A-Za-z0-9_]+$")


def is_stripe_session_id(session_id: str) -> bool:
    return bool(STRIPE_SESSION_ID_PATTERN.match((session_id or "").strip()))


class StripeCheckoutProvider(PaymentProvider):
    live = True

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _api_key(self) -> str:
        return (self._settings.stripe_secret_key or "").strip()

    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutLink:
        params: dict = {
            "mode": "payment",
            "client_reference_id": request.order_id,
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": CURRENCY,
                        "unit_amount": to_cents(request.quote.deposit_today),
                        "product_data": {
                            "name": "DetailFlow Deposit",
                            "description": request.description,
                        },
                    },
                }
            ],
            "metadata": request.metadata,
        }
        if request.customer_email:
            params["customer_email"] = request.customer_email
        if request.mode == "embedded":
            params["ui_mode"] = "embedded"
            params["return_url"] = request.return_url
        else:
            params["success_url"] = request.success_url
            params["cancel_url"] = request.cancel_url

        try:
            session = stripe.checkout.Session.create(api_key=self._api_key(), **params)
        except stripe.StripeError as exc:
            logger.warning(
                "stripe_checkout_create_failed",
                extra={"order_id": request.order_id, "mode": request.mode, "error": str(exc)},
            )
            raise PaymentProviderError(
                "checkout.session.create",
                getattr(exc, "user_message", None) or str(exc),
                getattr(exc, "http_status", None),
            ) from exc

        client_secret = getattr(session, "client_secret", None)
        if request.mode == "embedded" and not client_secret:
            raise PaymentProviderError(
                "checkout.session.create", "Stripe session did not return client_secret."
            )
        logger.info(
            "stripe_checkout_session_created",
            extra={"order_id": request.order_id, "session_id": session.id, "mode": request.mode},
        )
        return CheckoutLink(
            session_id=session.id,
            url=getattr(session, "url", None),
            client_secret=client_secret,
            live=True,
        )

    def retrieve_session(self, session_id: str) -> ProviderSession:
        target = (session_id or "").strip()
        if not target:
            raise PaymentProviderError("checkout.session.retrieve", "Missing session id.", 400)
        try:
            session = stripe.checkout.Session.retrieve(target, api_key=self._api_key())
        except stripe.StripeError as exc:
            raise PaymentProviderError(
                "checkout.session.retrieve",
                getattr(exc, "user_message", None) or str(exc),
                getattr(exc, "http_status", None),
            ) from exc
        return provider_session_from_payload(session, fallback_id=target)
