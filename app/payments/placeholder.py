from __future__ import annotations

import logging
import uuid

from app.payments.base import (
    CheckoutLink,
    CheckoutRequest,
    PaymentProvider,
    PaymentProviderError,
    ProviderSession,
)

logger = logging.getLogger(__name__)


def build_placeholder_session_id() -> str:
    return f"cs_test_{uuid.uuid4().hex[:24]}"


class PlaceholderCheckoutProvider(PaymentProvider):
    """Checkout without a payment provider: sessions are minted locally and count as paid.

    Session state lives in the checkout_sessions mirror, so verification goes through
    the local record instead of retrieve_session.
    """

    live = False

    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutLink:
        session_id = build_placeholder_session_id()
        logger.info(
            "placeholder_checkout_session_created",
            extra={"order_id": request.order_id, "session_id": session_id, "mode": request.mode},
        )
        url = request.success_url.replace("{CHECKOUT_SESSION_ID}", session_id)
        return CheckoutLink(session_id=session_id, url=url, live=False)

    def retrieve_session(self, session_id: str) -> ProviderSession:
        raise PaymentProviderError(
            "checkout.session.retrieve", "Placeholder sessions are only stored locally.", 404
        )
