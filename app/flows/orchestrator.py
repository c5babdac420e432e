from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from app.core.catalog import Addon, Tier, addon_labels, tier_label
from app.core.rules import validate_buyer_identity
from app.flows.api_client import CheckoutApiClient, CheckoutApiError
from app.flows.checkout_state_machine import (
    FAILURE_STATES,
    CheckoutAction,
    CheckoutFlowContext,
    CheckoutInteraction,
    reduce,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutForm:
    name: str
    email: str
    tier: Tier
    addons: tuple[Addon, ...] = ()


@dataclass
class DrawerSession:
    """Everything one purchase drawer remembers between user actions."""

    context: CheckoutFlowContext = field(default_factory=CheckoutFlowContext)
    form: CheckoutForm | None = None
    order_id: str = ""
    order_uuid: str = ""
    session_id: str = ""
    client_secret: str = ""
    warning: str = ""
    field_errors: dict[str, str] = field(default_factory=dict)
    verification: dict[str, Any] = field(default_factory=dict)
    drawer_open: bool = False


class CheckoutOrchestrator:
    """Drives create order, create checkout session and verify, in that order.

    The flow context is only ever changed through the reducer.
    """

    def __init__(
        self,
        api: CheckoutApiClient,
        navigate: Callable[[str], None] | None = None,
        ui_mode: str = "redirect",
    ) -> None:
        self._api = api
        self._navigate = navigate
        self._ui_mode = ui_mode
        self.state = DrawerSession()

    @property
    def context(self) -> CheckoutFlowContext:
        return self.state.context

    def dispatch(self, action: CheckoutAction) -> CheckoutFlowContext:
        self.state.context = reduce(self.state.context, action)
        return self.state.context

    def open_drawer(self) -> CheckoutFlowContext:
        self.state.drawer_open = True
        return self.dispatch(CheckoutAction("OPEN_DRAWER"))

    def start_new_purchase(self) -> CheckoutFlowContext:
        self.state = DrawerSession()
        return self.dispatch(CheckoutAction("RESET"))

    def mark_interaction(self, interaction: CheckoutInteraction) -> CheckoutFlowContext:
        return self.dispatch(CheckoutAction("MARK_INTERACTION", interaction=interaction))

    def _fail_verification(self, message: str) -> CheckoutFlowContext:
        self.state.drawer_open = True
        return self.dispatch(CheckoutAction("VERIFICATION_ERROR", error_message=message))

    def pay_deposit(self, form: CheckoutForm) -> CheckoutFlowContext:
        if self.context.transition_locked:
            logger.info("pay_deposit_ignored_locked", extra={"state": self.context.primary_state})
            return self.context

        identity = validate_buyer_identity(form.name, form.email)
        self.state.field_errors = dict(identity.field_errors)
        if not identity.valid:
            return self.context

        self.state.form = form
        if self.context.primary_state != "selecting":
            self.open_drawer()
        self.dispatch(CheckoutAction("START_CHECKOUT"))

        if not self.state.order_id:
            try:
                created = self._api.create_order(form.tier, form.addons, form.email)
            except CheckoutApiError as exc:
                self.state.order_id = self.state.order_uuid = ""
                return self._fail_verification(f"Could not create order: {exc}")
            self.state.order_id = str(created.get("order_id") or "")
            self.state.order_uuid = str(created.get("order_uuid") or "")

        try:
            checkout = self._api.create_checkout(
                form.tier,
                form.addons,
                form.email,
                self.state.order_id,
                self.state.order_uuid,
                ui_mode=self._ui_mode,
            )
        except CheckoutApiError as exc:
            return self._fail_verification(str(exc))

        session_id = str(checkout.get("sessionId") or "")
        if not session_id:
            return self._fail_verification("Checkout session was not created.")
        self.state.session_id = session_id
        self.state.warning = str(checkout.get("warning") or "")

        if checkout.get("liveCheckout"):
            self.dispatch(CheckoutAction("REDIRECT_TO_STRIPE"))
            self.state.client_secret = str(checkout.get("clientSecret") or "")
            url = checkout.get("url")
            if url and self._navigate is not None:
                self.state.drawer_open = False
                self._navigate(str(url))
            return self.context

        self.dispatch(CheckoutAction("START_RETURN_CONFIRM"))
        return self._verify()

    def resume_from_return(self, session_id: str) -> CheckoutFlowContext:
        self.state.session_id = session_id.strip()
        if not self.state.session_id:
            return self.context
        self.dispatch(CheckoutAction("START_RETURN_CONFIRM"))
        return self._verify()

    def retry_verification(self) -> CheckoutFlowContext:
        """Re-runs only the verify step for the stored session; never recreates order or session."""
        if self.context.primary_state not in FAILURE_STATES:
            return self.context
        if not self.state.session_id:
            return self.open_drawer()
        self.dispatch(CheckoutAction("RETRY_VERIFICATION"))
        return self._verify()

    def _verify(self) -> CheckoutFlowContext:
        try:
            payload = self._api.verify(self.state.session_id)
        except CheckoutApiError as exc:
            return self._fail_verification(str(exc))

        self.state.verification = payload
        if not payload.get("paid"):
            self.state.drawer_open = True
            message = str(payload.get("error") or f"Payment status: {payload.get('status') or 'unknown'}.")
            return self.dispatch(CheckoutAction("PAYMENT_FAILED", error_message=message))

        order_id = str(payload.get("orderId") or self.state.order_id)
        self.state.order_id = order_id
        self.state.order_uuid = str(payload.get("orderUuid") or self.state.order_uuid)
        self.state.drawer_open = True
        self.dispatch(CheckoutAction("PAYMENT_CONFIRMED", order_id=order_id))
        if payload.get("emailDispatched") or payload.get("emailDeduped"):
            self.mark_interaction("email_sent_shown")
        return self.context

    def resend_confirmation_email(self, booking_url: str) -> dict[str, Any]:
        """Forced resend of the order-confirmed bundle from the success drawer."""
        payload = self.state.verification
        if self.context.primary_state != "payment_confirmed" or not payload:
            raise CheckoutApiError("Payment is not confirmed yet.")
        tier = Tier(payload["tierId"]) if payload.get("tierId") else None
        addons = [Addon(value) for value in payload.get("addonIds") or []]
        result = self._api.resend_order_email(
            {
                "orderId": self.state.order_id,
                "customerEmail": payload.get("customerEmail") or (self.state.form.email if self.state.form else ""),
                "customerName": self.state.form.name if self.state.form else "",
                "summary": {
                    "tierLabel": tier_label(tier),
                    "addOnLabels": addon_labels(addons),
                    "deposit": payload.get("deposit"),
                    "remaining": payload.get("remaining"),
                },
                "bookingUrl": booking_url,
                "stripeSessionId": self.state.session_id,
                "force": True,
            }
        )
        self.mark_interaction("resend_clicked")
        return result
