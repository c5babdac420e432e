from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings, settings as default_settings
from app.core.pricing import PriceQuote, quote
from app.db.models import CheckoutSession, CheckoutSessionStatus
from app.db.session import get_session
from app.payments.base import CheckoutMode, CheckoutRequest, PaymentProvider
from app.payments.factory import get_payment_provider
from app.payments.verification import Verification, get_verification_strategy, status_label
from app.services.notifications import NotificationService
from app.services.order_store import OrderStore
from app.services.orders import OrderSelection, OrderValidationError
from app.services.reconciliation import (
    CompletedCheckout,
    EmailOutcome,
    ReconciledOrder,
    confirmation_pricing,
    send_confirmation_once,
    sync_order,
)

logger = logging.getLogger(__name__)


class CheckoutSessionNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class CheckoutCreated:
    session_id: str
    url: str | None
    client_secret: str | None
    order_id: str
    order_uuid: str | None
    quote: PriceQuote
    live: bool
    warning: str = ""

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "url": self.url,
            "clientSecret": self.client_secret,
            "sessionId": self.session_id,
            "orderId": self.order_id,
            "orderUuid": self.order_uuid,
            "tierId": self.quote.tier.value,
            "addonIds": [addon.value for addon in self.quote.addons],
            "deposit": self.quote.deposit_today,
            "remaining": self.quote.remaining_balance,
            "amountTotal": self.quote.total,
            "currency": "usd",
            "liveCheckout": self.live,
        }
        if self.warning:
            payload["warning"] = self.warning
        return payload


def _site_base(settings: Settings) -> str:
    return (settings.checkout_site_url or settings.site_url).rstrip("/")


def _redirect_urls(settings: Settings) -> tuple[str, str, str]:
    base = _site_base(settings)
    success_url = settings.stripe_success_url or f"{base}/products/success?session_id={{CHECKOUT_SESSION_ID}}"
    cancel_url = settings.stripe_cancel_url or f"{base}/products?checkout=cancelled"
    return_url = f"{base}/products/embedded-return?session_id={{CHECKOUT_SESSION_ID}}"
    return success_url, cancel_url, return_url


def _backfill_session_id(order_id: str, order_uuid: str | None, session_id: str) -> str:
    """Attaches the session id to the order; failures come back as a warning."""
    try:
        with get_session() as session:
            store = OrderStore(session)
            patch = {"stripe_session_id": session_id}
            rows = (
                store.update_order_by_uuid(order_uuid, patch)
                if order_uuid
                else store.update_order_by_order_id(order_id, patch)
            )
    except SQLAlchemyError as exc:
        logger.warning(
            "checkout_session_backfill_failed",
            extra={"order_id": order_id, "session_id": session_id, "error": str(exc)},
        )
        return f"Checkout session created but could not be attached to order {order_id}: {exc}"
    if not rows:
        logger.warning("checkout_session_backfill_missing_order", extra={"order_id": order_id})
        return f"Checkout session created but order {order_id} was not found."
    return ""


def create_checkout(
    selection: OrderSelection,
    order_id: str,
    order_uuid: str | None,
    mode: CheckoutMode = "redirect",
    provider: PaymentProvider | None = None,
    settings: Settings | None = None,
) -> CheckoutCreated:
    settings = settings or default_settings
    if not order_id:
        raise OrderValidationError("orderId is required.")
    provider = provider or get_payment_provider(settings)
    price = quote(selection.tier, selection.addons)
    success_url, cancel_url, return_url = _redirect_urls(settings)

    link = provider.create_checkout_session(
        CheckoutRequest(
            mode=mode,
            order_id=order_id,
            order_uuid=order_uuid,
            quote=price,
            customer_email=selection.customer_email or None,
            success_url=success_url,
            cancel_url=cancel_url,
            return_url=return_url,
        )
    )

    now = datetime.now(timezone.utc)
    with get_session() as session:
        session.merge(
            CheckoutSession(
                session_id=link.session_id,
                order_id=order_id,
                order_uuid=order_uuid,
                tier_id=price.tier,
                addon_ids=[addon.value for addon in price.addons],
                total=price.total,
                deposit=price.deposit_today,
                remaining=price.remaining_balance,
                customer_email=selection.customer_email or None,
                status=CheckoutSessionStatus.PENDING if link.live else CheckoutSessionStatus.PAID,
                live=link.live,
                created_at=now,
                paid_at=None if link.live else now,
            )
        )

    warning = _backfill_session_id(order_id, order_uuid, link.session_id)
    logger.info(
        "checkout_created",
        extra={"order_id": order_id, "session_id": link.session_id, "live": link.live, "mode": mode},
    )
    return CheckoutCreated(
        session_id=link.session_id,
        url=link.url,
        client_secret=link.client_secret,
        order_id=order_id,
        order_uuid=order_uuid,
        quote=price,
        live=link.live,
        warning=warning,
    )


def _mark_mirror_paid(session: Session, session_id: str) -> None:
    record = session.get(CheckoutSession, session_id)
    if record is not None and record.status != CheckoutSessionStatus.PAID:
        record.status = CheckoutSessionStatus.PAID
        record.paid_at = datetime.now(timezone.utc)


def verify_checkout(
    session_id: str,
    provider: PaymentProvider | None = None,
    notifier: NotificationService | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """Server-trusted payment summary for a returning buyer.

    Lookup is layered: provider (live only), the local session mirror, then the
    orders table. The order is reconciled additively and the confirmation email
    goes out at most once unless the webhook owns it.
    """
    settings = settings or default_settings
    provider = provider or get_payment_provider(settings)
    strategy = get_verification_strategy(provider)

    with get_session() as session:
        outcome = strategy.verify(session, session_id)
    verification: Verification | None = outcome.verification
    if verification is None:
        extra = " ".join(outcome.lookup_errors)
        message = "Checkout session not found. Start checkout again."
        raise CheckoutSessionNotFoundError(f"{message} {extra}".strip())

    checkout = CompletedCheckout(
        session_id=verification.session_id,
        paid=verification.paid,
        order_uuid=verification.order_uuid,
        order_id=verification.order_id,
        tier=verification.tier,
        addons=verification.addons,
        customer_email=verification.customer_email,
        amount_total=verification.amount_total,
    )

    order: ReconciledOrder | None = None
    database_error = ""
    try:
        with get_session() as session:
            order = sync_order(session, checkout)
            if verification.paid:
                _mark_mirror_paid(session, verification.session_id)
    except SQLAlchemyError as exc:
        logger.warning("checkout_verify_sync_failed", extra={"session_id": session_id, "error": str(exc)})
        database_error = str(exc)

    tier = order.tier if order and order.tier else verification.tier
    addons = order.addons if order and order.addons else verification.addons
    customer_email = (order.customer_email if order else "") or verification.customer_email
    status = order.status.value if order else verification.status
    pricing = confirmation_pricing(tier, addons, verification.amount_total)

    email = EmailOutcome()
    if settings.webhook_owns_confirmation_email:
        email = EmailOutcome(deduped=bool(order and order.email_sent_at))
    elif verification.paid and customer_email:
        try:
            email = send_confirmation_once(
                order, checkout, notifier or NotificationService(settings=settings), settings
            )
        except Exception as exc:  # noqa: BLE001 - payment is verified even when email fails
            logger.warning("checkout_verify_email_failed", extra={"session_id": session_id, "error": str(exc)})
            email = EmailOutcome(error=str(exc) or "Order confirmation email failed.")

    payload: dict[str, Any] = {
        "paid": verification.paid,
        "status": status_label(verification.paid, status),
        "sessionId": verification.session_id,
        "orderUuid": (order.order_uuid if order else "") or verification.order_uuid or None,
        "orderId": (order.order_id if order else "") or verification.order_id or verification.session_id,
        "tierId": tier.value if tier else None,
        "addonIds": [addon.value for addon in addons],
        "deposit": pricing.deposit,
        "remaining": pricing.remaining,
        "amountTotal": pricing.total,
        "currency": verification.currency,
        "customerEmail": customer_email or None,
        "liveCheckout": strategy.live,
        "emailDispatched": email.dispatched,
        "emailDeduped": email.deduped,
        "verifiedAt": datetime.now(timezone.utc).isoformat(),
    }
    if database_error:
        payload["databaseError"] = database_error
    if outcome.lookup_errors:
        payload["stripeLookupError"] = " ".join(outcome.lookup_errors)
    if email.error:
        payload["emailError"] = email.error
    return payload
