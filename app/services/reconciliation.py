from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from app.core.catalog import PRODUCT_ID, Addon, Tier, addon_labels, coerce_addon_ids, tier_label
from app.core.config import Settings, settings as default_settings
from app.core.pricing import compute_deposit_today, compute_remaining_balance, compute_total
from app.db.models import Order, OrderStatus
from app.db.session import get_session
from app.payments.base import ProviderSession
from app.services.notifications import NotificationService, OrderConfirmedInput, OrderSummary
from app.services.order_store import DuplicateOrderIdError, OrderStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletedCheckout:
    """Provider-side facts about one checkout session, normalized for reconciliation."""

    session_id: str
    paid: bool
    order_uuid: str = ""
    order_id: str = ""
    tier: Tier | None = None
    addons: tuple[Addon, ...] = ()
    customer_email: str = ""
    amount_total: Decimal = Decimal("0")

    @classmethod
    def from_provider_session(cls, session: ProviderSession, paid: bool | None = None) -> "CompletedCheckout":
        return cls(
            session_id=session.id,
            paid=session.paid if paid is None else paid,
            order_uuid=session.order_uuid,
            order_id=session.order_id,
            tier=session.tier,
            addons=session.addons,
            customer_email=session.customer_email,
            amount_total=Decimal(session.amount_total_cents) / 100,
        )


@dataclass(frozen=True)
class ReconciledOrder:
    order_uuid: str
    order_id: str
    status: OrderStatus
    tier: Tier | None
    addons: tuple[Addon, ...]
    customer_email: str
    email_sent_at: datetime | None

    @classmethod
    def from_row(cls, order: Order) -> "ReconciledOrder":
        return cls(
            order_uuid=order.order_uuid,
            order_id=order.order_id,
            status=order.status,
            tier=order.tier_id,
            addons=tuple(coerce_addon_ids(order.addon_ids or [])),
            customer_email=order.customer_email or "",
            email_sent_at=order.email_sent_at,
        )


@dataclass(frozen=True)
class ConfirmationPricing:
    total: Decimal
    deposit: Decimal
    remaining: Decimal


@dataclass(frozen=True)
class EmailOutcome:
    dispatched: bool = False
    deduped: bool = False
    error: str = ""


@dataclass(frozen=True)
class ReconciliationResult:
    order: ReconciledOrder | None
    email: EmailOutcome


def _resolve(store: OrderStore, checkout: CompletedCheckout) -> Order | None:
    return (
        store.find_order_by_uuid(checkout.order_uuid)
        or store.find_order_by_order_id(checkout.order_id)
        or store.find_order_by_session_id(checkout.session_id)
    )


def _insert_missing(session: Session, checkout: CompletedCheckout) -> Order | None:
    store = OrderStore(session)
    try:
        order = store.insert_order(
            Order(
                order_id=checkout.order_id,
                status=OrderStatus.PAID if checkout.paid else OrderStatus.CREATED,
                product_id=PRODUCT_ID,
                tier_id=checkout.tier or Tier.STARTER,
                addon_ids=[addon.value for addon in checkout.addons],
                customer_email=checkout.customer_email or None,
                stripe_session_id=checkout.session_id,
            )
        )
    except DuplicateOrderIdError:
        # A concurrent path inserted the same order first; only reads preceded the insert.
        session.rollback()
        return store.find_order_by_order_id(checkout.order_id)
    logger.warning(
        "order_inserted_from_checkout",
        extra={"order_id": checkout.order_id, "session_id": checkout.session_id},
    )
    return order


def sync_order(session: Session, checkout: CompletedCheckout) -> ReconciledOrder | None:
    """Resolves the order for a checkout session and applies an additive patch.

    Lookup goes uuid, then order id, then session id. A missing order is inserted
    when the session names an order id. Only empty columns are backfilled and the
    status only ever moves from created to paid.
    """
    store = OrderStore(session)
    order = _resolve(store, checkout)
    if order is None and checkout.order_id:
        order = _insert_missing(session, checkout)
    if order is None:
        logger.error(
            "checkout_order_unresolved",
            extra={"session_id": checkout.session_id, "order_id": checkout.order_id},
        )
        return None

    patch: dict = {}
    if checkout.session_id and order.stripe_session_id != checkout.session_id:
        patch["stripe_session_id"] = checkout.session_id
    if checkout.paid and order.status != OrderStatus.PAID:
        patch["status"] = OrderStatus.PAID
    if not order.customer_email and checkout.customer_email:
        patch["customer_email"] = checkout.customer_email
    if order.tier_id is None and checkout.tier is not None:
        patch["tier_id"] = checkout.tier
    if not order.addon_ids and checkout.addons:
        patch["addon_ids"] = [addon.value for addon in checkout.addons]

    if patch:
        store.update_order_by_uuid(order.order_uuid, patch)
        logger.info(
            "order_reconciled",
            extra={"order_id": order.order_id, "fields": ",".join(sorted(patch))},
        )
    return ReconciledOrder.from_row(order)


def confirmation_pricing(tier: Tier | None, addons: tuple[Addon, ...], fallback_amount: Decimal) -> ConfirmationPricing:
    """Canonical pricing; the raw paid amount is used only when the tier is unknown."""
    if tier is None:
        return ConfirmationPricing(total=fallback_amount, deposit=fallback_amount, remaining=Decimal("0.00"))
    return ConfirmationPricing(
        total=compute_total(tier, addons),
        deposit=compute_deposit_today(tier, addons),
        remaining=compute_remaining_balance(tier, addons),
    )


def send_confirmation_once(
    order: ReconciledOrder | None,
    checkout: CompletedCheckout,
    notifier: NotificationService,
    settings: Settings | None = None,
) -> EmailOutcome:
    """Order confirmation guarded by email_sent_at; the stamp is a conditional update.

    Raises BundleDeliveryError when no message went out.
    """
    settings = settings or default_settings
    if order is not None and order.email_sent_at is not None:
        return EmailOutcome(deduped=True)

    tier = order.tier if order and order.tier else checkout.tier
    addons = order.addons if order and order.addons else checkout.addons
    email = (order.customer_email if order else "") or checkout.customer_email
    if not email:
        logger.info("order_confirmation_skipped_no_email", extra={"session_id": checkout.session_id})
        return EmailOutcome()

    pricing = confirmation_pricing(tier, addons, checkout.amount_total)
    result = notifier.send_order_confirmed_bundle(
        OrderConfirmedInput(
            order_id=(order.order_id if order else "") or checkout.order_id or checkout.session_id,
            customer_email=email,
            summary=OrderSummary(
                tier_label=tier_label(tier),
                addon_labels=tuple(addon_labels(addons)),
                deposit=pricing.deposit,
                remaining=pricing.remaining,
            ),
            booking_url=settings.strategy_call_url,
            stripe_session_id=checkout.session_id,
        )
    )
    if result.dispatched and order is not None:
        with get_session() as session:
            stamped = OrderStore(session).claim_email_sent(order.order_uuid)
        logger.info("order_email_stamped", extra={"order_id": order.order_id, "stamped": stamped})
    return EmailOutcome(dispatched=result.dispatched, deduped=result.deduped)


def reconcile_checkout_completed(
    provider_session: ProviderSession,
    notifier: NotificationService | None = None,
    settings: Settings | None = None,
) -> ReconciliationResult:
    """Applies a checkout.session.completed event to the orders table and confirms by email once."""
    checkout = CompletedCheckout.from_provider_session(provider_session, paid=True)
    logger.info(
        "checkout_session_completed",
        extra={"session_id": checkout.session_id, "order_id": checkout.order_id},
    )
    with get_session() as session:
        order = sync_order(session, checkout)
    if order is None:
        return ReconciliationResult(order=None, email=EmailOutcome())

    email = send_confirmation_once(order, checkout, notifier or NotificationService(settings=settings), settings)
    return ReconciliationResult(order=order, email=email)
