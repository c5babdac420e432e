from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.orm import Session

from app.core.catalog import Addon, Tier, coerce_addon_ids, coerce_tier
from app.core.pricing import compute_total
from app.db.models import CheckoutSession, CheckoutSessionStatus, OrderStatus
from app.payments.base import PaymentProvider, PaymentProviderError
from app.payments.stripe_checkout import is_stripe_session_id
from app.services.order_store import OrderStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Verification:
    paid: bool
    status: str
    session_id: str
    order_uuid: str = ""
    order_id: str = ""
    tier: Tier | None = None
    addons: tuple[Addon, ...] = ()
    amount_total: Decimal = Decimal("0")
    currency: str = "usd"
    customer_email: str = ""


@dataclass
class VerificationOutcome:
    verification: Verification | None
    lookup_errors: list[str] = field(default_factory=list)


def status_label(paid: bool, upstream: str) -> str:
    """Status reported to the browser: "paid" wins over whatever the provider says."""
    if paid:
        return "paid"
    return upstream or "pending"


def _from_mirror(record: CheckoutSession) -> Verification:
    paid = record.status == CheckoutSessionStatus.PAID
    return Verification(
        paid=paid,
        status=record.status.value,
        session_id=record.session_id,
        order_uuid=record.order_uuid or "",
        order_id=record.order_id or "",
        tier=record.tier_id,
        addons=tuple(coerce_addon_ids(record.addon_ids or [])),
        amount_total=Decimal(str(record.total)),
        currency=record.currency,
        customer_email=record.customer_email or "",
    )


def _from_order(session: Session, session_id: str) -> Verification | None:
    order = OrderStore(session).find_order_by_session_id(session_id)
    if order is None:
        return None
    tier = coerce_tier(order.tier_id.value if order.tier_id else None)
    addons = tuple(coerce_addon_ids(order.addon_ids or []))
    return Verification(
        paid=order.status == OrderStatus.PAID,
        status=order.status.value,
        session_id=session_id,
        order_uuid=order.order_uuid,
        order_id=order.order_id,
        tier=tier,
        addons=addons,
        amount_total=compute_total(tier, addons) if tier else Decimal("0"),
        customer_email=order.customer_email or "",
    )


def _local_lookup(session: Session, session_id: str) -> Verification | None:
    record = session.get(CheckoutSession, session_id)
    if record is not None:
        return _from_mirror(record)
    return _from_order(session, session_id)


class VerificationStrategy(abc.ABC):
    live: bool

    @abc.abstractmethod
    def verify(self, session: Session, session_id: str) -> VerificationOutcome:
        raise NotImplementedError


class LiveVerificationStrategy(VerificationStrategy):
    """Provider lookup first; the local mirror only fills fields the provider left empty."""

    live = True

    def __init__(self, provider: PaymentProvider) -> None:
        self._provider = provider

    def verify(self, session: Session, session_id: str) -> VerificationOutcome:
        errors: list[str] = []
        local = session.get(CheckoutSession, session_id)
        if is_stripe_session_id(session_id):
            try:
                remote = self._provider.retrieve_session(session_id)
            except PaymentProviderError as exc:
                logger.warning(
                    "stripe_session_lookup_failed",
                    extra={"session_id": session_id, "error": exc.provider_message},
                )
                errors.append(f"Stripe lookup: {exc.provider_message}")
            else:
                amount = (
                    Decimal(remote.amount_total_cents) / 100
                    if remote.amount_total_cents > 0
                    else Decimal(str(local.total)) if local is not None else Decimal("0")
                )
                return VerificationOutcome(
                    Verification(
                        paid=remote.paid,
                        status=status_label(remote.paid, remote.status),
                        session_id=remote.id,
                        order_uuid=remote.order_uuid or (local.order_uuid if local else "") or "",
                        order_id=remote.order_id or (local.order_id if local else "") or "",
                        tier=remote.tier or (local.tier_id if local else None),
                        addons=remote.addons
                        or (tuple(coerce_addon_ids(local.addon_ids or [])) if local else ()),
                        amount_total=amount,
                        currency=remote.currency or (local.currency if local else "usd"),
                        customer_email=remote.customer_email or (local.customer_email if local else "") or "",
                    )
                )
        return VerificationOutcome(_local_lookup(session, session_id), errors)


class PlaceholderVerificationStrategy(VerificationStrategy):
    """Verification against locally minted sessions; placeholder rows are stored as paid."""

    live = False

    def verify(self, session: Session, session_id: str) -> VerificationOutcome:
        return VerificationOutcome(_local_lookup(session, session_id))


def get_verification_strategy(provider: PaymentProvider) -> VerificationStrategy:
    if provider.live:
        return LiveVerificationStrategy(provider)
    return PlaceholderVerificationStrategy()
