from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

from app.core.catalog import (
    ORDER_ID_PREFIX,
    PRODUCT_ID,
    Addon,
    Tier,
    UnknownCatalogItemError,
    coerce_tier,
    parse_addon_ids,
)
from app.core.rules import is_valid_email, selection_errors
from app.db.models import Order, OrderStatus
from app.db.session import get_session
from app.services.order_store import DuplicateOrderIdError, OrderStore

logger = logging.getLogger(__name__)

MAX_ORDER_ID_ATTEMPTS = 3
_SUFFIX_ALPHABET = string.digits + string.ascii_uppercase


class OrderValidationError(ValueError):
    pass


class OrderIdCollisionError(RuntimeError):
    def __init__(self) -> None:
        super().__init__("Could not generate a unique order id. Please retry.")


@dataclass(frozen=True)
class OrderSelection:
    tier: Tier
    addons: tuple[Addon, ...]
    customer_email: str = ""


@dataclass(frozen=True)
class CreatedOrder:
    order_uuid: str
    order_id: str


def build_order_id(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(4))
    return f"{ORDER_ID_PREFIX}-{moment:%Y}-{moment:%m%d}-{suffix}"


def _text(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def validate_selection(
    product_id: object,
    tier_id: object,
    addon_ids: object,
    customer_email: object = "",
    *,
    tier_field: str = "tier_id",
    product_error: str = "Only detailflow orders are supported in this endpoint.",
) -> OrderSelection:
    """Catalog, eligibility and email checks; never trusts client-computed totals."""
    if _text(product_id) != PRODUCT_ID:
        raise OrderValidationError(product_error)
    tier = coerce_tier(tier_id)
    if tier is None:
        raise OrderValidationError(f"Invalid or missing {tier_field}.")

    raw_addons: Iterable[object] = addon_ids if isinstance(addon_ids, (list, tuple)) else []
    try:
        addons = parse_addon_ids(item for item in raw_addons if isinstance(item, str))
    except UnknownCatalogItemError as exc:
        raise OrderValidationError(str(exc)) from exc

    errors = selection_errors(tier, addons)
    if errors:
        raise OrderValidationError(errors[0])

    email = _text(customer_email).lower()
    if email and not is_valid_email(email):
        raise OrderValidationError("customer_email must be a valid email address.")
    return OrderSelection(tier=tier, addons=tuple(addons), customer_email=email)


def create_order(
    selection: OrderSelection,
    id_factory: Callable[[], str] = build_order_id,
    max_attempts: int = MAX_ORDER_ID_ATTEMPTS,
) -> CreatedOrder:
    """Inserts a created order, retrying with a fresh id on unique collisions."""
    for attempt in range(1, max_attempts + 1):
        order_id = id_factory()
        try:
            with get_session() as session:
                order = OrderStore(session).insert_order(
                    Order(
                        order_id=order_id,
                        status=OrderStatus.CREATED,
                        product_id=PRODUCT_ID,
                        tier_id=selection.tier,
                        addon_ids=[addon.value for addon in selection.addons],
                        customer_email=selection.customer_email or None,
                    )
                )
                created = CreatedOrder(order_uuid=order.order_uuid, order_id=order.order_id)
        except DuplicateOrderIdError:
            logger.warning("order_id_collision", extra={"order_id": order_id, "attempt": attempt})
            continue
        logger.info("order_created", extra={"order_id": created.order_id, "tier": selection.tier.value})
        return created

    logger.error("order_id_collision_exhausted", extra={"attempts": max_attempts})
    raise OrderIdCollisionError()
