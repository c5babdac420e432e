from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder

from app.api.responses import error_response, read_json_object
from app.core.rate_limit import RateLimiter
from app.core.rules import is_http_url, is_valid_email
from app.db.models import OrderStatus
from app.db.session import get_session
from app.services.notifications import NotificationService, OrderConfirmedInput, OrderSummary
from app.services.order_store import OrderStore

router = APIRouter(tags=["email"])
logger = logging.getLogger(__name__)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _amount(value: Any) -> Decimal | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() and amount >= 0 else None


def _summary(raw: Any) -> OrderSummary | None:
    if not isinstance(raw, dict):
        return None
    tier_label = _text(raw.get("tierLabel"))
    deposit = _amount(raw.get("deposit"))
    remaining = _amount(raw.get("remaining"))
    labels = raw.get("addOnLabels") or []
    if not tier_label or deposit is None or remaining is None or not isinstance(labels, list):
        return None
    return OrderSummary(
        tier_label=tier_label,
        addon_labels=tuple(_text(label) for label in labels if _text(label)),
        deposit=deposit,
        remaining=remaining,
    )


def _forced_resend_allowed(order_id: str, stripe_session_id: str) -> bool:
    """A forced resend needs a paid order on record for the same checkout session."""
    if not stripe_session_id:
        return False
    with get_session() as session:
        order = OrderStore(session).find_order_by_order_id(order_id)
        return (
            order is not None
            and order.status == OrderStatus.PAID
            and order.stripe_session_id == stripe_session_id
        )


@router.post(
    "/api/email/order-confirmed",
    dependencies=[Depends(RateLimiter("email-order-confirmed", "email_rate_limit"))],
)
async def send_order_confirmed_route(request: Request):
    payload = await read_json_object(request)
    if payload is None:
        return error_response(400, "Invalid JSON payload.")

    order_id = _text(payload.get("orderId"))
    customer_email = _text(payload.get("customerEmail"))
    booking_url = _text(payload.get("bookingUrl"))
    summary = _summary(payload.get("summary"))
    if not order_id or not booking_url or summary is None or not is_valid_email(customer_email):
        return error_response(400, "Missing required fields: orderId, customerEmail, summary, bookingUrl.")
    if not is_http_url(booking_url):
        return error_response(400, "bookingUrl must be a valid http or https URL.")

    data = OrderConfirmedInput(
        order_id=order_id,
        customer_email=customer_email,
        summary=summary,
        booking_url=booking_url,
        customer_name=_text(payload.get("customerName")),
        stripe_session_id=_text(payload.get("stripeSessionId")),
    )
    requested_force = payload.get("force") is True
    force = requested_force and _forced_resend_allowed(order_id, data.stripe_session_id)
    if requested_force and not force:
        logger.warning("order_confirmed_force_ignored", extra={"order_id": order_id})
    try:
        result = NotificationService().send_order_confirmed_bundle(data, force=force)
    except Exception as exc:  # noqa: BLE001 - reported to the caller as an upstream failure
        logger.warning("order_confirmed_email_route_failed", extra={"order_id": order_id, "error": str(exc)})
        return error_response(502, f"Email send failed: {exc}")
    return jsonable_encoder({"ok": True, "orderId": order_id, **result.as_dict()})
