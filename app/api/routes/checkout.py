from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder

from app.api.responses import error_response, read_json_object
from app.core.rate_limit import RateLimiter
from app.payments.base import PaymentConfigurationError, PaymentProviderError
from app.services.checkout import CheckoutSessionNotFoundError, create_checkout, verify_checkout
from app.services.orders import OrderValidationError, validate_selection

router = APIRouter(tags=["checkout"])
logger = logging.getLogger(__name__)


def _text(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


@router.post("/api/checkout/create", dependencies=[Depends(RateLimiter("checkout-create", "checkout_rate_limit"))])
async def create_checkout_route(request: Request):
    payload = await read_json_object(request)
    if payload is None:
        return error_response(400, "Invalid JSON payload.")

    ui_mode = _text(payload.get("uiMode")) or "redirect"
    if ui_mode not in {"redirect", "embedded"}:
        return error_response(400, "uiMode must be redirect or embedded.")

    try:
        selection = validate_selection(
            payload.get("productId"),
            payload.get("tierId"),
            payload.get("addonIds"),
            payload.get("customerEmail"),
            tier_field="tierId",
            product_error="Only detailflow checkout is supported in this route.",
        )
        created = create_checkout(
            selection,
            order_id=_text(payload.get("orderId")),
            order_uuid=_text(payload.get("orderUuid")) or None,
            mode=ui_mode,
        )
    except OrderValidationError as exc:
        return error_response(400, str(exc))
    except PaymentConfigurationError as exc:
        return error_response(503, str(exc), diagnostics=exc.diagnostics)
    except PaymentProviderError as exc:
        return error_response(502, f"{exc.operation} failed: {exc.provider_message}")

    return jsonable_encoder(created.as_dict())


@router.get("/api/checkout/verify")
async def verify_checkout_route(session_id: str = ""):
    session_id = session_id.strip()
    if not session_id:
        return error_response(400, "Missing session_id", paid=False)
    try:
        result = verify_checkout(session_id)
    except CheckoutSessionNotFoundError as exc:
        return error_response(404, str(exc), paid=False, status="not_found")
    except PaymentConfigurationError as exc:
        return error_response(503, str(exc), paid=False, diagnostics=exc.diagnostics)
    return jsonable_encoder(result)
