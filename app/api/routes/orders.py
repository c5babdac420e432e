from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from app.api.responses import error_response, read_json_object
from app.core.rate_limit import RateLimiter
from app.services.orders import OrderIdCollisionError, OrderValidationError, create_order, validate_selection

router = APIRouter(tags=["orders"])
logger = logging.getLogger(__name__)


@router.post("/api/orders/create", dependencies=[Depends(RateLimiter("orders-create", "orders_rate_limit"))])
async def create_order_route(request: Request):
    payload = await read_json_object(request)
    if payload is None:
        return error_response(400, "Invalid JSON payload.")

    try:
        selection = validate_selection(
            payload.get("product_id"),
            payload.get("tier_id"),
            payload.get("addon_ids"),
            payload.get("customer_email"),
        )
    except OrderValidationError as exc:
        return error_response(400, str(exc))

    try:
        created = create_order(selection)
    except OrderIdCollisionError as exc:
        return error_response(500, str(exc))
    except SQLAlchemyError as exc:
        logger.error("order_create_failed", extra={"error": str(exc)})
        return error_response(500, f"Unable to create order: {exc}")

    return {"order_uuid": created.order_uuid, "order_id": created.order_id}
