from __future__ import annotations

import hashlib
import logging

from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder

from app.api.responses import error_response
from app.core.config import settings
from app.core.monitoring import send_monitoring_event
from app.db.models import WebhookSource
from app.payments.webhooks import (
    WebhookPayloadError,
    WebhookSecretMissingError,
    WebhookSignatureError,
    verify_cal_signature,
    verify_stripe_event,
)
from app.services.booking import BookingReferenceError, process_booking_event
from app.services.reconciliation import reconcile_checkout_completed
from app.services.webhook_events import claim_webhook_event, release_webhook_event


router = APIRouter(tags=["webhooks"])
logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


def _payload_fingerprint(raw_body: bytes) -> str:
    if not raw_body:
        return "empty"
    return hashlib.sha256(raw_body).hexdigest()[:12]


@router.post("/api/stripe/webhook")
async def handle_stripe_webhook(request: Request):
    raw_body = await request.body()
    try:
        event = verify_stripe_event(raw_body, request.headers, settings)
    except WebhookSecretMissingError as exc:
        return error_response(503, str(exc))
    except WebhookSignatureError as exc:
        logger.warning(
            "stripe_webhook_signature_invalid",
            extra={"error": str(exc), "payload_fingerprint": _payload_fingerprint(raw_body)},
        )
        return error_response(400, str(exc))
    except WebhookPayloadError as exc:
        return error_response(400, str(exc))

    event_key = event.id or _payload_fingerprint(raw_body)
    if not claim_webhook_event(WebhookSource.STRIPE, event_key, event.type):
        logger.info("stripe_webhook_deduped", extra={"event_id": event_key, "event_type": event.type})
        return {"received": True, "deduped": True}

    if event.type != CHECKOUT_COMPLETED or event.session is None:
        logger.info("stripe_webhook_ignored", extra={"event_id": event_key, "event_type": event.type})
        return {"received": True}

    try:
        result = reconcile_checkout_completed(event.session)
    except Exception as exc:  # noqa: BLE001 - provider retries the delivery after a 500
        release_webhook_event(WebhookSource.STRIPE, event_key)
        logger.exception(
            "stripe_webhook_processing_failed",
            extra={"event_id": event_key, "session_id": event.session.id},
        )
        await send_monitoring_event(
            "stripe_webhook_processing_failed",
            {"event_id": event_key, "session_id": event.session.id, "error": str(exc)},
        )
        return error_response(500, "Webhook processing failed.")

    logger.info(
        "stripe_webhook_processed",
        extra={
            "event_id": event_key,
            "order_id": result.order.order_id if result.order else None,
            "email_dispatched": result.email.dispatched,
        },
    )
    return {"received": True}


@router.post("/api/cal/webhook")
async def handle_cal_webhook(request: Request):
    raw_body = await request.body()
    try:
        payload = verify_cal_signature(raw_body, request.headers, (settings.cal_webhook_secret or "").strip())
    except WebhookSignatureError as exc:
        logger.warning("cal_webhook_signature_invalid", extra={"error": str(exc)})
        return error_response(401, "Invalid webhook signature.")
    except WebhookPayloadError as exc:
        return error_response(400, str(exc))

    try:
        outcome = process_booking_event(payload)
    except BookingReferenceError as exc:
        return error_response(400, str(exc))
    except Exception as exc:  # noqa: BLE001 - Cal.com retries failed deliveries
        logger.warning("cal_webhook_send_failed", extra={"error": str(exc)})
        return error_response(502, f"Booking email send failed: {exc}")
    return jsonable_encoder(outcome.as_dict())
