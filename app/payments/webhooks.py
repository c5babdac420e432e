from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import stripe

from app.core.config import Settings
from app.payments.base import ProviderSession, provider_session_from_payload

logger = logging.getLogger(__name__)

CAL_SIGNATURE_HEADERS = ("x-cal-signature-256", "cal-signature-256", "x-cal-signature")


class WebhookSignatureError(Exception):
    pass


class WebhookSecretMissingError(WebhookSignatureError):
    pass


class WebhookSignatureHeaderMissingError(WebhookSignatureError):
    pass


class WebhookSignatureMismatchError(WebhookSignatureError):
    pass


class WebhookPayloadError(ValueError):
    pass


@dataclass(frozen=True)
class StripeEvent:
    id: str
    type: str
    session: ProviderSession | None


def _lowered(headers: Mapping[str, str]) -> dict[str, str]:
    return {key.lower(): value for key, value in headers.items()}


def _parse_json(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise WebhookPayloadError("Webhook payload is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook payload must be a JSON object")
    return payload


def verify_stripe_event(raw_body: bytes, headers: Mapping[str, str], settings: Settings) -> StripeEvent:
    secret = (settings.stripe_webhook_secret or "").strip()
    if not secret:
        logger.warning("stripe_webhook_secret_missing")
        raise WebhookSecretMissingError("Missing STRIPE_WEBHOOK_SECRET.")
    signature = _lowered(headers).get("stripe-signature", "").strip()
    if not signature:
        raise WebhookSignatureHeaderMissingError("Missing stripe-signature header.")
    payload_text = raw_body.decode("utf-8", errors="replace")
    try:
        stripe.WebhookSignature.verify_header(
            payload_text,
            signature,
            secret,
            tolerance=settings.stripe_webhook_tolerance_seconds,
        )
    except stripe.SignatureVerificationError as exc:
        raise WebhookSignatureMismatchError("Invalid webhook signature.") from exc

    payload = _parse_json(raw_body)
    event_type = str(payload.get("type") or "")
    session = None
    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if event_type.startswith("checkout.session.") and isinstance(obj, dict):
        session = provider_session_from_payload(obj)
    return StripeEvent(id=str(payload.get("id") or ""), type=event_type, session=session)


def verify_cal_signature(raw_body: bytes, headers: Mapping[str, str], secret: str | None) -> dict[str, Any]:
    """Checks the optional Cal.com HMAC; an unset secret skips verification."""
    if secret:
        lowered = _lowered(headers)
        signature = next((lowered[key] for key in CAL_SIGNATURE_HEADERS if lowered.get(key)), "")
        if not signature:
            raise WebhookSignatureHeaderMissingError("Missing Cal webhook signature header.")
        provided = signature.strip()
        if provided.lower().startswith("sha256="):
            provided = provided[len("sha256="):]
        expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(provided.lower(), expected):
            raise WebhookSignatureMismatchError("Invalid Cal webhook signature.")
    return _parse_json(raw_body)
