from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from app.core.config import Settings, settings as default_settings
from app.db.models import WebhookSource
from app.db.session import get_session
from app.services.notifications import BookingConfirmedInput, BundleResult, NotificationService
from app.services.order_store import OrderStore
from app.services.webhook_events import claim_webhook_event, webhook_event_seen

logger = logging.getLogger(__name__)

BOOKING_EVENTS = frozenset({"BOOKING_CREATED", "booking.created", "booking_confirmed", "booking.confirmed"})


class BookingReferenceError(ValueError):
    pass


@dataclass(frozen=True)
class BookingEvent:
    event_type: str
    event_id: str
    order_id: str
    order_uuid: str
    customer_email: str
    customer_name: str
    start_time: str
    upload_url: str


@dataclass(frozen=True)
class BookingOutcome:
    ignored: bool = False
    deduped: bool = False
    order_ref: str = ""
    order_uuid: str = ""
    event_id: str = ""
    sent: BundleResult | None = None

    def as_dict(self) -> dict[str, Any]:
        if self.ignored:
            return {"ok": True, "ignored": True, "reason": "Unsupported event type."}
        payload: dict[str, Any] = {
            "ok": True,
            "deduped": self.deduped,
            "orderId": self.order_ref,
            "eventId": self.event_id,
        }
        if self.sent is not None:
            payload["sent"] = self.sent.as_dict()["sent"]
        if self.order_uuid:
            payload["orderUuid"] = self.order_uuid
        return payload


def _text(value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value.strip() if isinstance(value, str) else ""


def _obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first(value: Any) -> dict[str, Any]:
    return _obj(value[0]) if isinstance(value, list) and value else {}


def _pick(sources: list[dict[str, Any]], *keys: str) -> str:
    for source in sources:
        for key in keys:
            found = _text(source.get(key))
            if found:
                return found
    return ""


def format_meeting(start: str) -> tuple[str, str]:
    """("Feb 19, 2026", "3:30 PM") in UTC, or ("TBD", "TBD") when the start is unusable."""
    if not start:
        return "TBD", "TBD"
    try:
        moment = datetime.fromisoformat(start.replace("Z", "+00:00"))
    except ValueError:
        return "TBD", "TBD"
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    hour = moment.hour % 12 or 12
    meridiem = "AM" if moment.hour < 12 else "PM"
    return f"{moment:%b} {moment.day}, {moment.year}", f"{hour}:{moment:%M} {meridiem}"


def parse_booking_event(payload: dict[str, Any], settings: Settings | None = None) -> BookingEvent:
    settings = settings or default_settings
    event_type = _pick([payload], "triggerEvent", "eventType", "event", "type")
    data = _obj(payload.get("data")) or _obj(payload.get("payload"))
    metadata = _obj(data.get("metadata"))
    custom_inputs = _obj(data.get("customInputs"))
    root_metadata = _obj(payload.get("metadata"))
    reference_sources = [metadata, custom_inputs, data, root_metadata, payload]

    attendee = _first(data.get("attendees"))
    root_attendee = _first(payload.get("attendees"))
    person_sources = [attendee, data, root_attendee, payload]

    start_time = _pick([data], "startTime", "start") or _text(payload.get("startTime"))
    event_id = (
        _pick([data], "id", "uid")
        or _text(_first(data.get("references")).get("uid"))
        or _text(payload.get("id"))
        or f"{event_type}:{_text(data.get('startTime')) or 'unknown-start'}"
    )
    return BookingEvent(
        event_type=event_type,
        event_id=event_id,
        order_id=_pick(reference_sources, "orderId", "order_id"),
        order_uuid=_pick(reference_sources, "order_uuid", "orderUuid"),
        customer_email=_pick(person_sources, "email"),
        customer_name=_pick(person_sources, "name"),
        start_time=start_time,
        upload_url=_pick([metadata], "uploadUrl", "upload_url") or settings.secure_upload_url or "#",
    )


def _order_id_for_uuid(order_uuid: str) -> str:
    try:
        with get_session() as session:
            order = OrderStore(session).find_order_by_uuid(order_uuid)
            return order.order_id if order else ""
    except Exception as exc:  # noqa: BLE001 - the uuid still identifies the booking
        logger.warning("booking_order_lookup_failed", extra={"order_uuid": order_uuid, "error": str(exc)})
        return ""


def process_booking_event(
    payload: dict[str, Any],
    notifier: NotificationService | None = None,
    settings: Settings | None = None,
) -> BookingOutcome:
    """Booking-confirmed emails for a Cal.com webhook, once per event id and order reference.

    The dedup key is recorded only after a successful send, so failed deliveries are retried.
    """
    settings = settings or default_settings
    event = parse_booking_event(payload, settings)
    if event.event_type not in BOOKING_EVENTS:
        logger.info("cal_webhook_ignored", extra={"event_type": event.event_type or "missing"})
        return BookingOutcome(ignored=True)

    order_id = event.order_id
    if not order_id and event.order_uuid:
        order_id = _order_id_for_uuid(event.order_uuid)
    order_ref = order_id or event.order_uuid
    if not order_ref or not event.customer_email:
        raise BookingReferenceError(
            "Missing required booking reference fields: order_id/order_uuid and customerEmail."
        )

    dedup_key = f"{event.event_id}:{order_ref}"
    if webhook_event_seen(WebhookSource.CAL, dedup_key):
        logger.info("cal_webhook_deduped", extra={"key": dedup_key})
        return BookingOutcome(deduped=True, order_ref=order_ref, event_id=event.event_id)

    meeting_date, meeting_time = format_meeting(event.start_time)
    notifier = notifier or NotificationService(settings=settings)
    result = notifier.send_booking_confirmed_bundle(
        BookingConfirmedInput(
            order_id=order_ref,
            customer_email=event.customer_email,
            customer_name=event.customer_name,
            meeting_date=meeting_date,
            meeting_time=meeting_time,
            upload_url=event.upload_url,
            calendar_event_id=event.event_id,
        )
    )
    claim_webhook_event(WebhookSource.CAL, dedup_key, event.event_type)
    logger.info("cal_booking_confirmed", extra={"order_ref": order_ref, "event_id": event.event_id})
    return BookingOutcome(
        order_ref=order_ref,
        order_uuid=event.order_uuid,
        event_id=event.event_id,
        sent=result,
    )
