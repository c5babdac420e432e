from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from app.db.models import WebhookSource
from app.db.session import get_session
from app.services.order_store import OrderStore

logger = logging.getLogger(__name__)


def webhook_event_seen(source: WebhookSource, event_key: str) -> bool:
    with get_session() as session:
        return OrderStore(session).has_webhook_event(source, event_key)


def claim_webhook_event(source: WebhookSource, event_key: str, event_type: str | None = None) -> bool:
    """Records the event in its own transaction; False when another delivery already did."""
    try:
        with get_session() as session:
            OrderStore(session).record_webhook_event(source, event_key, event_type)
    except IntegrityError:
        logger.info("webhook_event_duplicate", extra={"source": source.value, "event_key": event_key})
        return False
    return True


def release_webhook_event(source: WebhookSource, event_key: str) -> None:
    with get_session() as session:
        OrderStore(session).release_webhook_event(source, event_key)
