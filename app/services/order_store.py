from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models import Order, ProcessedWebhookEvent, WebhookSource

logger = logging.getLogger(__name__)

# Columns a caller may patch; anything else is a programming error.
PATCHABLE_FIELDS = frozenset(
    {"status", "tier_id", "addon_ids", "customer_email", "stripe_session_id", "email_sent_at"}
)


class DuplicateOrderIdError(Exception):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order id already exists: {order_id}")
        self.order_id = order_id


def _check_patch(patch: dict[str, Any]) -> None:
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported order fields: {', '.join(sorted(unknown))}")


class OrderStore:
    """Order-oriented persistence contract over one SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def insert_order(self, order: Order) -> Order:
        self.session.add(order)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateOrderIdError(order.order_id) from exc
        return order

    def find_order_by_order_id(self, order_id: str | None) -> Order | None:
        if not order_id:
            return None
        return self.session.scalar(select(Order).where(Order.order_id == order_id))

    def find_order_by_uuid(self, order_uuid: str | None) -> Order | None:
        if not order_uuid:
            return None
        return self.session.get(Order, order_uuid)

    def find_order_by_session_id(self, session_id: str | None) -> Order | None:
        if not session_id:
            return None
        return self.session.scalar(
            select(Order)
            .where(Order.stripe_session_id == session_id)
            .order_by(Order.created_at.desc())
            .limit(1)
        )

    def _apply(self, order: Order | None, patch: dict[str, Any]) -> list[Order]:
        if order is None:
            return []
        for key, value in patch.items():
            setattr(order, key, value)
        self.session.flush()
        return [order]

    def update_order_by_order_id(self, order_id: str, patch: dict[str, Any]) -> list[Order]:
        _check_patch(patch)
        return self._apply(self.find_order_by_order_id(order_id), patch)

    def update_order_by_uuid(self, order_uuid: str, patch: dict[str, Any]) -> list[Order]:
        _check_patch(patch)
        return self._apply(self.find_order_by_uuid(order_uuid), patch)

    def claim_email_sent(self, order_uuid: str, now: datetime | None = None) -> bool:
        """Stamps email_sent_at with a single conditional UPDATE; False when already stamped."""
        result = self.session.execute(
            update(Order)
            .where(Order.order_uuid == order_uuid, Order.email_sent_at.is_(None))
            .values(email_sent_at=now or datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def release_webhook_event(self, source: WebhookSource, event_key: str) -> None:
        self.session.execute(
            delete(ProcessedWebhookEvent).where(
                ProcessedWebhookEvent.source == source,
                ProcessedWebhookEvent.event_key == event_key,
            )
        )

    def has_webhook_event(self, source: WebhookSource, event_key: str) -> bool:
        return (
            self.session.scalar(
                select(ProcessedWebhookEvent.id).where(
                    ProcessedWebhookEvent.source == source,
                    ProcessedWebhookEvent.event_key == event_key,
                )
            )
            is not None
        )

    def record_webhook_event(self, source: WebhookSource, event_key: str, event_type: str | None = None) -> None:
        self.session.add(ProcessedWebhookEvent(source=source, event_key=event_key, event_type=event_type))
        self.session.flush()
