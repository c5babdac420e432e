from __future__ import annotations

import abc
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from app.core.config import Settings, settings as default_settings
from app.db.models import EmailDispatch
from app.db.session import get_session
from app.services.email import EmailClient, EmailMessage
from app.services.email_templates import format_usd, render

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderSummary:
    tier_label: str
    addon_labels: tuple[str, ...]
    deposit: Decimal
    remaining: Decimal

    @property
    def addons_text(self) -> str:
        return ", ".join(self.addon_labels) if self.addon_labels else "None"


@dataclass(frozen=True)
class OrderConfirmedInput:
    order_id: str
    customer_email: str
    summary: OrderSummary
    booking_url: str
    customer_name: str = ""
    stripe_session_id: str = ""


@dataclass(frozen=True)
class BookingConfirmedInput:
    order_id: str
    customer_email: str
    meeting_date: str
    meeting_time: str
    upload_url: str
    calendar_event_id: str
    customer_name: str = ""
    booking_provider: str = "cal"


@dataclass(frozen=True)
class ConfigSubmissionInput:
    order_id: str
    customer_name: str
    customer_email: str
    package_label: str
    addon_summary: str
    config_sentence: str
    config_json: str
    handoff_summary: str
    asset_links_text: str
    safe_config_warning: str
    submitted_at: str


@dataclass(frozen=True)
class BundleResult:
    deduped: bool
    client_sent: bool = False
    internal_sent: bool = False

    @property
    def dispatched(self) -> bool:
        return self.client_sent or self.internal_sent

    def as_dict(self) -> dict:
        return {
            "deduped": self.deduped,
            "sent": {"client": self.client_sent, "internal": self.internal_sent},
        }


class BundleDeliveryError(RuntimeError):
    """Raised when every message of a bundle failed."""


class ConfirmationDedup(abc.ABC):
    @abc.abstractmethod
    def claim(self, order_id: str) -> bool:
        """Marks the order as confirmed; False when it was already claimed."""
        raise NotImplementedError

    @abc.abstractmethod
    def release(self, order_id: str) -> None:
        raise NotImplementedError


class MemoryConfirmationDedup(ConfirmationDedup):
    def __init__(self) -> None:
        self._claimed: set[str] = set()
        self._lock = threading.Lock()

    def claim(self, order_id: str) -> bool:
        with self._lock:
            if order_id in self._claimed:
                return False
            self._claimed.add(order_id)
            return True

    def release(self, order_id: str) -> None:
        with self._lock:
            self._claimed.discard(order_id)


class DatabaseConfirmationDedup(ConfirmationDedup):
    def claim(self, order_id: str) -> bool:
        try:
            with get_session() as session:
                session.add(EmailDispatch(order_id=order_id))
                session.flush()
        except IntegrityError:
            return False
        return True

    def release(self, order_id: str) -> None:
        with get_session() as session:
            session.execute(delete(EmailDispatch).where(EmailDispatch.order_id == order_id))


_memory_dedup = MemoryConfirmationDedup()


def get_confirmation_dedup(settings: Settings | None = None) -> ConfirmationDedup:
    settings = settings or default_settings
    if settings.email_dedup_backend.strip().lower() == "memory":
        return _memory_dedup
    return DatabaseConfirmationDedup()


def _layout(settings: Settings, title: str) -> dict[str, str]:
    site_url = settings.site_url.rstrip("/")
    return {
        "title": title,
        "site_url": site_url,
        "site_host": site_url.split("://", 1)[-1],
        "support_email": settings.support_email,
        "service_email": settings.service_email,
    }


def _send_pair(
    label: str,
    order_id: str,
    client_send: Callable[[], object] | None,
    internal_send: Callable[[], object],
) -> BundleResult:
    failures: list[str] = []
    client_sent = internal_sent = False
    if client_send is not None:
        try:
            client_send()
            client_sent = True
        except Exception as exc:
            failures.append(f"client: {exc}")
    try:
        internal_send()
        internal_sent = True
    except Exception as exc:
        failures.append(f"internal: {exc}")

    if failures:
        logger.error(
            f"{label}_email_issue",
            extra={"order_id": order_id, "failures": " | ".join(failures)},
        )
    if not client_sent and not internal_sent:
        raise BundleDeliveryError(" | ".join(failures) or f"Both {label} emails failed.")
    return BundleResult(deduped=False, client_sent=client_sent, internal_sent=internal_sent)


class NotificationService:
    def __init__(
        self,
        client: EmailClient | None = None,
        dedup: ConfirmationDedup | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self._client = client or EmailClient(self._settings)
        self._dedup = dedup or get_confirmation_dedup(self._settings)

    def _internal_recipients(self) -> list[str]:
        recipients = self._settings.internal_recipients
        if not recipients:
            raise RuntimeError("Missing EMAIL_INTERNAL_TO.")
        return recipients

    def send_client_order_confirmation(self, data: OrderConfirmedInput) -> None:
        html, text = render(
            "order_client",
            **_layout(self._settings, f"Payment confirmed for {data.order_id}"),
            name=data.customer_name.strip() or "there",
            order_id=data.order_id,
            tier_label=data.summary.tier_label,
            addons=data.summary.addons_text,
            deposit=format_usd(data.summary.deposit),
            remaining=format_usd(data.summary.remaining),
            booking_url=data.booking_url,
        )
        self._client.send(
            EmailMessage.build(data.customer_email, f"DetailFlow order confirmed ({data.order_id})", html, text)
        )

    def send_internal_new_order(self, data: OrderConfirmedInput) -> None:
        html, text = render(
            "order_internal",
            **_layout(self._settings, f"New DetailFlow order {data.order_id}"),
            order_id=data.order_id,
            customer_name=data.customer_name.strip() or "Unknown",
            customer_email=data.customer_email,
            tier_label=data.summary.tier_label,
            addons=data.summary.addons_text,
            deposit=format_usd(data.summary.deposit),
            remaining=format_usd(data.summary.remaining),
            session_id=data.stripe_session_id or "n/a",
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        self._client.send(
            EmailMessage.build(self._internal_recipients(), f"New DetailFlow order ({data.order_id})", html, text)
        )

    def send_order_confirmed_bundle(self, data: OrderConfirmedInput, force: bool = False) -> BundleResult:
        """Buyer and internal confirmation, at most once per order id unless forced.

        The claim happens before any send so concurrent callers cannot both proceed.
        """
        if not force and not self._dedup.claim(data.order_id):
            logger.info("order_confirmation_deduped", extra={"order_id": data.order_id})
            return BundleResult(deduped=True)
        try:
            return _send_pair(
                "order_confirmation",
                data.order_id,
                lambda: self.send_client_order_confirmation(data),
                lambda: self.send_internal_new_order(data),
            )
        except BundleDeliveryError:
            # nothing went out, so a later retry may claim again
            if not force:
                self._dedup.release(data.order_id)
            raise

    def send_booking_confirmed_bundle(self, data: BookingConfirmedInput) -> BundleResult:
        base = {
            "order_id": data.order_id,
            "meeting_date": data.meeting_date,
            "meeting_time": data.meeting_time,
            "upload_url": data.upload_url,
        }

        def client() -> None:
            html, text = render(
                "booking_client",
                **_layout(self._settings, f"Strategy call confirmed ({data.order_id})"),
                **base,
                name=data.customer_name.strip() or "there",
            )
            self._client.send(
                EmailMessage.build(data.customer_email, f"Strategy call confirmed ({data.order_id})", html, text)
            )

        def internal() -> None:
            html, text = render(
                "booking_internal",
                **_layout(self._settings, f"Booking confirmed ({data.order_id})"),
                **base,
                customer_name=data.customer_name.strip() or "Unknown",
                customer_email=data.customer_email,
                booking_provider=data.booking_provider,
                event_id=data.calendar_event_id,
            )
            self._client.send(
                EmailMessage.build(self._internal_recipients(), f"Booking confirmed ({data.order_id})", html, text)
            )

        return _send_pair("booking_confirmation", data.order_id, client, internal)

    def _config_context(self, data: ConfigSubmissionInput) -> dict[str, str]:
        return {
            "order_id": data.order_id,
            "package_label": data.package_label,
            "addons": data.addon_summary,
            "config_sentence": data.config_sentence,
        }

    def send_config_submission(self, data: ConfigSubmissionInput) -> None:
        html, text = render(
            "config_internal",
            **_layout(self._settings, f"Config submitted ({data.order_id})"),
            **self._config_context(data),
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            asset_links=data.asset_links_text,
            submitted_at=data.submitted_at,
            safe_config_warning=data.safe_config_warning,
            config_json=data.config_json,
            handoff_summary=data.handoff_summary,
        )
        self._client.send(
            EmailMessage.build(
                self._internal_recipients(), f"DetailFlow config submitted ({data.order_id})", html, text
            )
        )

    def send_config_submission_ack(self, data: ConfigSubmissionInput) -> None:
        html, text = render(
            "config_ack",
            **_layout(self._settings, f"Configuration received ({data.order_id})"),
            **self._config_context(data),
        )
        self._client.send(
            EmailMessage.build(
                data.customer_email, f"DetailFlow configuration received ({data.order_id})", html, text
            )
        )
