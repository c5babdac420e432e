import hashlib
import hmac
import json
import time
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import select

from app.core.catalog import Tier
from app.db.models import Order, OrderStatus, ProcessedWebhookEvent, WebhookSource
from app.main import create_app
from tests.db_support import DatabaseTestCase, FakeNotifier, RecordingEmailClient, recording_notification_service

WEBHOOK_SECRET = "whsec_test_secret"
CAL_SECRET = "cal_test_secret"


def _stripe_event(event_id: str = "evt_1", session_id: str = "cs_test_123") -> bytes:
    return json.dumps(
        {
            "id": event_id,
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "status": "complete",
                    "payment_status": "paid",
                    "amount_total": 33500,
                    "currency": "usd",
                    "customer_details": {"email": "buyer@example.com"},
                    "metadata": {
                        "orderId": "DF-2026-0001",
                        "tierId": "growth",
                        "addonIds": "advanced_email_styling",
                    },
                }
            },
        }
    ).encode("utf-8")


def _stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class StripeWebhookRouteTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        secret_patch = patch("app.api.routes.webhooks.settings.stripe_webhook_secret", WEBHOOK_SECRET)
        secret_patch.start()
        self.addCleanup(secret_patch.stop)
        self.notifier = FakeNotifier()
        notifier_patch = patch("app.services.reconciliation.NotificationService", return_value=self.notifier)
        notifier_patch.start()
        self.addCleanup(notifier_patch.stop)
        self.client = TestClient(create_app())

        with self.SessionLocal() as session:
            session.add(
                Order(
                    order_id="DF-2026-0001",
                    status=OrderStatus.CREATED,
                    tier_id=Tier.GROWTH,
                    addon_ids=["advanced_email_styling"],
                    customer_email="buyer@example.com",
                )
            )
            session.commit()

    def _post(self, payload: bytes, signature: str | None = None):
        headers = {"content-type": "application/json"}
        headers["stripe-signature"] = signature if signature is not None else _stripe_signature(payload)
        return self.client.post("/api/stripe/webhook", content=payload, headers=headers)

    def _order(self) -> Order:
        with self.SessionLocal() as session:
            return session.scalar(select(Order).where(Order.order_id == "DF-2026-0001"))

    def test_replayed_event_sends_one_email_and_one_stamp(self) -> None:
        payload = _stripe_event()

        first = self._post(payload)
        stamped_at = self._order().email_sent_at
        second = self._post(payload)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json(), {"received": True})
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.json(), {"received": True, "deduped": True})
        self.assertEqual(len(self.notifier.order_confirmed), 1)
        order = self._order()
        self.assertEqual(order.status, OrderStatus.PAID)
        self.assertEqual(order.stripe_session_id, "cs_test_123")
        self.assertIsNotNone(stamped_at)
        self.assertEqual(order.email_sent_at, stamped_at)

    def test_new_event_for_confirmed_order_is_email_deduped(self) -> None:
        self._post(_stripe_event("evt_1"))
        response = self._post(_stripe_event("evt_2"))

        self.assertEqual(response.json(), {"received": True})
        self.assertEqual(len(self.notifier.order_confirmed), 1)

    def test_bad_signature_is_rejected(self) -> None:
        payload = _stripe_event()

        response = self._post(payload, _stripe_signature(payload, secret="whsec_wrong"))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Invalid webhook signature."})
        self.assertEqual(self.notifier.order_confirmed, [])
        self.assertEqual(self._order().status, OrderStatus.CREATED)

    def test_stale_timestamp_is_rejected(self) -> None:
        payload = _stripe_event()

        response = self._post(payload, _stripe_signature(payload, timestamp=int(time.time()) - 3600))

        self.assertEqual(response.status_code, 400)

    def test_missing_signature_header_is_rejected(self) -> None:
        response = self._post(_stripe_event(), signature="")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Missing stripe-signature header."})

    def test_missing_secret_returns_503(self) -> None:
        with patch("app.api.routes.webhooks.settings.stripe_webhook_secret", None):
            response = self._post(_stripe_event())

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json(), {"error": "Missing STRIPE_WEBHOOK_SECRET."})

    def test_processing_failure_releases_event_for_retry(self) -> None:
        self.notifier.fail = True
        failed = self._post(_stripe_event())

        self.assertEqual(failed.status_code, 500)
        self.assertEqual(failed.json(), {"error": "Webhook processing failed."})
        with self.SessionLocal() as session:
            self.assertEqual(session.scalars(select(ProcessedWebhookEvent)).all(), [])

        self.notifier.fail = False
        retried = self._post(_stripe_event())
        self.assertEqual(retried.json(), {"received": True})
        self.assertEqual(len(self.notifier.order_confirmed), 1)

    def test_other_event_types_are_acknowledged(self) -> None:
        payload = json.dumps({"id": "evt_other", "type": "payment_intent.created", "data": {"object": {}}}).encode()

        response = self._post(payload)

        self.assertEqual(response.json(), {"received": True})
        self.assertEqual(self.notifier.order_confirmed, [])


def _cal_payload(event_type: str = "BOOKING_CREATED", order_id: str = "DF-2026-0001") -> dict:
    return {
        "triggerEvent": event_type,
        "payload": {
            "uid": "booking_abc",
            "startTime": "2026-02-19T15:30:00Z",
            "attendees": [{"email": "buyer@example.com", "name": "Dana"}],
            "metadata": {"orderId": order_id},
        },
    }


class StripeWebhookEmailDeliveryTests(DatabaseTestCase):
    """Webhook to rendered email, with only the provider call replaced."""

    def setUp(self) -> None:
        super().setUp()
        secret_patch = patch("app.api.routes.webhooks.settings.stripe_webhook_secret", WEBHOOK_SECRET)
        secret_patch.start()
        self.addCleanup(secret_patch.stop)
        self.recorder = RecordingEmailClient()
        notifier_patch = patch(
            "app.services.reconciliation.NotificationService",
            return_value=recording_notification_service(self.recorder),
        )
        notifier_patch.start()
        self.addCleanup(notifier_patch.stop)
        self.client = TestClient(create_app())
        with self.SessionLocal() as session:
            session.add(
                Order(
                    order_id="DF-2026-0001",
                    status=OrderStatus.CREATED,
                    tier_id=Tier.GROWTH,
                    addon_ids=["advanced_email_styling"],
                    customer_email="buyer@example.com",
                )
            )
            session.commit()

    def _post(self, payload: bytes):
        return self.client.post(
            "/api/stripe/webhook",
            content=payload,
            headers={"content-type": "application/json", "stripe-signature": _stripe_signature(payload)},
        )

    def test_completed_checkout_emails_buyer_and_team_then_stamps(self) -> None:
        first = self._post(_stripe_event("evt_1"))
        replay = self._post(_stripe_event("evt_2"))

        self.assertEqual(first.status_code, 200)
        self.assertEqual(replay.status_code, 200)
        self.assertEqual(len(self.recorder.sent), 2)
        [buyer] = self.recorder.to("buyer@example.com")
        [internal] = self.recorder.to("ops@wardstudio.com")
        self.assertEqual(buyer.subject, "DetailFlow order confirmed (DF-2026-0001)")
        self.assertIn("Hi there", buyer.html)
        self.assertIn("Advanced Email Styling", buyer.text)
        self.assertIn("$335.00", buyer.text)
        self.assertEqual(internal.subject, "New DetailFlow order (DF-2026-0001)")
        self.assertIn("buyer@example.com", internal.text)
        with self.SessionLocal() as session:
            order = session.scalar(select(Order).where(Order.order_id == "DF-2026-0001"))
        self.assertEqual(order.status, OrderStatus.PAID)
        self.assertIsNotNone(order.email_sent_at)


class CalWebhookRouteTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.notifier = FakeNotifier()
        notifier_patch = patch("app.services.booking.NotificationService", return_value=self.notifier)
        notifier_patch.start()
        self.addCleanup(notifier_patch.stop)
        self.client = TestClient(create_app())

    def _post(self, body: dict, secret: str | None = None):
        raw = json.dumps(body).encode("utf-8")
        headers = {"content-type": "application/json"}
        if secret:
            headers["x-cal-signature-256"] = hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()
        return self.client.post("/api/cal/webhook", content=raw, headers=headers)

    def test_booking_sends_bundle_once_per_event(self) -> None:
        first = self._post(_cal_payload())
        second = self._post(_cal_payload())

        self.assertEqual(first.status_code, 200)
        self.assertEqual(
            first.json(),
            {
                "ok": True,
                "deduped": False,
                "orderId": "DF-2026-0001",
                "eventId": "booking_abc",
                "sent": {"client": True, "internal": True},
            },
        )
        self.assertTrue(second.json()["deduped"])
        self.assertEqual(len(self.notifier.booking_confirmed), 1)
        sent = self.notifier.booking_confirmed[0]
        self.assertEqual((sent.meeting_date, sent.meeting_time), ("Feb 19, 2026", "3:30 PM"))
        with self.SessionLocal() as session:
            event = session.scalar(select(ProcessedWebhookEvent))
        self.assertEqual(event.source, WebhookSource.CAL)
        self.assertEqual(event.event_key, "booking_abc:DF-2026-0001")

    def test_unsupported_event_is_ignored(self) -> None:
        response = self._post(_cal_payload("BOOKING_CANCELLED"))

        self.assertEqual(response.json(), {"ok": True, "ignored": True, "reason": "Unsupported event type."})

    def test_missing_order_reference_is_400(self) -> None:
        response = self._post(_cal_payload(order_id=""))

        self.assertEqual(response.status_code, 400)

    def test_send_failure_is_502_and_not_recorded(self) -> None:
        self.notifier.fail = True

        response = self._post(_cal_payload())

        self.assertEqual(response.status_code, 502)
        self.assertTrue(response.json()["error"].startswith("Booking email send failed:"))
        with self.SessionLocal() as session:
            self.assertIsNone(session.scalar(select(ProcessedWebhookEvent)))

    def test_signature_is_checked_when_secret_is_set(self) -> None:
        with patch("app.api.routes.webhooks.settings.cal_webhook_secret", CAL_SECRET):
            rejected = self._post(_cal_payload(), secret="wrong")
            accepted = self._post(_cal_payload(), secret=CAL_SECRET)

        self.assertEqual(rejected.status_code, 401)
        self.assertEqual(accepted.status_code, 200)
