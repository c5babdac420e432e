import unittest
from unittest.mock import patch

import httpx
from fastapi.testclient import TestClient
from sqlalchemy import select

from app.core.catalog import Addon, Tier
from app.core.rate_limit import reset_rate_limits
from app.db.models import Order, OrderStatus
from app.flows.api_client import CheckoutApiClient, CheckoutApiError
from app.flows.orchestrator import CheckoutForm, CheckoutOrchestrator
from app.main import create_app
from tests.db_support import DatabaseTestCase, FakeNotifier, RecordingEmailClient, recording_notification_service

FORM = CheckoutForm(
    name="Dana Reyes",
    email="dana@example.com",
    tier=Tier.GROWTH,
    addons=(Addon.ADVANCED_EMAIL_STYLING,),
)


class PlaceholderCheckoutFlowTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        reset_rate_limits()
        self.addCleanup(reset_rate_limits)
        self.verify_notifier = FakeNotifier()
        self.route_notifier = FakeNotifier()
        for target, notifier in (
            ("app.services.checkout.NotificationService", self.verify_notifier),
            ("app.api.routes.email.NotificationService", self.route_notifier),
        ):
            patcher = patch(target, return_value=notifier)
            patcher.start()
            self.addCleanup(patcher.stop)
        self.api = CheckoutApiClient(http_client=TestClient(create_app()))
        self.orchestrator = CheckoutOrchestrator(self.api)

    def test_pay_deposit_confirms_order_and_sends_one_email(self) -> None:
        self.orchestrator.open_drawer()

        context = self.orchestrator.pay_deposit(FORM)

        self.assertEqual(context.primary_state, "payment_confirmed")
        self.assertFalse(context.transition_locked)
        self.assertIn("email_sent_shown", context.interactions)
        self.assertTrue(context.order_id.startswith("DF-"))
        verification = self.orchestrator.state.verification
        self.assertEqual(verification["deposit"], 335.0)
        self.assertEqual(verification["remaining"], 334.0)
        self.assertEqual(len(self.verify_notifier.order_confirmed), 1)
        with self.SessionLocal() as session:
            order = session.scalar(select(Order).where(Order.order_id == context.order_id))
        self.assertEqual(order.status, OrderStatus.PAID)
        self.assertEqual(order.stripe_session_id, self.orchestrator.state.session_id)
        self.assertIsNotNone(order.email_sent_at)

    def test_return_page_reload_is_deduped(self) -> None:
        self.orchestrator.pay_deposit(FORM)
        session_id = self.orchestrator.state.session_id

        reloaded = CheckoutOrchestrator(self.api)
        context = reloaded.resume_from_return(session_id)

        self.assertEqual(context.primary_state, "payment_confirmed")
        self.assertTrue(reloaded.state.verification["emailDeduped"])
        self.assertEqual(len(self.verify_notifier.order_confirmed), 1)

    def test_resend_forces_bundle(self) -> None:
        self.orchestrator.pay_deposit(FORM)

        result = self.orchestrator.resend_confirmation_email("https://cal.com/wardstudio/strategy")

        self.assertTrue(result["ok"])
        data, force = self.route_notifier.order_confirmed[0]
        self.assertTrue(force)
        self.assertEqual(data.summary.tier_label, "Growth")
        self.assertEqual(data.summary.addon_labels, ("Advanced Email Styling",))
        self.assertEqual(str(data.summary.deposit), "335.0")
        self.assertIn("resend_clicked", self.orchestrator.context.interactions)

    def test_invalid_identity_never_calls_api(self) -> None:
        self.orchestrator.open_drawer()

        context = self.orchestrator.pay_deposit(CheckoutForm(name=" ", email="nope", tier=Tier.STARTER))

        self.assertEqual(context.primary_state, "selecting")
        self.assertEqual(
            self.orchestrator.state.field_errors,
            {
                "name": "Customer name is required before checkout.",
                "email": "Customer email must be a valid email address.",
            },
        )
        with self.SessionLocal() as session:
            self.assertEqual(session.query(Order).count(), 0)

    def test_ineligible_addon_surfaces_as_verification_error(self) -> None:
        context = self.orchestrator.pay_deposit(
            CheckoutForm(name="Dana", email="dana@example.com", tier=Tier.STARTER, addons=(Addon.ANALYTICS_DEEP_SETUP,))
        )

        self.assertEqual(context.primary_state, "verification_error")
        self.assertIn("Could not create order", context.error_message)
        self.assertFalse(context.transition_locked)


def _failing_client(handler) -> CheckoutApiClient:
    return CheckoutApiClient(http_client=httpx.Client(base_url="http://checkout.test", transport=httpx.MockTransport(handler)))


class ApiClientErrorTests(unittest.TestCase):
    def test_timeout_is_transport_error(self) -> None:
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with self.assertRaises(CheckoutApiError) as ctx:
            _failing_client(handler).verify("cs_test_1")

        self.assertTrue(ctx.exception.transport)
        self.assertEqual(str(ctx.exception), "Request to /api/checkout/verify timed out.")

    def test_non_json_body_is_transport_error(self) -> None:
        client = _failing_client(lambda request: httpx.Response(502, text="<html>Bad gateway</html>"))

        with self.assertRaises(CheckoutApiError) as ctx:
            client.verify("cs_test_1")

        self.assertTrue(ctx.exception.transport)
        self.assertEqual(ctx.exception.status_code, 502)

    def test_error_body_message_is_kept(self) -> None:
        client = _failing_client(lambda request: httpx.Response(404, json={"error": "Checkout session not found."}))

        with self.assertRaises(CheckoutApiError) as ctx:
            client.verify("cs_test_1")

        self.assertFalse(ctx.exception.transport)
        self.assertEqual(str(ctx.exception), "Checkout session not found.")

    def test_verify_timeout_is_retryable(self) -> None:
        calls = []

        def handler(request):
            calls.append(request.url.path)
            if len(calls) == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"paid": True, "orderId": "DF-2026-0219-AB12", "status": "paid"})

        orchestrator = CheckoutOrchestrator(_failing_client(handler))

        failed = orchestrator.resume_from_return("cs_test_1")
        retried = orchestrator.retry_verification()

        self.assertEqual(failed.primary_state, "verification_error")
        self.assertEqual(retried.primary_state, "payment_confirmed")
        self.assertEqual(retried.order_id, "DF-2026-0219-AB12")
        self.assertEqual(calls, ["/api/checkout/verify", "/api/checkout/verify"])


class OrderConfirmedEmailRouteTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        reset_rate_limits()
        self.addCleanup(reset_rate_limits)
        self.client = TestClient(create_app())

    def _body(self, **overrides) -> dict:
        body = {
            "orderId": "DF-2026-0219-AB12",
            "customerEmail": "dana@example.com",
            "summary": {"tierLabel": "Growth", "addOnLabels": ["Advanced Email Styling"], "deposit": 335, "remaining": 334},
            "bookingUrl": "https://cal.com/wardstudio/strategy",
        }
        body.update(overrides)
        return body

    def test_sends_bundle(self) -> None:
        notifier = FakeNotifier()
        with patch("app.api.routes.email.NotificationService", return_value=notifier):
            response = self.client.post("/api/email/order-confirmed", json=self._body())

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "ok": True,
                "orderId": "DF-2026-0219-AB12",
                "deduped": False,
                "sent": {"client": True, "internal": True},
            },
        )
        self.assertFalse(notifier.order_confirmed[0][1])

    def test_missing_fields(self) -> None:
        for body in (
            self._body(orderId=""),
            self._body(customerEmail="not-an-email"),
            self._body(summary={"tierLabel": "Growth", "deposit": -1, "remaining": 0}),
            self._body(bookingUrl=None),
        ):
            response = self.client.post("/api/email/order-confirmed", json=body)
            self.assertEqual(response.status_code, 400)
            self.assertEqual(
                response.json(), {"error": "Missing required fields: orderId, customerEmail, summary, bookingUrl."}
            )

    def test_provider_failure_is_502(self) -> None:
        with patch("app.api.routes.email.NotificationService", return_value=FakeNotifier(fail=True)):
            response = self.client.post("/api/email/order-confirmed", json=self._body())

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json(), {"error": "Email send failed: email provider down"})

    def test_forged_force_is_ignored_and_deduped(self) -> None:
        recorder = RecordingEmailClient()
        body = self._body(
            orderId="DF-FORGED-0001", stripeSessionId="cs_forged", customerEmail="victim@example.com", force=True
        )
        with patch("app.api.routes.email.NotificationService", return_value=recording_notification_service(recorder)):
            first = self.client.post("/api/email/order-confirmed", json=body)
            second = self.client.post("/api/email/order-confirmed", json=body)

        self.assertFalse(first.json()["deduped"])
        self.assertTrue(second.json()["deduped"])
        self.assertEqual(len(recorder.to("ops@wardstudio.com")), 1)
        self.assertEqual(len(recorder.to("victim@example.com")), 1)

    def test_force_is_honored_for_paid_order_with_matching_session(self) -> None:
        with self.SessionLocal() as session:
            session.add(
                Order(
                    order_id="DF-2026-0219-AB12",
                    status=OrderStatus.PAID,
                    tier_id=Tier.GROWTH,
                    customer_email="dana@example.com",
                    stripe_session_id="cs_test_paid",
                )
            )
            session.commit()
        notifier = FakeNotifier()
        with patch("app.api.routes.email.NotificationService", return_value=notifier):
            self.client.post("/api/email/order-confirmed", json=self._body(stripeSessionId="cs_other", force=True))
            self.client.post("/api/email/order-confirmed", json=self._body(stripeSessionId="cs_test_paid", force=True))

        self.assertEqual([force for _, force in notifier.order_confirmed], [False, True])

    def test_non_http_booking_url_is_rejected(self) -> None:
        notifier = FakeNotifier()
        with patch("app.api.routes.email.NotificationService", return_value=notifier):
            response = self.client.post(
                "/api/email/order-confirmed", json=self._body(bookingUrl="javascript:alert(1)")
            )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "bookingUrl must be a valid http or https URL."})
        self.assertEqual(notifier.order_confirmed, [])

    def test_rate_limit_returns_429(self) -> None:
        notifier = FakeNotifier()
        with patch("app.api.routes.email.NotificationService", return_value=notifier), patch(
            "app.core.rate_limit.settings.email_rate_limit", 2
        ):
            statuses = [
                self.client.post("/api/email/order-confirmed", json=self._body()).status_code for _ in range(3)
            ]

        self.assertEqual(statuses, [200, 200, 429])
        self.assertEqual(len(notifier.order_confirmed), 2)
