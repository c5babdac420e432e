from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from app.core.catalog import Addon, Tier
from app.core.config import Settings
from app.core.rate_limit import reset_rate_limits
from app.db.models import CheckoutSession, CheckoutSessionStatus, Order, OrderStatus
from app.main import create_app
from app.payments.base import (
    CheckoutLink,
    PaymentConfigurationError,
    PaymentProvider,
    PaymentProviderError,
    ProviderSession,
    provider_session_from_payload,
)
from app.payments.factory import get_payment_provider
from app.payments.placeholder import PlaceholderCheckoutProvider
from app.payments.stripe_checkout import StripeCheckoutProvider, is_stripe_session_id
from app.payments.verification import status_label
from app.services.checkout import CheckoutSessionNotFoundError, create_checkout, verify_checkout
from app.services.orders import OrderSelection, create_order
from tests.db_support import DatabaseTestCase, FakeNotifier


class _FakeStripeProvider(PaymentProvider):
    live = True

    def __init__(self, remote: ProviderSession | None = None, error: str = "") -> None:
        self.remote = remote
        self.error = error
        self.requests = []

    def create_checkout_session(self, request):
        self.requests.append(request)
        return CheckoutLink(
            session_id="cs_test_live123",
            url="https://checkout.stripe.com/c/pay/cs_test_live123",
            client_secret="cs_test_live123_secret",
            live=True,
        )

    def retrieve_session(self, session_id):
        if self.error:
            raise PaymentProviderError("checkout.session.retrieve", self.error, 404)
        return self.remote


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


SELECTION = OrderSelection(tier=Tier.GROWTH, addons=(Addon.ADVANCED_EMAIL_STYLING,), customer_email="buyer@example.com")


class CheckoutServiceTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.order = create_order(SELECTION, id_factory=lambda: "DF-2026-0219-AB12")

    def test_placeholder_checkout_mirrors_paid_session_and_backfills_order(self) -> None:
        created = create_checkout(
            SELECTION,
            order_id=self.order.order_id,
            order_uuid=self.order.order_uuid,
            provider=PlaceholderCheckoutProvider(),
            settings=_settings(),
        )

        payload = created.as_dict()
        self.assertFalse(payload["liveCheckout"])
        self.assertTrue(is_stripe_session_id(payload["sessionId"]))
        self.assertIn(payload["sessionId"], payload["url"])
        self.assertEqual(str(payload["deposit"]), "335.00")
        self.assertNotIn("warning", payload)
        with self.SessionLocal() as session:
            mirror = session.get(CheckoutSession, created.session_id)
            order = session.get(Order, self.order.order_uuid)
        self.assertEqual(mirror.status, CheckoutSessionStatus.PAID)
        self.assertEqual(order.stripe_session_id, created.session_id)

    def test_live_checkout_sends_metadata_and_deposit(self) -> None:
        provider = _FakeStripeProvider()

        created = create_checkout(
            SELECTION,
            order_id=self.order.order_id,
            order_uuid=self.order.order_uuid,
            mode="embedded",
            provider=provider,
            settings=_settings(site_url="https://wardstudio.com"),
        )

        request = provider.requests[0]
        self.assertEqual(request.metadata["order_id"], "DF-2026-0219-AB12")
        self.assertNotIn("orderId", request.metadata)
        self.assertEqual(
            provider_session_from_payload({"id": "cs_test_1", "metadata": request.metadata}).order_id,
            "DF-2026-0219-AB12",
        )
        self.assertEqual(request.metadata["order_uuid"], self.order.order_uuid)
        self.assertEqual(request.metadata["addonIds"], "advanced_email_styling")
        self.assertEqual(str(request.quote.deposit_today), "335.00")
        self.assertEqual(
            request.return_url,
            "https://wardstudio.com/products/embedded-return?session_id={CHECKOUT_SESSION_ID}",
        )
        self.assertEqual(created.client_secret, "cs_test_live123_secret")
        with self.SessionLocal() as session:
            self.assertEqual(
                session.get(CheckoutSession, "cs_test_live123").status, CheckoutSessionStatus.PENDING
            )

    def test_backfill_for_unknown_order_is_a_warning(self) -> None:
        created = create_checkout(
            SELECTION,
            order_id="DF-2026-0219-NONE",
            order_uuid=None,
            provider=PlaceholderCheckoutProvider(),
            settings=_settings(),
        )

        self.assertIn("was not found", created.as_dict()["warning"])

    def test_verify_placeholder_session_confirms_once(self) -> None:
        created = create_checkout(
            SELECTION,
            order_id=self.order.order_id,
            order_uuid=self.order.order_uuid,
            provider=PlaceholderCheckoutProvider(),
            settings=_settings(),
        )
        notifier = FakeNotifier()

        first = verify_checkout(created.session_id, notifier=notifier, settings=_settings())
        second = verify_checkout(created.session_id, notifier=notifier, settings=_settings())

        self.assertTrue(first["paid"])
        self.assertEqual(first["status"], "paid")
        self.assertEqual(first["orderId"], "DF-2026-0219-AB12")
        self.assertEqual(str(first["deposit"]), "335.00")
        self.assertEqual(str(first["remaining"]), "334.00")
        self.assertTrue(first["emailDispatched"])
        self.assertFalse(second["emailDispatched"])
        self.assertTrue(second["emailDeduped"])
        self.assertEqual(len(notifier.order_confirmed), 1)
        with self.SessionLocal() as session:
            self.assertEqual(session.get(Order, self.order.order_uuid).status, OrderStatus.PAID)

    def test_verify_skips_email_when_webhook_owns_it(self) -> None:
        created = create_checkout(
            SELECTION,
            order_id=self.order.order_id,
            order_uuid=self.order.order_uuid,
            provider=PlaceholderCheckoutProvider(),
            settings=_settings(),
        )
        notifier = FakeNotifier()

        result = verify_checkout(
            created.session_id,
            notifier=notifier,
            settings=_settings(payment_confirmation_source="webhook"),
        )

        self.assertTrue(result["paid"])
        self.assertFalse(result["emailDispatched"])
        self.assertFalse(result["emailDeduped"])
        self.assertEqual(notifier.order_confirmed, [])

    def test_verify_reports_email_failure_without_failing(self) -> None:
        created = create_checkout(
            SELECTION,
            order_id=self.order.order_id,
            order_uuid=self.order.order_uuid,
            provider=PlaceholderCheckoutProvider(),
            settings=_settings(),
        )

        result = verify_checkout(created.session_id, notifier=FakeNotifier(fail=True), settings=_settings())

        self.assertTrue(result["paid"])
        self.assertEqual(result["emailError"], "email provider down")

    def test_live_lookup_failure_falls_back_to_local_mirror(self) -> None:
        create_checkout(
            SELECTION,
            order_id=self.order.order_id,
            order_uuid=self.order.order_uuid,
            provider=_FakeStripeProvider(),
            settings=_settings(),
        )

        result = verify_checkout(
            "cs_test_live123",
            provider=_FakeStripeProvider(error="No such checkout.session"),
            notifier=FakeNotifier(),
            settings=_settings(),
        )

        self.assertFalse(result["paid"])
        self.assertEqual(result["status"], "created")
        self.assertEqual(result["stripeLookupError"], "Stripe lookup: No such checkout.session")

    def test_live_paid_session_backfills_missing_order_fields(self) -> None:
        remote = ProviderSession(
            id="cs_test_remote1",
            status="complete",
            payment_status="paid",
            amount_total_cents=33500,
            customer_email="buyer@example.com",
            order_id="DF-2026-0219-NEW1",
            tier=Tier.GROWTH,
            addons=(Addon.ADVANCED_EMAIL_STYLING,),
        )

        result = verify_checkout(
            "cs_test_remote1",
            provider=_FakeStripeProvider(remote=remote),
            notifier=FakeNotifier(),
            settings=_settings(),
        )

        self.assertTrue(result["paid"])
        self.assertTrue(result["liveCheckout"])
        with self.SessionLocal() as session:
            order = session.scalar(select(Order).where(Order.order_id == "DF-2026-0219-NEW1"))
        self.assertEqual(order.status, OrderStatus.PAID)
        self.assertIsNotNone(order.email_sent_at)

    def test_unknown_session_raises_not_found(self) -> None:
        with self.assertRaises(CheckoutSessionNotFoundError):
            verify_checkout("cs_test_missing", provider=PlaceholderCheckoutProvider(), settings=_settings())


@pytest.mark.parametrize(
    ("paid", "upstream", "expected"),
    [(True, "open", "paid"), (False, "expired", "expired"), (False, "", "pending")],
)
def test_status_label(paid, upstream, expected):
    assert status_label(paid, upstream) == expected


@pytest.mark.parametrize(
    ("overrides", "expected"),
    [
        ({}, PlaceholderCheckoutProvider),
        ({"stripe_secret_key": "sk_test_51abc"}, StripeCheckoutProvider),
        ({"stripe_secret_key": "sk_test_51abc", "stripe_checkout_live_mode": "false"}, PlaceholderCheckoutProvider),
        ({"env": "production", "stripe_checkout_allow_placeholder": True}, PlaceholderCheckoutProvider),
    ],
)
def test_provider_selection(overrides, expected):
    assert isinstance(get_payment_provider(_settings(**overrides)), expected)


@pytest.mark.parametrize(
    "overrides",
    [
        {"stripe_checkout_live_mode": "true"},
        {"stripe_checkout_live_mode": "true", "stripe_secret_key": "sk_test_xxxx"},
        {"env": "production"},
    ],
)
def test_provider_misconfiguration_raises_with_diagnostics(overrides):
    with pytest.raises(PaymentConfigurationError) as exc_info:
        get_payment_provider(_settings(**overrides))

    assert exc_info.value.diagnostics["checks"][0]["key"] == "STRIPE_SECRET_KEY"


class CheckoutRouteTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        reset_rate_limits()
        self.addCleanup(reset_rate_limits)
        self.client = TestClient(create_app())

    def _body(self, **overrides) -> dict:
        body = {
            "productId": "detailflow",
            "tierId": "growth",
            "addonIds": ["advanced_email_styling"],
            "customerEmail": "buyer@example.com",
            "orderId": "DF-2026-0219-AB12",
        }
        body.update(overrides)
        return body

    def test_create_returns_server_priced_amounts(self) -> None:
        response = self.client.post("/api/checkout/create", json=self._body(deposit=1))

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["deposit"], 335.0)
        self.assertEqual(payload["remaining"], 334.0)
        self.assertEqual(payload["amountTotal"], 669.0)
        self.assertEqual(payload["currency"], "usd")
        self.assertIn("warning", payload)

    def test_create_rejects_bad_ui_mode_and_missing_order(self) -> None:
        bad_mode = self.client.post("/api/checkout/create", json=self._body(uiMode="popup"))
        no_order = self.client.post("/api/checkout/create", json=self._body(orderId=""))

        self.assertEqual(bad_mode.status_code, 400)
        self.assertEqual(no_order.status_code, 400)
        self.assertEqual(no_order.json(), {"error": "orderId is required."})

    def test_forced_live_mode_without_key_is_503(self) -> None:
        with patch("app.payments.factory.default_settings.stripe_checkout_live_mode", "true"):
            response = self.client.post("/api/checkout/create", json=self._body())

        self.assertEqual(response.status_code, 503)
        self.assertIn("diagnostics", response.json())

    def test_provider_rejection_is_502(self) -> None:
        error = PaymentProviderError("checkout.session.create", "Invalid API Key provided", 401)
        with patch("app.api.routes.checkout.create_checkout", side_effect=error):
            response = self.client.post("/api/checkout/create", json=self._body())

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json(), {"error": "checkout.session.create failed: Invalid API Key provided"})

    def test_verify_requires_session_id(self) -> None:
        response = self.client.get("/api/checkout/verify")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Missing session_id", "paid": False})

    def test_verify_unknown_session_is_404(self) -> None:
        response = self.client.get("/api/checkout/verify", params={"session_id": "cs_test_nothing"})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["status"], "not_found")
        self.assertFalse(response.json()["paid"])
