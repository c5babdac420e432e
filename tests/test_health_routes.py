import asyncio
import unittest
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from app.api.routes.health import PROBES, ProbeDefinition, classify_probe, human_summary, probe_endpoints
from app.core.catalog import Tier
from app.core.config import Settings
from app.main import create_app
from app.payments.base import CheckoutLink, PaymentProvider, PaymentProviderError, ProviderSession
from app.payments.placeholder import PlaceholderCheckoutProvider
from app.services.checkout import create_checkout
from app.services.orders import OrderSelection
from tests.db_support import DatabaseTestCase

SESSION_STATUS = next(probe for probe in PROBES if probe.id == "stripe_session_status")
DIAGNOSTICS = next(probe for probe in PROBES if probe.id == "stripe_diagnostics")


@pytest.mark.parametrize(
    ("probe", "status", "body", "state"),
    [
        (DIAGNOSTICS, 200, {"ok": True}, "ok"),
        (DIAGNOSTICS, 200, {"ok": False}, "false"),
        (DIAGNOSTICS, 500, {"error": "boom"}, "error"),
        (SESSION_STATUS, 404, {"error": "No such checkout.session: healthcheck"}, "ok"),
        (SESSION_STATUS, 502, {"error": "No such checkout.session: healthcheck"}, "ok"),
        (SESSION_STATUS, 503, {"error": "Stripe live checkout is enabled"}, "error"),
        (ProbeDefinition("orders", "/api/orders/create", success_statuses=(405,)), 405, None, "ok"),
        (ProbeDefinition("orders", "/api/orders/create", success_statuses=(405,)), 404, None, "error"),
        (ProbeDefinition("plain", "/health"), 204, None, "ok"),
    ],
)
def test_classify_probe(probe, status, body, state):
    assert classify_probe(probe, status, body).state == state


def test_classify_probe_message_falls_back_to_status():
    result = classify_probe(ProbeDefinition("plain", "/health"), 500, "oops")

    assert result.message == "HTTP 500"
    assert result.httpStatus == 500


class ProbeEndpointsTests(DatabaseTestCase):
    def test_all_routes_mounted_in_dev(self) -> None:
        transport = httpx.ASGITransport(app=create_app())

        payload = asyncio.run(probe_endpoints("http://testserver", transport=transport))

        states = {check["id"]: check["state"] for check in payload["checks"]}
        self.assertEqual(states.pop("stripe_diagnostics"), "false")
        self.assertEqual(set(states.values()), {"ok"})
        self.assertTrue(payload["ok"])
        self.assertEqual(
            payload["summary"], {"total": 8, "ok": 7, "false": 1, "error": 0, "notResponding": 0}
        )

    def test_unreachable_origin_is_not_responding(self) -> None:
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        payload = asyncio.run(probe_endpoints("http://down.test", transport=httpx.MockTransport(handler)))

        self.assertFalse(payload["ok"])
        self.assertEqual(payload["summary"]["notResponding"], len(PROBES))
        self.assertEqual(payload["checks"][0]["message"], "Request failed to complete")
        self.assertIn("Health Check: ATTENTION NEEDED", human_summary(payload))


class HealthRouteTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client = TestClient(create_app())

    def test_liveness_and_readiness(self) -> None:
        self.assertEqual(self.client.get("/").json(), {"status": "ok", "service": "wardstudio_checkout"})
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})
        ready = self.client.get("/health/ready")
        self.assertEqual(ready.status_code, 200)
        self.assertEqual(ready.json(), {"status": "ready"})

    def test_readiness_reports_database_failure(self) -> None:
        with patch("app.api.routes.health.get_session", side_effect=RuntimeError("db down")):
            response = self.client.get("/health/ready")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["reason"], "database_unavailable: RuntimeError")

    def test_endpoints_human_format(self) -> None:
        payload = {
            "ok": True,
            "summary": {"total": 1, "ok": 1, "false": 0, "error": 0, "notResponding": 0},
            "checks": [
                {
                    "id": "checkout_verify",
                    "method": "GET",
                    "path": "/api/checkout/verify?session_id=healthcheck",
                    "state": "ok",
                    "httpStatus": 404,
                    "message": "Checkout session not found.",
                }
            ],
            "checkedAt": "2026-02-19T15:30:00+00:00",
        }
        with patch("app.api.routes.health.probe_endpoints", AsyncMock(return_value=payload)):
            human = self.client.get("/api/health/endpoints", params={"format": "human"})
            machine = self.client.get("/api/health/endpoints")

        self.assertTrue(human.text.startswith("Health Check: PASS"))
        self.assertIn(
            '- [OK] checkout_verify (GET /api/checkout/verify?session_id=healthcheck) status=404 '
            'message="Checkout session not found."',
            human.text,
        )
        self.assertEqual(machine.json(), payload)


class _LiveProvider(PaymentProvider):
    live = True

    def __init__(self, error: bool = False) -> None:
        self.error = error

    def create_checkout_session(self, request):
        return CheckoutLink(session_id="cs_test_live", live=True)

    def retrieve_session(self, session_id):
        if self.error:
            raise PaymentProviderError("checkout.session.retrieve", f"No such checkout.session: {session_id}", 404)
        return ProviderSession(
            id=session_id, status="complete", payment_status="paid", customer_email="dana@example.com"
        )


class StripeRouteTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client = TestClient(create_app())

    def test_diagnostics_never_exposes_key_values(self) -> None:
        with patch("app.api.routes.stripe.settings.stripe_secret_key", "sk_test_51supersecret"):
            response = self.client.get("/api/stripe/diagnostics")

        payload = response.json()
        self.assertEqual(payload["checks"][0], {
            "key": "STRIPE_SECRET_KEY",
            "status": "valid",
            "required": True,
            "description": "Server secret key used for checkout/session retrieval.",
            "fix": "Set STRIPE_SECRET_KEY to a real sk_test_... or sk_live_... key.",
        })
        self.assertTrue(payload["liveCheckoutEnabled"])
        self.assertFalse(payload["ok"])
        self.assertNotIn("supersecret", response.text)

    def test_session_status_requires_id(self) -> None:
        response = self.client.get("/api/stripe/session-status")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Missing session_id"})

    def test_placeholder_session_status_uses_local_mirror(self) -> None:
        created = create_checkout(
            OrderSelection(tier=Tier.STARTER, addons=(), customer_email="dana@example.com"),
            order_id="DF-2026-0219-AB12",
            order_uuid=None,
            provider=PlaceholderCheckoutProvider(),
            settings=Settings(_env_file=None),
        )

        found = self.client.get("/api/stripe/session-status", params={"session_id": created.session_id})
        missing = self.client.get("/api/stripe/session-status", params={"session_id": "cs_test_nope"})

        self.assertEqual(
            found.json(),
            {
                "status": "complete",
                "payment_status": "paid",
                "customer_email": "dana@example.com",
                "session_id": created.session_id,
            },
        )
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json(), {"error": "No such checkout.session: cs_test_nope"})

    def test_live_session_status(self) -> None:
        with patch("app.api.routes.stripe.get_payment_provider", return_value=_LiveProvider()):
            response = self.client.get("/api/stripe/session-status", params={"session_id": "cs_test_live"})

        self.assertEqual(response.json()["payment_status"], "paid")

    def test_live_lookup_failure_is_502_with_diagnostics(self) -> None:
        with patch("app.api.routes.stripe.get_payment_provider", return_value=_LiveProvider(error=True)):
            response = self.client.get("/api/stripe/session-status", params={"session_id": "cs_test_gone"})

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["error"], "No such checkout.session: cs_test_gone")
        self.assertIn("diagnostics", response.json())


if __name__ == "__main__":
    unittest.main()
