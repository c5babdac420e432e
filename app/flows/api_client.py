from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx

from app.core.catalog import PRODUCT_ID, Addon, Tier

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


class CheckoutApiError(Exception):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
        transport: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}
        self.transport = transport


class CheckoutApiClient:
    """Client side of the checkout HTTP surface.

    Every call carries a timeout; timeouts, transport failures and unparsable
    bodies surface as CheckoutApiError with transport=True.
    """

    def __init__(
        self,
        base_url: str = "",
        http_client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = http_client or httpx.Client(base_url=base_url)
        self._timeout = timeout

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, timeout=self._timeout, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("checkout_api_timeout", extra={"path": path})
            raise CheckoutApiError(f"Request to {path} timed out.", transport=True) from exc
        except httpx.HTTPError as exc:
            logger.warning("checkout_api_transport_error", extra={"path": path, "error": str(exc)})
            raise CheckoutApiError(f"Request to {path} failed: {exc}", transport=True) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise CheckoutApiError(
                f"Invalid response from {path}.", response.status_code, transport=True
            ) from exc
        if not isinstance(payload, dict):
            raise CheckoutApiError(f"Invalid response from {path}.", response.status_code, transport=True)

        if response.is_error:
            message = str(payload.get("error") or payload.get("detail") or f"HTTP {response.status_code}")
            raise CheckoutApiError(message, response.status_code, payload)
        return payload

    def create_order(self, tier: Tier, addons: Iterable[Addon], customer_email: str) -> dict[str, Any]:
        return self._request(
            "POST",
            "/api/orders/create",
            json={
                "product_id": PRODUCT_ID,
                "tier_id": tier.value,
                "addon_ids": [addon.value for addon in addons],
                "customer_email": customer_email,
            },
        )

    def create_checkout(
        self,
        tier: Tier,
        addons: Iterable[Addon],
        customer_email: str,
        order_id: str,
        order_uuid: str,
        ui_mode: str = "redirect",
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            "/api/checkout/create",
            json={
                "productId": PRODUCT_ID,
                "tierId": tier.value,
                "addonIds": [addon.value for addon in addons],
                "customerEmail": customer_email,
                "orderId": order_id,
                "orderUuid": order_uuid,
                "uiMode": ui_mode,
            },
        )

    def verify(self, session_id: str) -> dict[str, Any]:
        return self._request("GET", "/api/checkout/verify", params={"session_id": session_id})

    def resend_order_email(self, body: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/api/email/order-confirmed", json=body)
