from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from app.core.catalog import Addon, Tier, coerce_addon_ids, coerce_tier
from app.core.pricing import PriceQuote, format_amount

CheckoutMode = Literal["redirect", "embedded"]


class PaymentProviderError(Exception):
    """Upstream rejection, wrapped with the operation that failed."""

    def __init__(self, operation: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.provider_message = message
        self.status_code = status_code


class PaymentConfigurationError(Exception):
    def __init__(self, message: str, diagnostics: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.diagnostics = diagnostics or {}


@dataclass(frozen=True)
class CheckoutRequest:
    mode: CheckoutMode
    order_id: str
    order_uuid: str | None
    quote: PriceQuote
    customer_email: str | None
    success_url: str
    cancel_url: str
    return_url: str

    @property
    def description(self) -> str:
        return (
            f"Order {self.order_id}: deposit {format_amount(self.quote.deposit_today)} USD now, "
            f"{format_amount(self.quote.remaining_balance)} USD remaining of {format_amount(self.quote.total)} USD"
        )

    @property
    def metadata(self) -> dict[str, str]:
        metadata = {
            "order_id": self.order_id,
            "tierId": self.quote.tier.value,
            "addonIds": ",".join(addon.value for addon in self.quote.addons),
        }
        if self.order_uuid:
            metadata["order_uuid"] = self.order_uuid
        return metadata


@dataclass(frozen=True)
class CheckoutLink:
    session_id: str
    url: str | None = None
    client_secret: str | None = None
    live: bool = False


@dataclass(frozen=True)
class ProviderSession:
    id: str
    status: str
    payment_status: str
    amount_total_cents: int = 0
    currency: str = "usd"
    customer_email: str = ""
    order_uuid: str = ""
    order_id: str = ""
    tier: Tier | None = None
    addons: tuple[Addon, ...] = ()
    metadata: Mapping[str, str] = field(default_factory=dict)

    @property
    def paid(self) -> bool:
        return self.payment_status == "paid" or self.status == "complete"


def _field(source: Any, key: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(key)
    return getattr(source, key, None)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _metadata(source: Any) -> dict[str, str]:
    raw = _field(source, "metadata")
    if raw is None:
        return {}
    keys = raw.keys() if hasattr(raw, "keys") else []
    metadata = {str(key): _text(_field(raw, key)) for key in keys}
    return {key: value for key, value in metadata.items() if value}


def provider_session_from_payload(payload: Any, fallback_id: str = "") -> ProviderSession:
    """Normalizes a checkout session object or webhook JSON into a ProviderSession."""
    metadata = _metadata(payload)
    customer_email = _text(_field(_field(payload, "customer_details"), "email")) or _text(
        _field(payload, "customer_email")
    )
    amount_total = _field(payload, "amount_total")
    addon_source = metadata.get("addonIds") or metadata.get("addon_ids") or ""
    return ProviderSession(
        id=_text(_field(payload, "id")) or fallback_id,
        status=_text(_field(payload, "status")) or "unknown",
        payment_status=_text(_field(payload, "payment_status")) or "unpaid",
        amount_total_cents=amount_total if isinstance(amount_total, int) else 0,
        currency=_text(_field(payload, "currency")) or "usd",
        customer_email=customer_email,
        order_uuid=metadata.get("order_uuid") or metadata.get("orderUuid") or "",
        order_id=(
            metadata.get("order_id")
            or metadata.get("orderId")
            or _text(_field(payload, "client_reference_id"))
        ),
        tier=coerce_tier(metadata.get("tierId") or metadata.get("tier_id")),
        addons=tuple(coerce_addon_ids(addon_source)),
        metadata=metadata,
    )


class PaymentProvider(abc.ABC):
    live: bool

    @abc.abstractmethod
    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutLink:
        raise NotImplementedError

    @abc.abstractmethod
    def retrieve_session(self, session_id: str) -> ProviderSession:
        raise NotImplementedError
