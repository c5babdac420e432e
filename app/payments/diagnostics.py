from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Literal

from app.core.config import Settings

DiagnosticStatus = Literal["valid", "missing", "placeholder", "invalid"]
LiveMode = Literal["true", "false", "auto"]

_PLACEHOLDER_MARKERS = ("xxxx", "your_", "replace_me", "fake")


@dataclass(frozen=True)
class KeyDiagnostic:
    key: str
    status: DiagnosticStatus
    required: bool
    description: str
    fix: str


@dataclass(frozen=True)
class StripeDiagnostics:
    ok: bool
    live_mode: LiveMode
    allow_placeholder: bool
    live_checkout_enabled: bool
    checks: list[KeyDiagnostic]

    def as_dict(self) -> dict:
        return {
            "ok": self.ok,
            "liveMode": self.live_mode,
            "allowPlaceholder": self.allow_placeholder,
            "liveCheckoutEnabled": self.live_checkout_enabled,
            "checks": [asdict(check) for check in self.checks],
        }


def classify_key(value: str | None, prefixes: tuple[str, ...]) -> DiagnosticStatus:
    cleaned = (value or "").strip()
    if not cleaned:
        return "missing"
    lowered = cleaned.lower()
    if any(marker in lowered for marker in _PLACEHOLDER_MARKERS):
        return "placeholder"
    if not cleaned.startswith(prefixes):
        return "invalid"
    return "valid"


def read_live_mode(settings: Settings) -> LiveMode:
    mode = (settings.stripe_checkout_live_mode or "").strip().lower()
    if mode in {"true", "false"}:
        return mode
    return "auto"


def get_stripe_diagnostics(settings: Settings) -> StripeDiagnostics:
    """Non-secret view of the Stripe configuration: which keys are missing, malformed or placeholders."""
    secret_status = classify_key(settings.stripe_secret_key, ("sk_test_", "sk_live_"))
    checks = [
        KeyDiagnostic(
            key="STRIPE_SECRET_KEY",
            status=secret_status,
            required=True,
            description="Server secret key used for checkout/session retrieval.",
            fix="Set STRIPE_SECRET_KEY to a real sk_test_... or sk_live_... key.",
        ),
        KeyDiagnostic(
            key="STRIPE_PUBLISHABLE_KEY",
            status=classify_key(settings.stripe_publishable_key, ("pk_test_", "pk_live_")),
            required=True,
            description="Client publishable key used for embedded checkout mounting.",
            fix="Set STRIPE_PUBLISHABLE_KEY to a real pk_test_... or pk_live_... key.",
        ),
        KeyDiagnostic(
            key="STRIPE_WEBHOOK_SECRET",
            status=classify_key(settings.stripe_webhook_secret, ("whsec_",)),
            required=False,
            description="Webhook signing secret for checkout.session.completed verification.",
            fix="Set STRIPE_WEBHOOK_SECRET to a real whsec_... value when the webhook is enabled.",
        ),
    ]
    live_mode = read_live_mode(settings)
    return StripeDiagnostics(
        ok=not any(check.required and check.status != "valid" for check in checks),
        live_mode=live_mode,
        allow_placeholder=settings.stripe_checkout_allow_placeholder,
        live_checkout_enabled=live_mode in {"true", "auto"} and secret_status == "valid",
        checks=checks,
    )
