from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Literal, Mapping
from urllib.parse import urlparse

from app.core.catalog import ADDON_ITEMS, CONFLICT_PAIRS, Addon, Tier

BookingMode = Literal["external_link", "iframe", "contact_only"]
ReadinessPath = Literal["ready_now", "not_ready"]

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

STARTER_UPGRADE_REASON = "Requires Growth or Pro Launch tier."
FORCED_CONSULTATION_NOTICE = "Readiness is incomplete. Complete the checklist or switch to Not ready."

READINESS_CHECKLIST: dict[str, str] = {
    "identity": "I have my logo or business name finalized.",
    "photos": "I have at least 6 photos.",
    "booking_method": "I have a booking method (link or contact-only).",
}

_STARTER_LOCKED_ADDONS = frozenset({Addon.BOOKING_SETUP_ASSISTANCE, Addon.ANALYTICS_DEEP_SETUP})


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: tuple[str, ...] = ()
    notices: tuple[str, ...] = ()
    missing_items: tuple[str, ...] = ()
    field_errors: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AddonAvailability:
    enabled: bool
    reason: str | None = None


@dataclass(frozen=True)
class ReadinessChecks:
    identity: bool = False
    photos: bool = False
    booking_method: bool = False

    def completed(self) -> int:
        return sum((self.identity, self.photos, self.booking_method))


def _result(
    errors: Iterable[str] = (),
    notices: Iterable[str] = (),
    **extra,
) -> ValidationResult:
    errors = tuple(errors)
    return ValidationResult(valid=not errors, errors=errors, notices=tuple(notices), **extra)


def is_http_url(value: str) -> bool:
    parsed = urlparse((value or "").strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match((value or "").strip()))


def get_addon_availability(tier: Tier, addon: Addon) -> AddonAvailability:
    if tier is Tier.STARTER and addon in _STARTER_LOCKED_ADDONS:
        return AddonAvailability(enabled=False, reason=STARTER_UPGRADE_REASON)
    return AddonAvailability(enabled=True)


def sanitize_addons_for_tier(tier: Tier, addons: Iterable[Addon]) -> tuple[list[Addon], list[Addon]]:
    """Splits a selection into (kept, removed) for the given tier, preserving order."""
    kept: list[Addon] = []
    removed: list[Addon] = []
    for addon in addons:
        if get_addon_availability(tier, addon).enabled:
            kept.append(addon)
        else:
            removed.append(addon)
    return kept, removed


def validate_package_step(
    booking_mode: BookingMode,
    booking_url: str = "",
    booking_embed_url: str = "",
) -> ValidationResult:
    errors: list[str] = []
    if booking_mode == "external_link":
        if not booking_url.strip():
            errors.append("External booking mode requires a booking URL.")
        elif not is_http_url(booking_url):
            errors.append("External booking URL must be a valid http or https URL.")
    elif booking_mode == "iframe":
        if not booking_embed_url.strip():
            errors.append("Iframe booking mode requires an embed URL.")
        elif not is_http_url(booking_embed_url):
            errors.append("Iframe embed URL must be a valid http or https URL.")
    return _result(errors)


def validate_readiness_step(
    readiness_path: ReadinessPath,
    checks: ReadinessChecks,
    forced_consultation_notice: str = FORCED_CONSULTATION_NOTICE,
) -> ValidationResult:
    if readiness_path == "ready_now" and checks.completed() < len(READINESS_CHECKLIST):
        return _result(
            ["Complete all readiness checklist items before continuing on Ready now."],
            [forced_consultation_notice],
        )
    return _result()


def validate_required_items(
    readiness_path: ReadinessPath,
    checks: ReadinessChecks,
    checklist: Mapping[str, str] = READINESS_CHECKLIST,
) -> ValidationResult:
    missing = [label for key, label in checklist.items() if not getattr(checks, key, False)]
    errors = ["Required readiness items are still missing."] if readiness_path == "ready_now" and missing else []
    return _result(errors, missing_items=tuple(missing))


def validate_addon_conflicts(
    addons: Iterable[Addon],
    conflict_pairs: Iterable[tuple[Addon, Addon]] = CONFLICT_PAIRS,
) -> ValidationResult:
    selected = set(addons)
    errors = [
        f"{ADDON_ITEMS[left].label} cannot be combined with {ADDON_ITEMS[right].label}."
        for left, right in conflict_pairs
        if left in selected and right in selected
    ]
    return _result(errors)


def validate_payment_step(checkout_passed: bool) -> ValidationResult:
    if not checkout_passed:
        return _result(["Stripe checkout must be completed before finishing."])
    return _result()


def validate_buyer_identity(name: str, email: str) -> ValidationResult:
    field_errors: dict[str, str] = {}
    if not (name or "").strip():
        field_errors["name"] = "Customer name is required before checkout."
    if not (email or "").strip():
        field_errors["email"] = "Customer email is required before checkout."
    elif not is_valid_email(email):
        field_errors["email"] = "Customer email must be a valid email address."
    return _result(field_errors.values(), field_errors=field_errors)


def selection_errors(tier: Tier, addons: Iterable[Addon]) -> list[str]:
    """Server-side eligibility check shared by order and checkout creation."""
    addons = list(addons)
    errors = [
        f"Add-on {addon.value} is not available for tier {tier.value}."
        for addon in addons
        if not get_addon_availability(tier, addon).enabled
    ]
    errors.extend(validate_addon_conflicts(addons).errors)
    return errors
