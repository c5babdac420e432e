from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Final, Iterable

PRODUCT_ID: Final = "detailflow"
ORDER_ID_PREFIX: Final = "DF"
CURRENCY: Final = "usd"


class UnknownCatalogItemError(ValueError):
    """Raised when a tier or add-on id is not part of the fixed catalog."""

    def __init__(self, kind: str, value: object) -> None:
        super().__init__(f"Invalid {kind} id: {value}")
        self.kind = kind
        self.value = value


class Tier(enum.StrEnum):
    STARTER = "starter"
    GROWTH = "growth"
    PRO_LAUNCH = "pro_launch"


class Addon(enum.StrEnum):
    ADVANCED_EMAIL_STYLING = "advanced_email_styling"
    HOSTING_HELP = "hosting_help"
    ANALYTICS_DEEP_SETUP = "analytics_deep_setup"
    CONTENT_STRUCTURING = "content_structuring"
    BRAND_POLISH = "brand_polish"
    BOOKING_SETUP_ASSISTANCE = "booking_setup_assistance"
    PHOTO_OPTIMIZATION = "photo_optimization"
    STRATEGY_CALL = "strategy_call"


class AddonGroup(enum.StrEnum):
    GENERAL = "general"
    READINESS = "readiness"


@dataclass(frozen=True)
class TierPlan:
    tier: Tier
    label: str
    price: Decimal
    deposit: Decimal
    final: Decimal
    features: tuple[str, ...]


@dataclass(frozen=True)
class AddonItem:
    addon: Addon
    label: str
    price: Decimal
    group: AddonGroup


TIER_PLANS: Final[dict[Tier, TierPlan]] = {
    Tier.STARTER: TierPlan(
        tier=Tier.STARTER,
        label="Starter",
        price=Decimal("249"),
        deposit=Decimal("125"),
        final=Decimal("124"),
        features=(
            "Template customization",
            "Color scheme",
            "Services + pricing config",
            "Contact form",
            "Basic email confirmation",
            "Self-managed hosting",
            "1 revision round",
        ),
    ),
    Tier.GROWTH: TierPlan(
        tier=Tier.GROWTH,
        label="Growth",
        price=Decimal("549"),
        deposit=Decimal("275"),
        final=Decimal("274"),
        features=(
            "Everything in Starter",
            "Booking integration (Cal or form-based)",
            "Customer + owner emails",
            "Basic SEO setup",
            "2 revision rounds",
        ),
    ),
    Tier.PRO_LAUNCH: TierPlan(
        tier=Tier.PRO_LAUNCH,
        label="Pro Launch",
        price=Decimal("899"),
        deposit=Decimal("450"),
        final=Decimal("449"),
        features=(
            "Everything in Growth",
            "Deposit collection setup (optional)",
            "Hosting guidance",
            "Domain connection help",
            "Analytics setup",
            "30-day launch support",
        ),
    ),
}

ADDON_ITEMS: Final[dict[Addon, AddonItem]] = {
    Addon.ADVANCED_EMAIL_STYLING: AddonItem(
        Addon.ADVANCED_EMAIL_STYLING, "Advanced Email Styling", Decimal("120"), AddonGroup.GENERAL
    ),
    Addon.HOSTING_HELP: AddonItem(Addon.HOSTING_HELP, "Hosting Help", Decimal("90"), AddonGroup.GENERAL),
    Addon.ANALYTICS_DEEP_SETUP: AddonItem(
        Addon.ANALYTICS_DEEP_SETUP, "Analytics Deep Setup", Decimal("100"), AddonGroup.GENERAL
    ),
    Addon.CONTENT_STRUCTURING: AddonItem(
        Addon.CONTENT_STRUCTURING, "Content Structuring", Decimal("120"), AddonGroup.READINESS
    ),
    Addon.BRAND_POLISH: AddonItem(Addon.BRAND_POLISH, "Brand Polish", Decimal("150"), AddonGroup.READINESS),
    Addon.BOOKING_SETUP_ASSISTANCE: AddonItem(
        Addon.BOOKING_SETUP_ASSISTANCE, "Booking Readiness Setup", Decimal("100"), AddonGroup.READINESS
    ),
    Addon.PHOTO_OPTIMIZATION: AddonItem(
        Addon.PHOTO_OPTIMIZATION, "Photo Optimization", Decimal("80"), AddonGroup.READINESS
    ),
    Addon.STRATEGY_CALL: AddonItem(
        Addon.STRATEGY_CALL, "Free 20-Min Strategy Call", Decimal("0"), AddonGroup.READINESS
    ),
}

CONFLICT_PAIRS: Final[tuple[tuple[Addon, Addon], ...]] = (
    (Addon.BOOKING_SETUP_ASSISTANCE, Addon.STRATEGY_CALL),
)

# Add-ons that can only be delivered during a live setup call.
CALL_REQUIRED_ADDONS: Final[frozenset[Addon]] = frozenset(
    {Addon.BOOKING_SETUP_ASSISTANCE, Addon.HOSTING_HELP}
)


def parse_tier(value: object) -> Tier:
    try:
        return Tier(str(value).strip())
    except ValueError as exc:
        raise UnknownCatalogItemError("tier", value) from exc


def parse_addon(value: object) -> Addon:
    try:
        return Addon(str(value).strip())
    except ValueError as exc:
        raise UnknownCatalogItemError("add-on", value) from exc


def parse_addon_ids(values: Iterable[object]) -> list[Addon]:
    """Strict parse preserving first-seen order and dropping duplicates and blanks."""
    addons: list[Addon] = []
    for value in values:
        if not str(value or "").strip():
            continue
        addon = parse_addon(value)
        if addon not in addons:
            addons.append(addon)
    return addons


def coerce_tier(value: object) -> Tier | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return Tier(value.strip())
    except ValueError:
        return None


def coerce_addon_ids(value: object) -> list[Addon]:
    """Lenient parse for provider metadata: list, JSON array string or CSV string.

    Unknown ids are dropped instead of raising.
    """
    raw_items: list[object]
    if isinstance(value, (list, tuple)):
        raw_items = list(value)
    elif isinstance(value, str):
        stripped = value.strip()
        raw_items = []
        if stripped.startswith("[") and stripped.endswith("]"):
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                raw_items = parsed
        if not raw_items:
            raw_items = stripped.split(",")
    else:
        return []

    addons: list[Addon] = []
    for item in raw_items:
        if not isinstance(item, str):
            continue
        try:
            addon = Addon(item.strip())
        except ValueError:
            continue
        if addon not in addons:
            addons.append(addon)
    return addons


def tier_label(tier: Tier | None) -> str:
    if tier is None:
        return "DetailFlow"
    return TIER_PLANS[tier].label


def addon_labels(addons: Iterable[Addon]) -> list[str]:
    return [ADDON_ITEMS[addon].label for addon in addons]
