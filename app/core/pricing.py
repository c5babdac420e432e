from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from app.core.catalog import ADDON_ITEMS, TIER_PLANS, Addon, Tier, parse_addon, parse_tier

_CENTS = Decimal("0.01")
_ADDON_UPFRONT_SHARE = Decimal("0.5")


@dataclass(frozen=True)
class PriceQuote:
    tier: Tier
    addons: tuple[Addon, ...]
    addon_subtotal: Decimal
    total: Decimal
    deposit_today: Decimal
    remaining_balance: Decimal

    def as_dict(self) -> dict[str, float]:
        return {
            "amountTotal": float(self.total),
            "deposit": float(self.deposit_today),
            "remaining": float(self.remaining_balance),
        }


def _money(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def _unique_addons(addons: Iterable[Addon | str]) -> list[Addon]:
    unique: list[Addon] = []
    for raw in addons:
        addon = raw if isinstance(raw, Addon) else parse_addon(raw)
        if addon not in unique:
            unique.append(addon)
    return unique


def compute_addon_subtotal(addons: Iterable[Addon | str]) -> Decimal:
    return _money(sum((ADDON_ITEMS[addon].price for addon in _unique_addons(addons)), Decimal("0")))


def compute_total(tier: Tier | str, addons: Iterable[Addon | str]) -> Decimal:
    plan = TIER_PLANS[parse_tier(tier)]
    return _money(plan.price + compute_addon_subtotal(addons))


def compute_deposit_today(tier: Tier | str, addons: Iterable[Addon | str]) -> Decimal:
    """Tier deposit plus half of the add-ons; the other half follows the tier's final payment."""
    plan = TIER_PLANS[parse_tier(tier)]
    return _money(plan.deposit + compute_addon_subtotal(addons) * _ADDON_UPFRONT_SHARE)


def compute_remaining_balance(tier: Tier | str, addons: Iterable[Addon | str]) -> Decimal:
    addons = list(addons)
    return compute_total(tier, addons) - compute_deposit_today(tier, addons)


def quote(tier: Tier | str, addons: Iterable[Addon | str]) -> PriceQuote:
    resolved_tier = parse_tier(tier)
    resolved_addons = tuple(_unique_addons(addons))
    total = compute_total(resolved_tier, resolved_addons)
    deposit = compute_deposit_today(resolved_tier, resolved_addons)
    return PriceQuote(
        tier=resolved_tier,
        addons=resolved_addons,
        addon_subtotal=compute_addon_subtotal(resolved_addons),
        total=total,
        deposit_today=deposit,
        remaining_balance=total - deposit,
    )


def to_cents(amount: Decimal) -> int:
    return max(0, int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


def format_amount(value: Decimal) -> str:
    normalized = _money(value)
    if normalized == normalized.to_integral_value():
        return str(normalized.to_integral_value())
    return str(normalized)
