"""Onboarding config payload, copy-ready summary sentence and handoff checklist."""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, field, replace
from decimal import Decimal
from typing import Any

from app.core.catalog import CALL_REQUIRED_ADDONS, Addon, Tier, coerce_addon_ids
from app.core.pricing import format_amount
from app.core.rules import BookingMode

PROJECT_EMAIL_DOMAIN = "projects.wardstudio.com"

_SEND_NOW = (
    "Copy + submit your config (safe)",
    "Business + service details",
    "Booking preference and URL",
    "Legal links and owner notification email",
)
_UPLOAD_FILES = (
    "Logo file (PNG/SVG)",
    "6-12 photos",
    "Brand guide PDF (optional)",
)
_CALL_RULES = (
    "Send the config now, then we'll handle secure setup during your call.",
    "Copy + submit your config (safe)",
    "Upload logo/photos",
    "During the call we'll do collaborator invites (no passwords)",
    "Please don't email API keys or passwords. We'll never ask for them by email.",
)
_SELF_SERVE_RULES = (
    "You can send everything now.",
    "Copy + submit your config",
    "Upload your logo/photos",
    "You're done.",
)


@dataclass(frozen=True)
class SafeConfig:
    business_name: str
    contact_email: str
    service_list_and_prices: str
    booking_mode: BookingMode
    contact_phone: str = ""
    city_service_area: str = ""
    hours: str = ""
    social_links: tuple[str, ...] = ()
    theme_choice: str = ""
    brand_colors_hex: tuple[str, ...] = ()
    booking_link: str = ""
    booking_embed_url: str = ""
    owner_notification_email: str = ""
    legal_terms_url: str = ""
    legal_privacy_url: str = ""

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "SafeConfig":
        def text(key: str) -> str:
            value = data.get(key)
            return value.strip() if isinstance(value, str) else ""

        def items(key: str) -> tuple[str, ...]:
            value = data.get(key)
            if not isinstance(value, (list, tuple)):
                return ()
            return tuple(item.strip() for item in value if isinstance(item, str) and item.strip())

        mode = text("booking_mode")
        return cls(
            business_name=text("business_name"),
            contact_email=text("contact_email"),
            service_list_and_prices=text("service_list_and_prices"),
            booking_mode=mode if mode in {"external_link", "iframe", "contact_only"} else "contact_only",
            contact_phone=text("contact_phone"),
            city_service_area=text("city_service_area"),
            hours=text("hours"),
            social_links=items("social_links"),
            theme_choice=text("theme_choice"),
            brand_colors_hex=items("brand_colors_hex"),
            booking_link=text("booking_link"),
            booking_embed_url=text("booking_embed_url"),
            owner_notification_email=text("owner_notification_email"),
            legal_terms_url=text("legal_terms_url"),
            legal_privacy_url=text("legal_privacy_url"),
        )


@dataclass(frozen=True)
class CheckoutSelection:
    tier: Tier
    addons: tuple[Addon, ...]
    price_total: Decimal
    deposit_amount: Decimal
    remaining_balance: Decimal
    order_id: str | None = None


@dataclass(frozen=True)
class HandoffChecklist:
    send_now: list[str]
    upload_files: list[str]
    during_call: list[str]
    call_required: bool
    rules_text: str


@dataclass(frozen=True)
class ConfigGeneratorOutput:
    config_object: dict[str, Any]
    config_json: str
    config_sentence: str
    handoff_checklist: HandoffChecklist
    project_email: str = field(default="")


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")


def _flatten(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def build_project_email(business_name: str, order_id: str | None) -> str:
    business_slug = slugify(business_name) or "detailflow"
    order_slug = slugify(order_id or "pending-order")
    return f"{business_slug}.{order_slug}@{PROJECT_EMAIL_DOMAIN}"


def build_handoff_checklist(safe: SafeConfig, selection: CheckoutSelection) -> HandoffChecklist:
    addons = set(selection.addons)
    during_call: list[str] = []
    if safe.booking_mode == "iframe" or Addon.BOOKING_SETUP_ASSISTANCE in addons:
        during_call.append("Invite Ward to Cal.com team (if booking setup)")
    if Addon.HOSTING_HELP in addons:
        during_call.append("Invite Ward to Vercel project (if managed/deployment setup)")
    if selection.tier is Tier.PRO_LAUNCH:
        during_call.append("Stripe connect and webhook setup (if payments)")

    send_now = list(_SEND_NOW)
    if safe.booking_mode == "iframe":
        send_now.append("Fallback booking link in case the embed fails to load")

    call_required = (
        selection.tier is Tier.PRO_LAUNCH
        or safe.booking_mode == "iframe"
        or bool(addons & CALL_REQUIRED_ADDONS)
        or bool(during_call)
    )
    return HandoffChecklist(
        send_now=send_now,
        upload_files=list(_UPLOAD_FILES),
        during_call=during_call if call_required else [],
        call_required=call_required,
        rules_text="\n".join(_CALL_RULES if call_required else _SELF_SERVE_RULES),
    )


def build_config_sentence(safe: SafeConfig, selection: CheckoutSelection, project_email: str) -> str:
    parts: list[str] = []
    subject = f"for {safe.business_name}" if safe.business_name else ""
    if selection.order_id:
        parts.append(" ".join(filter(None, (f"Order {selection.order_id}", subject))))
    elif subject:
        parts.append(f"Order {subject}")
    parts.append(f"project email {project_email}")
    parts.append(f"tier {selection.tier.value}")
    if selection.addons:
        parts.append(f"add-ons {', '.join(addon.value for addon in selection.addons)}")
    parts.append(f"booking mode {safe.booking_mode}")
    parts.append(f"total {format_amount(selection.price_total)}")
    parts.append(f"deposit {format_amount(selection.deposit_amount)}")
    parts.append(f"remaining {format_amount(selection.remaining_balance)}")

    optional = (
        ("contact email", safe.contact_email),
        ("contact phone", safe.contact_phone),
        ("service area", safe.city_service_area),
        ("services and prices", _flatten(safe.service_list_and_prices)),
        ("hours", _flatten(safe.hours)),
        ("social links", " | ".join(safe.social_links)),
        ("theme", safe.theme_choice),
        ("brand colors", ", ".join(safe.brand_colors_hex)),
        ("booking link", safe.booking_link if safe.booking_mode == "external_link" else ""),
        ("booking embed", safe.booking_embed_url if safe.booking_mode == "iframe" else ""),
        ("owner notification email", safe.owner_notification_email),
        ("terms URL", safe.legal_terms_url),
        ("privacy URL", safe.legal_privacy_url),
    )
    parts.extend(f"{label} {value}" for label, value in optional if value)
    return "; ".join(parts) + "."


def generate_config_and_handoff(safe: SafeConfig, selection: CheckoutSelection) -> ConfigGeneratorOutput:
    selection = replace(selection, addons=tuple(coerce_addon_ids([addon.value for addon in selection.addons])))
    checklist = build_handoff_checklist(safe, selection)
    project_email = build_project_email(safe.business_name, selection.order_id)

    config_object: dict[str, Any] = {
        "project": {"order_id": selection.order_id or "", "email": project_email},
        "business": {
            "name": safe.business_name,
            "contact_email": safe.contact_email,
            "contact_phone": safe.contact_phone,
            "city_service_area": safe.city_service_area,
            "hours": safe.hours,
            "social_links": list(safe.social_links),
        },
        "services": {"service_list_and_prices": safe.service_list_and_prices},
        "branding": {
            "theme_choice": safe.theme_choice,
            "brand_colors_hex": list(safe.brand_colors_hex),
        },
        "booking": {
            "mode": safe.booking_mode,
            "link": safe.booking_link if safe.booking_mode == "external_link" else "",
            "embed_url": safe.booking_embed_url if safe.booking_mode == "iframe" else "",
        },
        "legal": {"terms_url": safe.legal_terms_url, "privacy_url": safe.legal_privacy_url},
        "owner_notifications": {"email": safe.owner_notification_email},
        "package": {
            "tier_id": selection.tier.value,
            "addon_ids": [addon.value for addon in selection.addons],
            "price_total": float(selection.price_total),
            "deposit_amount": float(selection.deposit_amount),
            "remaining_balance": float(selection.remaining_balance),
            "order_id": selection.order_id or "",
        },
        "handoff": asdict(checklist),
    }

    return ConfigGeneratorOutput(
        config_object=config_object,
        config_json=json.dumps(config_object, indent=2, ensure_ascii=False),
        config_sentence=build_config_sentence(safe, selection, project_email),
        handoff_checklist=checklist,
        project_email=project_email,
    )
