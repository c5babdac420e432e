from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from app.core.catalog import Tier, addon_labels, coerce_addon_ids, tier_label
from app.core.config import Settings, settings as default_settings
from app.core.config_generator import (
    CheckoutSelection,
    ConfigGeneratorOutput,
    HandoffChecklist,
    SafeConfig,
    generate_config_and_handoff,
)
from app.core.pricing import quote
from app.core.safe_config import parse_asset_links, sanitize_config
from app.db.models import OnboardingSubmission, Order
from app.db.session import get_session
from app.services.notifications import ConfigSubmissionInput, NotificationService
from app.services.order_store import OrderStore

logger = logging.getLogger(__name__)


class OnboardingValidationError(ValueError):
    pass


class UnknownOrderError(LookupError):
    pass


@dataclass
class OnboardingResult:
    order_id: str
    stripped_keys: list[str]
    internal_sent: bool = False
    buyer_sent: bool = False
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ok": True,
            "orderId": self.order_id,
            "emailSent": {"internal": self.internal_sent, "buyer": self.buyer_sent},
        }
        if self.warnings:
            payload["warning"] = " ".join(self.warnings)
        return payload


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def flatten_config(config: dict[str, Any]) -> dict[str, Any]:
    """Maps a generated config object back onto SafeConfig field names; flat input passes through."""
    if not isinstance(config.get("business"), dict):
        return config
    business = config.get("business") or {}
    branding = config.get("branding") if isinstance(config.get("branding"), dict) else {}
    booking = config.get("booking") if isinstance(config.get("booking"), dict) else {}
    legal = config.get("legal") if isinstance(config.get("legal"), dict) else {}
    services = config.get("services") if isinstance(config.get("services"), dict) else {}
    owner = config.get("owner_notifications") if isinstance(config.get("owner_notifications"), dict) else {}
    return {
        "business_name": business.get("name"),
        "contact_email": business.get("contact_email"),
        "contact_phone": business.get("contact_phone"),
        "city_service_area": business.get("city_service_area"),
        "hours": business.get("hours"),
        "social_links": business.get("social_links"),
        "service_list_and_prices": services.get("service_list_and_prices"),
        "theme_choice": branding.get("theme_choice"),
        "brand_colors_hex": branding.get("brand_colors_hex"),
        "booking_mode": booking.get("mode"),
        "booking_link": booking.get("link"),
        "booking_embed_url": booking.get("embed_url"),
        "legal_terms_url": legal.get("terms_url"),
        "legal_privacy_url": legal.get("privacy_url"),
        "owner_notification_email": owner.get("email"),
    }


def handoff_summary(checklist: HandoffChecklist) -> str:
    lines = [f"Call required: {'yes' if checklist.call_required else 'no'}", "Send now:"]
    lines.extend(f"- {item}" for item in checklist.send_now)
    lines.append("Upload files:")
    lines.extend(f"- {item}" for item in checklist.upload_files)
    if checklist.during_call:
        lines.append("During call:")
        lines.extend(f"- {item}" for item in checklist.during_call)
    return "\n".join(lines)


def _resolve_order(store: OrderStore, order_id: str, order_uuid: str) -> Order | None:
    return store.find_order_by_order_id(order_id) or store.find_order_by_uuid(order_uuid)


def _generate(config: dict[str, Any], order: Order) -> ConfigGeneratorOutput:
    tier = order.tier_id or Tier.STARTER
    addons = tuple(coerce_addon_ids(order.addon_ids or []))
    price = quote(tier, addons)
    return generate_config_and_handoff(
        SafeConfig.from_mapping(flatten_config(config)),
        CheckoutSelection(
            tier=tier,
            addons=addons,
            price_total=price.total,
            deposit_amount=price.deposit_today,
            remaining_balance=price.remaining_balance,
            order_id=order.order_id,
        ),
    )


def submit_onboarding(
    body: dict[str, Any],
    notifier: NotificationService | None = None,
    settings: Settings | None = None,
) -> OnboardingResult:
    """Stores the safe onboarding config for an order and forwards it by email.

    Resubmission replaces the stored payload. Email problems are reported as warnings.
    """
    settings = settings or default_settings
    order_id = _text(body.get("order_id"))
    order_uuid = _text(body.get("order_uuid"))
    if not order_id and not order_uuid:
        raise OnboardingValidationError("Missing order_id.")

    config_input = body.get("config_json")
    if config_input is None:
        config_input = {}
    if not isinstance(config_input, dict):
        raise OnboardingValidationError("config_json must be an object.")
    try:
        asset_links = parse_asset_links(body.get("asset_links"))
    except ValueError as exc:
        raise OnboardingValidationError(str(exc)) from exc

    sanitized = sanitize_config(config_input)
    if sanitized.stripped_keys:
        logger.warning("onboarding_sensitive_keys_stripped", extra={"keys": ",".join(sanitized.stripped_keys)})

    with get_session() as session:
        store = OrderStore(session)
        order = _resolve_order(store, order_id, order_uuid)
        if order is None:
            raise UnknownOrderError("Unknown order_id.")
        submission = session.query(OnboardingSubmission).filter_by(order_id=order.order_id).one_or_none()
        if submission is None:
            submission = OnboardingSubmission(order_id=order.order_id)
            session.add(submission)
        submission.config_json = sanitized.value
        submission.asset_links = asset_links
        submission.stripped_keys = sanitized.stripped_keys
        generated = _generate(sanitized.value, order)
        resolved_order_id = order.order_id
        buyer_email = order.customer_email or ""
        tier = order.tier_id
        addons = coerce_addon_ids(order.addon_ids or [])

    logger.info("onboarding_submitted", extra={"order_id": resolved_order_id, "assets": len(asset_links)})
    result = OnboardingResult(order_id=resolved_order_id, stripped_keys=sanitized.stripped_keys)
    if sanitized.warning:
        result.warnings.append(sanitized.warning)

    safe = SafeConfig.from_mapping(flatten_config(sanitized.value))
    customer_name = _text(body.get("customer_name")) or safe.business_name
    email_input = ConfigSubmissionInput(
        order_id=resolved_order_id,
        customer_name=customer_name or "Unknown",
        customer_email=buyer_email or safe.contact_email,
        package_label=tier_label(tier),
        addon_summary=", ".join(addon_labels(addons)) or "None",
        config_sentence=generated.config_sentence,
        config_json=json.dumps(sanitized.value, indent=2, ensure_ascii=False),
        handoff_summary=handoff_summary(generated.handoff_checklist),
        asset_links_text=", ".join(asset_links) or "None",
        safe_config_warning=sanitized.warning or "None",
        submitted_at=datetime.now(timezone.utc).isoformat(),
    )

    notifier = notifier or NotificationService(settings=settings)
    try:
        notifier.send_config_submission(email_input)
        result.internal_sent = True
    except Exception as exc:  # noqa: BLE001 - the submission is already stored
        logger.warning("onboarding_internal_email_failed", extra={"order_id": resolved_order_id, "error": str(exc)})
        result.warnings.append(f"Internal notification email failed: {exc}")

    if body.get("notify_buyer") is True:
        if not email_input.customer_email:
            result.warnings.append("Buyer acknowledgement skipped: no customer email on file.")
        else:
            try:
                notifier.send_config_submission_ack(email_input)
                result.buyer_sent = True
            except Exception as exc:  # noqa: BLE001 - the submission is already stored
                logger.warning(
                    "onboarding_buyer_email_failed", extra={"order_id": resolved_order_id, "error": str(exc)}
                )
                result.warnings.append(f"Buyer acknowledgement email failed: {exc}")
    return result
