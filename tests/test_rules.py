import pytest

from app.core.catalog import Addon, Tier
from app.core.rules import (
    FORCED_CONSULTATION_NOTICE,
    STARTER_UPGRADE_REASON,
    ReadinessChecks,
    get_addon_availability,
    sanitize_addons_for_tier,
    selection_errors,
    validate_addon_conflicts,
    validate_buyer_identity,
    validate_package_step,
    validate_payment_step,
    validate_readiness_step,
    validate_required_items,
)


@pytest.mark.parametrize("addon", [Addon.BOOKING_SETUP_ASSISTANCE, Addon.ANALYTICS_DEEP_SETUP])
def test_starter_locks_growth_addons(addon):
    availability = get_addon_availability(Tier.STARTER, addon)

    assert availability.enabled is False
    assert availability.reason == STARTER_UPGRADE_REASON
    assert get_addon_availability(Tier.GROWTH, addon).enabled is True


def test_sanitize_addons_for_tier_keeps_order():
    kept, removed = sanitize_addons_for_tier(
        Tier.STARTER,
        [Addon.HOSTING_HELP, Addon.ANALYTICS_DEEP_SETUP, Addon.BRAND_POLISH],
    )

    assert kept == [Addon.HOSTING_HELP, Addon.BRAND_POLISH]
    assert removed == [Addon.ANALYTICS_DEEP_SETUP]


def test_conflicting_addons_are_rejected():
    result = validate_addon_conflicts([Addon.BOOKING_SETUP_ASSISTANCE, Addon.STRATEGY_CALL])

    assert result.valid is False
    assert result.errors == ("Booking Readiness Setup cannot be combined with Free 20-Min Strategy Call.",)
    assert validate_addon_conflicts([Addon.STRATEGY_CALL]).valid is True


def test_selection_errors_report_eligibility_before_conflicts():
    errors = selection_errors(Tier.STARTER, [Addon.BOOKING_SETUP_ASSISTANCE, Addon.STRATEGY_CALL])

    assert errors[0] == "Add-on booking_setup_assistance is not available for tier starter."
    assert len(errors) == 2
    assert selection_errors(Tier.GROWTH, [Addon.BOOKING_SETUP_ASSISTANCE]) == []


@pytest.mark.parametrize(
    ("mode", "booking_url", "embed_url", "valid"),
    [
        ("contact_only", "", "", True),
        ("external_link", "", "", False),
        ("external_link", "cal.com/ward", "", False),
        ("external_link", "https://cal.com/ward", "", True),
        ("iframe", "", "", False),
        ("iframe", "", "ftp://cal.com/embed", False),
        ("iframe", "", "https://cal.com/embed", True),
    ],
)
def test_package_step_booking_urls(mode, booking_url, embed_url, valid):
    assert validate_package_step(mode, booking_url, embed_url).valid is valid


def test_ready_now_requires_full_checklist():
    partial = ReadinessChecks(identity=True, photos=True)

    blocked = validate_readiness_step("ready_now", partial)
    assert blocked.valid is False
    assert blocked.notices == (FORCED_CONSULTATION_NOTICE,)
    assert validate_readiness_step("not_ready", partial).valid is True
    assert validate_readiness_step("ready_now", ReadinessChecks(True, True, True)).valid is True


def test_required_items_lists_missing_labels():
    result = validate_required_items("ready_now", ReadinessChecks(identity=True))

    assert result.valid is False
    assert result.missing_items == (
        "I have at least 6 photos.",
        "I have a booking method (link or contact-only).",
    )
    assert validate_required_items("not_ready", ReadinessChecks()).valid is True


def test_payment_step_requires_checkout():
    assert validate_payment_step(False).valid is False
    assert validate_payment_step(True).valid is True


@pytest.mark.parametrize(
    ("name", "email", "fields"),
    [
        ("", "", {"name", "email"}),
        ("Dana", "not-an-email", {"email"}),
        ("  ", "dana@example.com", {"name"}),
        ("Dana", "dana@example.com", set()),
    ],
)
def test_buyer_identity_field_errors(name, email, fields):
    result = validate_buyer_identity(name, email)

    assert set(result.field_errors) == fields
    assert result.valid is (not fields)
