import os

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "secret")

from tracker.couriers.base import OrderContext
from tracker.couriers.errors import VoucherFormatUnrecognized, VoucherRejected
from tracker.couriers.generic import GenericProvider
from tracker.couriers.mapping import (
    detect_courier_from_meta_key,
    detect_courier_from_note,
    extract_meta_vouchers,
)
from tracker.couriers.registry import (
    CourierProviderRegistry,
    build_default_registry,
)
from tracker.couriers.resolver import UNRECOGNIZED_REASON, VoucherResolver


DEFAULT_PRIORITY = ["acs", "geniki", "elta", "speedex", "generic"]


@pytest.fixture
def resolver():
    return VoucherResolver(build_default_registry(), priority=DEFAULT_PRIORITY)


def test_registry_register_get_and_last_wins():
    registry = CourierProviderRegistry()
    first = GenericProvider()
    second = GenericProvider()
    registry.register(first)
    registry.register(second)
    assert registry.get("generic") is second
    assert registry.has("generic")
    assert registry.get("nope") is None
    assert len(registry) == 1
    registry.clear()
    assert registry.all() == []


def test_registry_rejects_provider_without_id():
    class Nameless(GenericProvider):
        id = ""

    with pytest.raises(ValueError):
        CourierProviderRegistry().register(Nameless())


def test_default_registry_holds_builtin_providers_in_order():
    assert build_default_registry().ids() == DEFAULT_PRIORITY


def test_thirteen_digit_voucher_goes_to_elta(resolver):
    result = resolver.resolve("2101234567890")
    assert result.provider_id == "elta"
    assert result.valid is True
    assert result.matched_by == "detected"


def test_priority_breaks_ties_between_overlapping_formats(resolver):
    assert resolver.resolve("7412589630").provider_id == "acs"
    reordered = VoucherResolver(build_default_registry(), priority=["speedex", "acs", "generic"])
    assert reordered.resolve("7412589630").provider_id == "speedex"


def test_tenant_priority_overrides_default_and_ignores_unknown_ids(resolver):
    result = resolver.resolve("7412589630", priority=["bogus", "geniki", "acs"])
    assert result.provider_id == "geniki"
    assert resolver.priority_for(["bogus", "ELTA"]) == ["elta"]
    assert resolver.priority_for(None) == DEFAULT_PRIORITY


def test_billing_phone_is_rejected_even_when_shape_matches(resolver):
    order = OrderContext(billing_phone="6912345678")
    result = resolver.resolve("6912345678", order)
    assert result.provider_id == "acs"
    assert result.valid is False
    assert result.reason == "Looks like phone number"
    with pytest.raises(VoucherRejected) as excinfo:
        result.raise_for_rejection()
    assert excinfo.value.provider_id == "acs"


def test_generic_catches_alphanumeric_when_nothing_else_claims_it(resolver):
    result = resolver.resolve("ORDER-999")
    assert result.provider_id == "generic"
    assert result.valid is True
    assert result.normalized_voucher == "ORDER-999"


def test_unrecognized_voucher_is_a_rejection_not_generic(resolver):
    result = resolver.resolve("ab!")
    assert result.provider_id is None
    assert result.valid is False
    assert result.reason == UNRECOGNIZED_REASON
    with pytest.raises(VoucherFormatUnrecognized):
        result.raise_for_rejection()


def test_blank_voucher_is_unrecognized(resolver):
    assert resolver.resolve("   ").recognized is False


def test_no_generic_in_priority_means_no_catch_all(resolver):
    result = resolver.resolve("ORDER-999", priority=["acs", "elta"])
    assert result.provider_id is None


@pytest.mark.parametrize("claimed", ["speedex", "SPEEDEX", "obs_speedex_courier", "sent with Speedex today"])
def test_claimed_courier_beats_format_scan(resolver, claimed):
    result = resolver.resolve("7412589630", claimed=claimed)
    assert result.provider_id == "speedex"
    assert result.matched_by == "claimed"
    assert result.valid is True


def test_claimed_courier_still_validates(resolver):
    result = resolver.resolve("12345", claimed="acs")
    assert result.provider_id == "acs"
    assert result.valid is False
    assert result.reason == "Invalid ACS voucher format"


def test_unknown_claim_falls_back_to_detection(resolver):
    result = resolver.resolve("87654321", claimed="pigeon post")
    assert result.provider_id == "geniki"
    assert result.matched_by == "detected"


@pytest.mark.parametrize("claimed", ["tracking", "tracking_number", "courier", "shipment voucher"])
def test_generic_words_do_not_claim_generic(resolver, claimed):
    order = OrderContext(order_id="77", billing_phone="6912345678")
    result = resolver.resolve("6912345678", order, claimed=claimed)
    assert result.provider_id == "acs"
    assert result.matched_by == "detected"
    assert result.valid is False
    assert result.reason == "Looks like phone number"


@pytest.mark.parametrize("claimed", ["generic", "Generic"])
def test_explicit_generic_claim_is_honoured(resolver, claimed):
    result = resolver.resolve("ORDER-12345", claimed=claimed)
    assert result.provider_id == "generic"
    assert result.matched_by == "claimed"


def test_lettered_voucher_is_not_stripped_into_a_numeric_courier(resolver):
    assert resolver.registry.get("acs").looks_like("ACS 1234567891") is False
    result = resolver.resolve("ACS 1234567891")
    assert result.provider_id == "generic"
    assert result.valid is False
    assert result.reason == "Invalid generic voucher format"


def test_build_payload_uses_normalized_voucher(resolver):
    result = resolver.resolve("741 258 9630")
    payload = resolver.build_payload(result, {"tenant_id": "t1"})
    assert payload == {
        "tenant_id": "t1",
        "voucher": "7412589630",
        "courier": "acs",
        "api_endpoint": "acs_tracking",
    }


def test_build_payload_refuses_rejected_result(resolver):
    with pytest.raises(VoucherFormatUnrecognized):
        resolver.build_payload(resolver.resolve("??"), {})


def test_meta_key_and_note_detection():
    assert detect_courier_from_meta_key("_acs_voucher") == "acs"
    assert detect_courier_from_meta_key("gtx_tracking") == "geniki"
    assert detect_courier_from_meta_key("elta_reference") == "elta"
    assert detect_courier_from_meta_key("tracking_number") == "generic"
    assert detect_courier_from_meta_key("_billing_city") is None
    assert detect_courier_from_note("Sent via Hellenic Post") == "elta"
    assert detect_courier_from_note("please call before the courier arrives") == "generic"
    assert detect_courier_from_note("leave at door") is None


def test_extract_meta_vouchers_skips_empty_and_unknown_keys():
    meta = {
        "_acs_voucher": " 7412589630 ",
        "_billing_city": "Athens",
        "tracking_number": "",
        "gtx_voucher": None,
        "elta_reference": 210123456789,
    }
    assert extract_meta_vouchers(meta) == [
        ("_acs_voucher", "acs", "7412589630"),
        ("elta_reference", "elta", "210123456789"),
    ]
