"""Unit tests for the delta validation rules."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from cylinder_ledger import constants
from cylinder_ledger.constants import SaleType, ShipmentDirection, ShipmentStatus, ViolationCode
from cylinder_ledger.events import InventoryCountEvent, OnboardingEvent, SalesEvent, ShipmentEvent, normalize_event
from cylinder_ledger.validator import check_availability, validate_delta

from conftest import DAY1, TENANT, TODAY


def _sale(**overrides) -> SalesEvent:
    values = dict(
        event_id="E-SL1",
        sale_id="SL1",
        date=DAY1,
        product_id="P12",
        cylinder_size_id="12L",
        sale_type=SaleType.PACKAGE,
        quantity=2,
        revenue=Decimal("20"),
    )
    values.update(overrides)
    return SalesEvent(**values)


def _codes(violations):
    return [violation.code for violation in violations]


def test_valid_sale_has_no_violations(catalog_factory):
    assert validate_delta(normalize_event(TENANT, _sale()), catalog_factory()) == []


def test_missing_tenant_raises(catalog_factory):
    """The tenant id is the one field the pipeline cannot report around."""

    with pytest.raises(ValueError):
        validate_delta(normalize_event("", _sale()), catalog_factory())


def test_future_date_is_reported(catalog_factory):
    delta = normalize_event(TENANT, _sale(date=date(2024, 3, 1)))
    assert _codes(validate_delta(delta, catalog_factory())) == [ViolationCode.FUTURE_DATE]


def test_unknown_and_inactive_references(catalog_factory):
    unknown = normalize_event(TENANT, _sale(product_id="P99"))
    assert ViolationCode.UNKNOWN_REFERENCE in _codes(validate_delta(unknown, catalog_factory()))

    inactive = normalize_event(TENANT, _sale())
    found = validate_delta(inactive, catalog_factory(inactive_products=("P12",)))
    assert _codes(found) == [ViolationCode.INACTIVE_REFERENCE]


def test_product_must_belong_to_event_size(catalog_factory):
    """A product is bound to one size and cannot be booked against another."""

    delta = normalize_event(TENANT, _sale(product_id="P35"))
    found = validate_delta(delta, catalog_factory())
    assert ViolationCode.SIZE_MISMATCH in _codes(found)


def test_other_tenant_catalog_rows_are_unknown(catalog_factory):
    catalog = catalog_factory()
    foreign = {"12L": replace(catalog.sizes["12L"], tenant_id="T2")}
    catalog = replace(catalog, sizes=foreign)
    found = validate_delta(normalize_event(TENANT, _sale()), catalog)
    assert found[0].code is ViolationCode.UNKNOWN_REFERENCE
    assert found[0].field == "cylinder_size_id"


def test_negative_quantities_are_reported(catalog_factory):
    delta = normalize_event(TENANT, _sale(quantity=-1, revenue=Decimal("-5")))
    found = validate_delta(delta, catalog_factory())
    assert {v.field for v in found if v.code is ViolationCode.NEGATIVE_VALUE} == {
        "package_sales_quantity",
        "package_sales_revenue",
    }


def test_sale_before_onboarding_is_a_sequence_violation(catalog_factory):
    delta = normalize_event(TENANT, _sale())
    found = validate_delta(delta, catalog_factory(onboarded=frozenset()))
    assert _codes(found) == [ViolationCode.MISSING_ONBOARDING]


def test_duplicate_onboarding_is_rejected(catalog_factory):
    delta = normalize_event(TENANT, OnboardingEvent("E-O2", DAY1, "12L", full_cylinders=5, empty_cylinders=0))
    assert _codes(validate_delta(delta, catalog_factory())) == [ViolationCode.DUPLICATE_ONBOARDING]


def test_onboarding_after_other_events_is_rejected(catalog_factory):
    delta = normalize_event(TENANT, OnboardingEvent("E-O3", DAY1, "35L", full_cylinders=5, empty_cylinders=0))
    found = validate_delta(delta, catalog_factory(sizes_with_events=frozenset({"35L"})))
    assert _codes(found) == [ViolationCode.ONBOARDING_NOT_FIRST]


def test_per_product_onboarding_is_independent(catalog_factory):
    """Each (size, product) pair is onboarded once, independently of the size row."""

    delta = normalize_event(
        TENANT, OnboardingEvent("E-O4", DAY1, "12L", full_cylinders=5, empty_cylinders=1, product_id="P12")
    )
    assert validate_delta(delta, catalog_factory()) == []


def test_empty_onboarding_is_rejected(catalog_factory):
    delta = normalize_event(TENANT, OnboardingEvent("E-O5", DAY1, "35L", full_cylinders=0, empty_cylinders=0))
    assert _codes(validate_delta(delta, catalog_factory())) == [ViolationCode.EMPTY_ONBOARDING]


def test_balance_mismatch_reports_provided_and_computed(catalog_factory):
    event = OnboardingEvent("E-O6", DAY1, "35L", full_cylinders=10, empty_cylinders=5, total_cylinders=14)
    (violation,) = validate_delta(normalize_event(TENANT, event), catalog_factory())

    assert violation.code is ViolationCode.BALANCE_MISMATCH
    assert violation.offending_value == {"provided": 14, "computed": 15}


def test_stock_count_with_matching_total_is_valid(catalog_factory):
    event = InventoryCountEvent("E-C1", DAY1, "12L", full_cylinders=10, empty_cylinders=5, total_cylinders=15)
    assert validate_delta(normalize_event(TENANT, event), catalog_factory()) == []


def test_status_update_requires_known_shipment(catalog_factory):
    event = ShipmentEvent(
        event_id="E-SH9",
        shipment_id="SH9",
        date=DAY1,
        product_id="P12",
        cylinder_size_id="12L",
        direction=ShipmentDirection.INCOMING_FULL,
        quantity=3,
        cost=Decimal("0"),
        is_refill_purchase=False,
        status=ShipmentStatus.CANCELLED,
        is_status_update=True,
    )
    delta = normalize_event(TENANT, event)

    assert _codes(validate_delta(delta, catalog_factory())) == [ViolationCode.UNKNOWN_SHIPMENT]
    assert validate_delta(delta, catalog_factory(known_shipments=frozenset({"SH9"}))) == []


def test_completion_after_today_is_a_future_date(catalog_factory):
    event = ShipmentEvent(
        event_id="E-SH9-done",
        shipment_id="SH9",
        date=DAY1,
        product_id="P12",
        cylinder_size_id="12L",
        direction=ShipmentDirection.INCOMING_EMPTY,
        quantity=3,
        cost=Decimal("0"),
        is_refill_purchase=False,
        status=ShipmentStatus.COMPLETED,
        completed_at=datetime(2024, 2, 2, 0, 30),
        is_status_update=True,
    )
    catalog = catalog_factory(today=TODAY, known_shipments=frozenset({"SH9"}))

    violations = validate_delta(normalize_event(TENANT, event), catalog)

    assert [(v.field, v.code) for v in violations] == [("completed_at", ViolationCode.FUTURE_DATE)]
    on_time = replace(event, completed_at=datetime(2024, 2, 1, 23, 0, tzinfo=UTC))
    assert validate_delta(normalize_event(TENANT, on_time), catalog) == []


def test_violations_are_collected_not_short_circuited(catalog_factory):
    delta = normalize_event(TENANT, _sale(date=date(2025, 1, 1), quantity=-3))
    codes = _codes(validate_delta(delta, catalog_factory(today=TODAY)))
    assert codes[:2] == [ViolationCode.FUTURE_DATE, ViolationCode.NEGATIVE_VALUE]


def test_missing_event_id_is_reported(catalog_factory):
    delta = normalize_event(TENANT, _sale(event_id=""))
    (violation,) = validate_delta(delta, catalog_factory())
    assert violation.field == "event_id"
    assert violation.code is ViolationCode.MISSING_FIELD


# ---------------------------------------------------------------------------
# Availability warnings
# ---------------------------------------------------------------------------


def test_outgoing_full_beyond_stock_warns():
    (warning,) = check_availability(ShipmentDirection.OUTGOING_FULL, False, 12, full_available=10, empty_available=0)
    assert warning.code is ViolationCode.INSUFFICIENT_STOCK


def test_refill_purchase_draws_on_empty_stock():
    assert check_availability(ShipmentDirection.INCOMING_FULL, True, 5, full_available=0, empty_available=5) == []
    assert len(check_availability(ShipmentDirection.INCOMING_FULL, True, 6, full_available=0, empty_available=5)) == 1


def test_package_purchase_never_warns():
    assert check_availability(ShipmentDirection.INCOMING_FULL, False, 500, full_available=0, empty_available=0) == []


def test_no_product_sale_is_missing_product(catalog_factory):
    delta = normalize_event(TENANT, _sale(product_id=constants.NO_PRODUCT))
    assert validate_delta(delta, catalog_factory())[0].field == "product_id"
