"""Unit tests for event normalization into ledger deltas."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from cylinder_ledger import constants
from cylinder_ledger.constants import DeltaKind, MergePolicy, SaleType, ShipmentDirection, ShipmentStatus
from cylinder_ledger.data_manager import LedgerKey, SaleRecord, ShipmentRecord, StockCountRecord
from cylinder_ledger.events import (
    FIELD_POLICIES,
    InventoryCountEvent,
    OnboardingEvent,
    SalesEvent,
    ShipmentEvent,
    balance_delta,
    normalize_event,
)

from conftest import DAY1, DAY2, TENANT


def _shipment(**overrides) -> ShipmentEvent:
    values = dict(
        event_id="E-SH1",
        shipment_id="SH1",
        date=DAY1,
        product_id="P12",
        cylinder_size_id="12L",
        direction=ShipmentDirection.INCOMING_FULL,
        quantity=8,
        cost=Decimal("80"),
        is_refill_purchase=True,
        status=ShipmentStatus.PENDING,
    )
    values.update(overrides)
    return ShipmentEvent(**values)


def test_field_policies_split_balances_from_flows():
    """Baselines and balances replace; flows accumulate."""

    assert FIELD_POLICIES["onboarding_full_cylinders"] is MergePolicy.REPLACE
    assert FIELD_POLICIES["full_cylinders"] is MergePolicy.REPLACE
    assert FIELD_POLICIES["needs_review"] is MergePolicy.REPLACE
    assert FIELD_POLICIES["refill_sales_quantity"] is MergePolicy.ACCUMULATE
    assert FIELD_POLICIES["shipment_cost"] is MergePolicy.ACCUMULATE


def test_onboarding_without_product_keys_the_size_row():
    """Size-level onboarding lands on the aggregate row."""

    event = OnboardingEvent("E1", DAY1, "12L", full_cylinders=100, empty_cylinders=50, cylinder_receivables=7)
    delta = normalize_event(TENANT, event)

    assert delta.key == LedgerKey(TENANT, DAY1, constants.NO_PRODUCT, "12L")
    assert delta.kind is DeltaKind.ONBOARDING
    assert delta.value("onboarding_date") == DAY1
    assert delta.value("onboarding_full_cylinders") == 100
    assert delta.value("onboarding_cylinder_receivables") == 7
    assert delta.declared_total is None
    assert delta.has_flows is False


def test_refill_sale_books_refill_fields_and_source():
    """A refill sale accumulates into refill_* and carries a sale record."""

    event = SalesEvent(
        event_id="E2",
        sale_id="SL1",
        date=DAY1,
        product_id="P12",
        cylinder_size_id="12L",
        sale_type=SaleType.REFILL,
        quantity=10,
        revenue=Decimal("100.005"),
        cash_deposited=Decimal("40"),
        cylinders_deposited=6,
    )
    delta = normalize_event(TENANT, event)

    assert delta.value("refill_sales_quantity") == 10
    assert delta.value("refill_sales_revenue") == Decimal("100.01")
    assert "package_sales_quantity" not in delta.changes
    assert all(change.policy is MergePolicy.ACCUMULATE for change in delta.changes.values())
    assert isinstance(delta.source, SaleRecord)
    assert delta.source.driver_id == constants.UNASSIGNED_DRIVER
    assert delta.source.cylinders_deposited == 6


def test_pending_refill_shipment_books_only_cost_and_all_refill():
    """Completed-only quantities wait for the completion event."""

    delta = normalize_event(TENANT, _shipment())

    assert delta.kind is DeltaKind.SHIPMENT
    assert delta.value("shipment_cost") == Decimal("80.00")
    assert delta.value("all_refill_purchase") == 8
    assert "refill_purchase" not in delta.changes
    assert "incoming_full_quantity" not in delta.changes
    assert isinstance(delta.source, ShipmentRecord)
    assert delta.source.completed_at is None


def test_completed_package_shipment_books_purchase_on_shipment_date():
    completed_at = datetime(2024, 1, 2, 10, tzinfo=UTC)
    delta = normalize_event(
        TENANT,
        _shipment(is_refill_purchase=False, quantity=5, status=ShipmentStatus.COMPLETED, completed_at=completed_at),
    )

    assert delta.date == DAY1
    assert delta.value("package_purchase") == 5
    assert delta.value("incoming_full_quantity") == 5
    assert "all_refill_purchase" not in delta.changes
    assert delta.source.completed_at == completed_at


def test_status_update_to_completed_books_on_shipment_date():
    """The completion delta carries no cost so the shipment is never double counted."""

    completed_at = datetime(2024, 1, 4, 9, tzinfo=UTC)
    delta = normalize_event(
        TENANT,
        _shipment(event_id="E-SH1-done", status=ShipmentStatus.COMPLETED, completed_at=completed_at, is_status_update=True),
    )

    assert delta.kind is DeltaKind.SHIPMENT_STATUS
    assert delta.date == DAY1
    assert delta.value("refill_purchase") == 8
    assert delta.value("incoming_full_quantity") == 8
    assert "shipment_cost" not in delta.changes
    assert "all_refill_purchase" not in delta.changes


def test_status_update_to_in_transit_has_no_changes():
    delta = normalize_event(TENANT, _shipment(status=ShipmentStatus.IN_TRANSIT, is_status_update=True))
    assert delta.changes == {}
    assert delta.date == DAY1
    assert delta.source.status is ShipmentStatus.IN_TRANSIT


def test_outgoing_empty_shipment_maps_to_direction_field():
    delta = normalize_event(
        TENANT,
        _shipment(
            direction=ShipmentDirection.OUTGOING_EMPTY,
            is_refill_purchase=False,
            quantity=3,
            status=ShipmentStatus.COMPLETED,
            completed_at=datetime(2024, 1, 2, tzinfo=UTC),
        ),
    )
    assert delta.value("outgoing_empty_quantity") == 3
    assert "package_purchase" not in delta.changes


def test_inventory_count_replaces_balances_on_size_row():
    delta = normalize_event(TENANT, InventoryCountEvent("E-C1", DAY2, "12L", full_cylinders=90, empty_cylinders=60))

    assert delta.key.is_size_row
    assert delta.kind is DeltaKind.INVENTORY_COUNT
    assert delta.touches_balances
    assert delta.value("total_cylinders") == 150
    assert all(change.policy is MergePolicy.REPLACE for change in delta.changes.values())
    assert delta.source == StockCountRecord(TENANT, "E-C1", DAY2, "12L", 90, 60)


def test_inventory_count_keeps_declared_total_for_validation():
    delta = normalize_event(
        TENANT, InventoryCountEvent("E-C2", DAY2, "12L", full_cylinders=90, empty_cylinders=60, total_cylinders=151)
    )
    assert delta.declared_total == 151
    assert delta.value("total_cylinders") == 151


def test_normalize_event_rejects_unknown_shapes():
    with pytest.raises(TypeError):
        normalize_event(TENANT, object())


def test_balance_delta_has_no_event_id_and_consistent_total():
    key = LedgerKey(TENANT, DAY1, constants.NO_PRODUCT, "12L")
    delta = balance_delta(
        key,
        full_cylinders=103,
        empty_cylinders=54,
        empty_cylinder_receivables=4,
        total_cash_receivables=Decimal("12.345"),
    )

    assert delta.event_id is None
    assert delta.kind is DeltaKind.BALANCE
    assert delta.value("total_cylinders") == 157
    assert delta.value("total_cash_receivables") == Decimal("12.35")
