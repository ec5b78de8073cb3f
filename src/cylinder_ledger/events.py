"""Event shapes accepted by the ledger and their normalization into deltas.

Every raw event is turned into a :class:`Delta`: the ledger key it touches,
the event id used for deduplication, and one :class:`FieldChange` per ledger
field with the merge policy taken from :data:`FIELD_POLICIES`. Normalization
is pure; nothing here reads or writes the record store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Union

from .constants import (
    NO_PRODUCT,
    UNASSIGNED_DRIVER,
    DeltaKind,
    MergePolicy,
    SaleType,
    ShipmentDirection,
    ShipmentStatus,
)
from .data_manager import (
    LEDGER_FLOW_FIELDS,
    LedgerKey,
    SaleRecord,
    ShipmentRecord,
    StockCountRecord,
    to_money,
)


_REPLACE_FIELDS = frozenset(
    {
        "onboarding_date",
        "onboarding_full_cylinders",
        "onboarding_empty_cylinders",
        "onboarding_cylinder_receivables",
        "full_cylinders",
        "empty_cylinders",
        "total_cylinders",
        "empty_cylinder_receivables",
        "total_cash_receivables",
        "total_cylinder_receivables",
        "needs_review",
    }
)

# Single source of truth for how each ledger field merges.
FIELD_POLICIES: Mapping[str, MergePolicy] = {
    name: MergePolicy.REPLACE if name in _REPLACE_FIELDS else MergePolicy.ACCUMULATE for name in LEDGER_FLOW_FIELDS
}

BALANCE_FIELDS = ("full_cylinders", "empty_cylinders", "total_cylinders")

_DIRECTION_FIELDS = {
    ShipmentDirection.INCOMING_FULL: "incoming_full_quantity",
    ShipmentDirection.INCOMING_EMPTY: "incoming_empty_quantity",
    ShipmentDirection.OUTGOING_FULL: "outgoing_full_quantity",
    ShipmentDirection.OUTGOING_EMPTY: "outgoing_empty_quantity",
}


@dataclass(frozen=True)
class OnboardingEvent:
    """Opening stock of a size (or one product of it) when a tenant starts."""

    event_id: str
    date: date
    cylinder_size_id: str
    full_cylinders: int
    empty_cylinders: int
    cylinder_receivables: int = 0
    product_id: Optional[str] = None
    total_cylinders: Optional[int] = None


@dataclass(frozen=True)
class SalesEvent:
    event_id: str
    sale_id: str
    date: date
    product_id: str
    cylinder_size_id: str
    sale_type: SaleType
    quantity: int
    revenue: Decimal
    discount: Decimal = Decimal("0")
    cash_deposited: Decimal = Decimal("0")
    cylinders_deposited: int = 0
    driver_id: Optional[str] = None


@dataclass(frozen=True)
class ShipmentEvent:
    """A shipment as first reported, or a later status change of it.

    ``date`` is always the shipment date, and every quantity of the shipment is
    booked on it. ``completed_at`` only decides from which day the shipment
    stops being outstanding.
    """

    event_id: str
    shipment_id: str
    date: date
    product_id: str
    cylinder_size_id: str
    direction: ShipmentDirection
    quantity: int
    cost: Decimal
    is_refill_purchase: bool
    status: ShipmentStatus
    completed_at: Optional[datetime] = None
    is_status_update: bool = False


@dataclass(frozen=True)
class InventoryCountEvent:
    event_id: str
    date: date
    cylinder_size_id: str
    full_cylinders: int
    empty_cylinders: int
    total_cylinders: Optional[int] = None


LedgerEvent = Union[OnboardingEvent, SalesEvent, ShipmentEvent, InventoryCountEvent]
SourceRecord = Union[SaleRecord, ShipmentRecord, StockCountRecord]


@dataclass(frozen=True)
class FieldChange:
    value: Any
    policy: MergePolicy


@dataclass(frozen=True)
class Delta:
    """Normalized change to one ledger record."""

    key: LedgerKey
    event_id: Optional[str]
    kind: DeltaKind
    changes: Mapping[str, FieldChange] = field(default_factory=dict)
    source: Optional[SourceRecord] = None
    declared_total: Optional[int] = None

    @property
    def tenant_id(self) -> str:
        return self.key.tenant_id

    @property
    def cylinder_size_id(self) -> str:
        return self.key.cylinder_size_id

    @property
    def product_id(self) -> str:
        return self.key.product_id

    @property
    def date(self) -> date:
        return self.key.date

    @property
    def touches_balances(self) -> bool:
        return any(name in self.changes for name in BALANCE_FIELDS)

    @property
    def has_flows(self) -> bool:
        return any(change.policy is MergePolicy.ACCUMULATE for change in self.changes.values())

    def value(self, name: str, default: Any = None) -> Any:
        change = self.changes.get(name)
        return default if change is None else change.value


def _changes(values: Mapping[str, Any]) -> Dict[str, FieldChange]:
    return {name: FieldChange(value, FIELD_POLICIES[name]) for name, value in values.items()}


def _count(raw: Any) -> int:
    return int(raw) if raw is not None else 0


def normalize_event(tenant_id: str, event: LedgerEvent) -> Delta:
    """Translate a raw ledger event into a :class:`Delta`.

    Args:
        tenant_id (str): Tenant that owns the event.
        event (LedgerEvent): Onboarding, sale, shipment, or stock count event.

    Returns:
        Delta: Keyed field changes tagged with their merge policies.

    Raises:
        TypeError: If ``event`` is not one of the supported event shapes.
    """

    if isinstance(event, OnboardingEvent):
        return _normalize_onboarding(tenant_id, event)
    if isinstance(event, SalesEvent):
        return _normalize_sale(tenant_id, event)
    if isinstance(event, ShipmentEvent):
        return _normalize_shipment(tenant_id, event)
    if isinstance(event, InventoryCountEvent):
        return _normalize_inventory_count(tenant_id, event)
    raise TypeError(f"Unsupported event type: {type(event).__name__}")


def _normalize_onboarding(tenant_id: str, event: OnboardingEvent) -> Delta:
    key = LedgerKey(tenant_id, event.date, event.product_id or NO_PRODUCT, event.cylinder_size_id)
    values = {
        "onboarding_date": event.date,
        "onboarding_full_cylinders": _count(event.full_cylinders),
        "onboarding_empty_cylinders": _count(event.empty_cylinders),
        "onboarding_cylinder_receivables": _count(event.cylinder_receivables),
    }
    declared = None if event.total_cylinders is None else int(event.total_cylinders)
    return Delta(key, event.event_id, DeltaKind.ONBOARDING, _changes(values), declared_total=declared)


def _normalize_sale(tenant_id: str, event: SalesEvent) -> Delta:
    key = LedgerKey(tenant_id, event.date, event.product_id, event.cylinder_size_id)
    sale_type = SaleType(event.sale_type)
    quantity = _count(event.quantity)
    revenue = to_money(event.revenue)
    prefix = "package" if sale_type is SaleType.PACKAGE else "refill"
    values = {
        f"{prefix}_sales_quantity": quantity,
        f"{prefix}_sales_revenue": revenue,
        "sales_discount": to_money(event.discount),
        "cash_deposited": to_money(event.cash_deposited),
        "cylinders_deposited": _count(event.cylinders_deposited),
    }
    record = SaleRecord(
        tenant_id=tenant_id,
        sale_id=event.sale_id,
        sale_date=event.date,
        driver_id=event.driver_id or UNASSIGNED_DRIVER,
        product_id=event.product_id,
        cylinder_size_id=event.cylinder_size_id,
        sale_type=sale_type,
        quantity=quantity,
        revenue=revenue,
        discount=values["sales_discount"],
        cash_deposited=values["cash_deposited"],
        cylinders_deposited=values["cylinders_deposited"],
    )
    return Delta(key, event.event_id, DeltaKind.SALE, _changes(values), source=record)


def _completed_values(event: ShipmentEvent, quantity: int) -> Dict[str, Any]:
    direction = ShipmentDirection(event.direction)
    values: Dict[str, Any] = {_DIRECTION_FIELDS[direction]: quantity}
    if direction is ShipmentDirection.INCOMING_FULL:
        values["refill_purchase" if event.is_refill_purchase else "package_purchase"] = quantity
    return values


def _normalize_shipment(tenant_id: str, event: ShipmentEvent) -> Delta:
    direction = ShipmentDirection(event.direction)
    status = ShipmentStatus(event.status)
    quantity = _count(event.quantity)
    cost = to_money(event.cost)
    completed = status is ShipmentStatus.COMPLETED

    record = ShipmentRecord(
        tenant_id=tenant_id,
        shipment_id=event.shipment_id,
        shipment_date=event.date,
        product_id=event.product_id,
        cylinder_size_id=event.cylinder_size_id,
        direction=direction,
        quantity=quantity,
        cost=cost,
        is_refill_purchase=bool(event.is_refill_purchase),
        status=status,
        completed_at=event.completed_at if completed else None,
    )

    if event.is_status_update:
        values = _completed_values(event, quantity) if completed else {}
        key = LedgerKey(tenant_id, event.date, event.product_id, event.cylinder_size_id)
        return Delta(key, event.event_id, DeltaKind.SHIPMENT_STATUS, _changes(values), source=record)

    values = {"shipment_cost": cost}
    if direction is ShipmentDirection.INCOMING_FULL and event.is_refill_purchase:
        values["all_refill_purchase"] = quantity
    if completed:
        values.update(_completed_values(event, quantity))
    key = LedgerKey(tenant_id, event.date, event.product_id, event.cylinder_size_id)
    return Delta(key, event.event_id, DeltaKind.SHIPMENT, _changes(values), source=record)


def _normalize_inventory_count(tenant_id: str, event: InventoryCountEvent) -> Delta:
    key = LedgerKey(tenant_id, event.date, NO_PRODUCT, event.cylinder_size_id)
    full = _count(event.full_cylinders)
    empty = _count(event.empty_cylinders)
    declared = None if event.total_cylinders is None else int(event.total_cylinders)
    values = {
        "full_cylinders": full,
        "empty_cylinders": empty,
        "total_cylinders": declared if declared is not None else full + empty,
    }
    record = StockCountRecord(
        tenant_id=tenant_id,
        count_id=event.event_id,
        count_date=event.date,
        cylinder_size_id=event.cylinder_size_id,
        full_cylinders=full,
        empty_cylinders=empty,
    )
    return Delta(key, event.event_id, DeltaKind.INVENTORY_COUNT, _changes(values), source=record, declared_total=declared)


def balance_delta(
    key: LedgerKey,
    *,
    full_cylinders: int,
    empty_cylinders: int,
    empty_cylinder_receivables: int,
    total_cash_receivables: Decimal,
) -> Delta:
    """Build the REPLACE delta that persists computed balances on a size row.

    Balance deltas carry no event id so recomputing a day always rewrites it.
    """

    values = {
        "full_cylinders": full_cylinders,
        "empty_cylinders": empty_cylinders,
        "total_cylinders": full_cylinders + empty_cylinders,
        "empty_cylinder_receivables": empty_cylinder_receivables,
        "total_cylinder_receivables": empty_cylinder_receivables,
        "total_cash_receivables": to_money(total_cash_receivables),
    }
    return Delta(key, None, DeltaKind.BALANCE, _changes(values))
