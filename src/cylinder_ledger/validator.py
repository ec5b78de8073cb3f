"""Validation pipeline applied to every delta before it reaches the store.

Rules run in a fixed order and every finding is collected, so a caller sees
all problems of an event at once. Only a missing tenant id raises; everything
else is reported as a :class:`Violation`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date
from decimal import Decimal
from typing import Any, FrozenSet, List, Mapping, Optional, Tuple

from .constants import NO_PRODUCT, DeltaKind, ShipmentDirection, ViolationCode
from .data_manager import CylinderSizeRow, ProductRow, ShipmentRecord
from .events import Delta


@dataclass(frozen=True)
class Violation:
    """A single validation finding."""

    field: str
    message: str
    offending_value: Any = None
    code: ViolationCode = ViolationCode.MISSING_FIELD


@dataclass(frozen=True)
class CatalogContext:
    """Snapshot of the tenant catalog and event history used by the validator.

    ``onboarded`` holds ``(cylinder_size_id, product_id)`` pairs, with
    :data:`~cylinder_ledger.constants.NO_PRODUCT` for size-level onboarding.
    """

    tenant_id: str
    sizes: Mapping[str, CylinderSizeRow]
    products: Mapping[str, ProductRow]
    onboarded: FrozenSet[Tuple[str, str]]
    sizes_with_events: FrozenSet[str]
    known_shipments: FrozenSet[str]
    today: date

    @property
    def onboarded_sizes(self) -> FrozenSet[str]:
        return frozenset(size for size, _ in self.onboarded)


def _is_amount(value: Any) -> bool:
    return isinstance(value, (int, Decimal)) and not isinstance(value, bool)


def validate_delta(delta: Delta, catalog: CatalogContext) -> List[Violation]:
    """Check a normalized delta against the ledger invariants.

    Args:
        delta (Delta): Output of :func:`~cylinder_ledger.events.normalize_event`.
        catalog (CatalogContext): Tenant catalog and history snapshot.

    Returns:
        list[Violation]: Every finding, in rule order. Empty when valid.

    Raises:
        ValueError: If the delta carries no tenant id.
    """

    if not delta.tenant_id:
        raise ValueError("Delta is missing its tenant id")

    violations: List[Violation] = []
    violations.extend(_check_references(delta, catalog))
    violations.extend(_check_non_negative(delta))
    violations.extend(_check_sequence(delta, catalog))
    violations.extend(_check_onboarding_quantities(delta))
    violations.extend(_check_balance(delta))
    violations.extend(_check_shipment_reference(delta, catalog))
    return violations


def _check_references(delta: Delta, catalog: CatalogContext) -> List[Violation]:
    found: List[Violation] = []
    if delta.kind is not DeltaKind.BALANCE and not delta.event_id:
        found.append(Violation("event_id", "Event id is required", delta.event_id))
    if delta.date is None:
        found.append(Violation("date", "Event date is required"))
    elif delta.date > catalog.today:
        found.append(
            Violation("date", f"Event date {delta.date} is in the future", delta.date, ViolationCode.FUTURE_DATE)
        )
    completed_at = getattr(delta.source, "completed_at", None)
    if completed_at is not None and completed_at.tzinfo is None:
        completed_at = completed_at.replace(tzinfo=UTC)
    if completed_at is not None and completed_at.astimezone(UTC).date() > catalog.today:
        found.append(
            Violation("completed_at", f"Completion {completed_at} is in the future", completed_at, ViolationCode.FUTURE_DATE)
        )

    size_id = delta.cylinder_size_id
    if not size_id:
        found.append(Violation("cylinder_size_id", "Cylinder size is required", size_id))
    else:
        size = catalog.sizes.get(size_id)
        if size is None or size.tenant_id != delta.tenant_id:
            found.append(
                Violation(
                    "cylinder_size_id",
                    f"Unknown cylinder size '{size_id}'",
                    size_id,
                    ViolationCode.UNKNOWN_REFERENCE,
                )
            )
        elif not size.is_active:
            found.append(
                Violation(
                    "cylinder_size_id",
                    f"Cylinder size '{size_id}' is inactive",
                    size_id,
                    ViolationCode.INACTIVE_REFERENCE,
                )
            )

    product_id = delta.product_id
    needs_product = delta.kind in {DeltaKind.SALE, DeltaKind.SHIPMENT, DeltaKind.SHIPMENT_STATUS}
    if not product_id or (needs_product and product_id == NO_PRODUCT):
        found.append(Violation("product_id", "Product is required", product_id))
        return found
    if product_id == NO_PRODUCT:
        return found

    product = catalog.products.get(product_id)
    if product is None or product.tenant_id != delta.tenant_id:
        found.append(
            Violation("product_id", f"Unknown product '{product_id}'", product_id, ViolationCode.UNKNOWN_REFERENCE)
        )
        return found
    if not product.is_active:
        found.append(
            Violation("product_id", f"Product '{product_id}' is inactive", product_id, ViolationCode.INACTIVE_REFERENCE)
        )
    if size_id and product.cylinder_size_id != size_id:
        found.append(
            Violation(
                "cylinder_size_id",
                f"Product '{product_id}' belongs to size '{product.cylinder_size_id}', not '{size_id}'",
                size_id,
                ViolationCode.SIZE_MISMATCH,
            )
        )
    return found


def _check_non_negative(delta: Delta) -> List[Violation]:
    found = [
        Violation(name, f"{name} must not be negative", change.value, ViolationCode.NEGATIVE_VALUE)
        for name, change in delta.changes.items()
        if _is_amount(change.value) and change.value < 0
    ]
    if delta.declared_total is not None and delta.declared_total < 0:
        found.append(
            Violation("total_cylinders", "total_cylinders must not be negative", delta.declared_total, ViolationCode.NEGATIVE_VALUE)
        )
    source = delta.source
    if isinstance(source, ShipmentRecord) and delta.kind is DeltaKind.SHIPMENT_STATUS:
        if source.quantity < 0:
            found.append(Violation("quantity", "quantity must not be negative", source.quantity, ViolationCode.NEGATIVE_VALUE))
    return found


def _check_sequence(delta: Delta, catalog: CatalogContext) -> List[Violation]:
    size_id = delta.cylinder_size_id
    if delta.kind is DeltaKind.BALANCE:
        return []
    if delta.kind is DeltaKind.ONBOARDING:
        if (size_id, delta.product_id) in catalog.onboarded:
            return [
                Violation(
                    "onboarding_date",
                    f"Size '{size_id}' product '{delta.product_id}' is already onboarded",
                    delta.date,
                    ViolationCode.DUPLICATE_ONBOARDING,
                )
            ]
        if size_id in catalog.sizes_with_events:
            return [
                Violation(
                    "onboarding_date",
                    f"Onboarding must be the first event for size '{size_id}'",
                    delta.date,
                    ViolationCode.ONBOARDING_NOT_FIRST,
                )
            ]
        return []
    if size_id not in catalog.onboarded_sizes:
        return [
            Violation(
                "cylinder_size_id",
                f"Size '{size_id}' has not been onboarded",
                size_id,
                ViolationCode.MISSING_ONBOARDING,
            )
        ]
    return []


def _check_onboarding_quantities(delta: Delta) -> List[Violation]:
    if delta.kind is not DeltaKind.ONBOARDING:
        return []
    total = sum(
        delta.value(name, 0) or 0
        for name in ("onboarding_full_cylinders", "onboarding_empty_cylinders", "onboarding_cylinder_receivables")
    )
    if total == 0:
        return [
            Violation("onboarding_full_cylinders", "Onboarding must record at least one cylinder", 0, ViolationCode.EMPTY_ONBOARDING)
        ]
    return []


def _balance_violation(provided: int, full: int, empty: int) -> Optional[Violation]:
    computed = full + empty
    if provided == computed:
        return None
    return Violation(
        "total_cylinders",
        f"total_cylinders provided {provided} but full {full} + empty {empty} = {computed}",
        {"provided": provided, "computed": computed},
        ViolationCode.BALANCE_MISMATCH,
    )


def _check_balance(delta: Delta) -> List[Violation]:
    if delta.declared_total is None:
        return []
    if delta.kind is DeltaKind.ONBOARDING:
        full = delta.value("onboarding_full_cylinders", 0)
        empty = delta.value("onboarding_empty_cylinders", 0)
    else:
        full = delta.value("full_cylinders", 0)
        empty = delta.value("empty_cylinders", 0)
    violation = _balance_violation(delta.declared_total, full, empty)
    return [violation] if violation else []


def _check_shipment_reference(delta: Delta, catalog: CatalogContext) -> List[Violation]:
    if delta.kind is not DeltaKind.SHIPMENT_STATUS:
        return []
    source = delta.source
    shipment_id = source.shipment_id if isinstance(source, ShipmentRecord) else None
    if shipment_id in catalog.known_shipments:
        return []
    return [Violation("shipment_id", f"Unknown shipment '{shipment_id}'", shipment_id, ViolationCode.UNKNOWN_SHIPMENT)]


def check_availability(
    direction: ShipmentDirection,
    is_refill_purchase: bool,
    quantity: int,
    full_available: int,
    empty_available: int,
) -> List[Violation]:
    """Warn when a planned shipment exceeds the stock it draws on.

    Outgoing full shipments draw on full cylinders; refill purchases and
    outgoing empty shipments draw on empty cylinders. The result is advisory
    and never blocks an event.
    """

    warnings: List[Violation] = []
    direction = ShipmentDirection(direction)
    if direction is ShipmentDirection.OUTGOING_FULL and quantity > full_available:
        warnings.append(
            Violation(
                "quantity",
                f"Shipping {quantity} full cylinders but only {full_available} in stock",
                quantity,
                ViolationCode.INSUFFICIENT_STOCK,
            )
        )
    draws_empty = direction is ShipmentDirection.OUTGOING_EMPTY or (
        direction is ShipmentDirection.INCOMING_FULL and is_refill_purchase
    )
    if draws_empty and quantity > empty_available:
        warnings.append(
            Violation(
                "quantity",
                f"Sending {quantity} empty cylinders but only {empty_available} in stock",
                quantity,
                ViolationCode.INSUFFICIENT_STOCK,
            )
        )
    return warnings
