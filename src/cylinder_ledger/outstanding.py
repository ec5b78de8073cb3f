"""Point-in-time reconstruction of outstanding shipments.

A shipment placed on or before day ``D`` is outstanding as of ``D`` by status:

* PENDING, IN_TRANSIT: outstanding.
* COMPLETED: outstanding only when ``completed_at`` is after the end of ``D``
  (UTC), so historical reports stay stable after a shipment completes.
* CANCELLED: never outstanding, unlike the bare "not completed" rule. The
  cancellation instant is not recorded, so a cancelled order drops out of
  every past day as well.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from typing import List, Optional

from .constants import ShipmentDirection, ShipmentStatus
from .data_manager import ShipmentRecord
from .record_store import RecordStore


def end_of_day(day: date) -> datetime:
    """Return the last representable instant of ``day`` in UTC."""

    return datetime.combine(day, time.max, tzinfo=UTC)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def is_outstanding_as_of(record: ShipmentRecord, as_of: date) -> bool:
    if record.shipment_date > as_of:
        return False
    if record.status is ShipmentStatus.CANCELLED:
        return False
    if record.status is not ShipmentStatus.COMPLETED:
        return True
    # a completed shipment with no completion instant counts as completed on its shipment date
    if record.completed_at is None:
        return False
    return _as_utc(record.completed_at) > end_of_day(as_of)


def outstanding_as_of(
    store: RecordStore,
    tenant_id: str,
    as_of: date,
    direction: ShipmentDirection,
    *,
    cylinder_size_id: Optional[str] = None,
    refill_only: bool = False,
) -> List[ShipmentRecord]:
    """List the shipments of ``tenant_id`` that were outstanding on ``as_of``.

    Args:
        store (RecordStore): Source of the shipment registry.
        tenant_id (str): Tenant whose shipments are scanned.
        as_of (date): Day to reconstruct.
        direction (ShipmentDirection): Shipment direction to consider.
        cylinder_size_id (str | None): Optional size filter.
        refill_only (bool): Keep only refill purchases.

    Returns:
        list[ShipmentRecord]: Outstanding shipments sorted by date and id.

    Raises:
        StoreUnavailableError: If the registry cannot be read.
    """

    candidates = store.shipments(tenant_id, direction=direction, until=as_of, cylinder_size_id=cylinder_size_id)
    return [
        record
        for record in candidates
        if is_outstanding_as_of(record, as_of) and (not refill_only or record.is_refill_purchase)
    ]


def outstanding_refill_quantity(store: RecordStore, tenant_id: str, cylinder_size_id: str, as_of: date) -> int:
    """Total cylinders on outstanding refill orders of one size as of ``as_of``."""

    records = outstanding_as_of(
        store,
        tenant_id,
        as_of,
        ShipmentDirection.INCOMING_FULL,
        cylinder_size_id=cylinder_size_id,
        refill_only=True,
    )
    return sum(record.quantity for record in records)
