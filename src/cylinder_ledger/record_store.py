"""Keyed record store backing the cylinder ledger.

The store keeps every :class:`~cylinder_ledger.data_manager.LedgerDay` keyed by
``(tenant, date, product, size)`` together with the shipment and sale
registries, the event deduplication index, stale-balance markers, and driver
receivable snapshots. It is an in-memory structure that loads from and dumps
to the ledger workbook through :mod:`cylinder_ledger.data_manager`.

Writes to one key are serialized through a per-key lock so concurrent
read-modify-write merges never lose updates. Reads return copies and never
block on merges of unrelated keys.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import NO_PRODUCT, LedgerError, SheetName, ShipmentDirection
from .data_manager import (
    DirtyMarkerRow,
    DriverReceivableSnapshot,
    LedgerDay,
    LedgerKey,
    SaleRecord,
    SeenEventRow,
    ShipmentRecord,
    StockCountRecord,
)


class StoreUnavailableError(LedgerError):
    """Raised when the store cannot serve a read or write."""


MergeFunc = Callable[[Optional[LedgerDay]], LedgerDay]


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of :meth:`RecordStore.upsert`."""

    record: LedgerDay
    previous: Optional[LedgerDay]
    applied: bool


class RecordStore:
    """Thread-safe in-memory record store with workbook persistence."""

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._key_locks: Dict[LedgerKey, threading.Lock] = {}
        self._days: Dict[LedgerKey, LedgerDay] = {}
        self._seen: Dict[LedgerKey, Set[str]] = {}
        self._shipments: Dict[Tuple[str, str], ShipmentRecord] = {}
        self._sales: Dict[Tuple[str, str], SaleRecord] = {}
        self._dirty: Dict[Tuple[str, str], date] = {}
        self._dirty_marks: Dict[Tuple[str, str], int] = {}
        self._snapshots: List[DriverReceivableSnapshot] = []
        self._counts: Dict[Tuple[str, str, date], StockCountRecord] = {}
        self._available = True

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def set_available(self, available: bool) -> None:
        """Toggle availability, e.g. while the backing workbook is reloaded."""

        self._available = available
        log.info("Record store availability set to %s", available)

    def _ensure_available(self) -> None:
        if not self._available:
            raise StoreUnavailableError("Record store is unavailable")

    # ------------------------------------------------------------------
    # Ledger days
    # ------------------------------------------------------------------

    def _lock_for(self, key: LedgerKey) -> threading.Lock:
        with self._registry_lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def upsert(self, key: LedgerKey, merge_func: MergeFunc, *, event_id: Optional[str] = None) -> UpsertResult:
        """Atomically read, merge, and write the record stored under ``key``.

        When ``event_id`` is given and was already applied to ``key`` the
        merge function is not called and the stored record is returned with
        ``applied=False``.

        Raises:
            StoreUnavailableError: If the store is unavailable.
        """

        self._ensure_available()
        with self._lock_for(key):
            with self._registry_lock:
                existing = self._days.get(key)
                seen = event_id is not None and event_id in self._seen.get(key, ())
            if seen:
                log.info("Skipping duplicate event '%s' for key %s", event_id, key)
                return UpsertResult(record=existing or LedgerDay.empty_for(key), previous=existing, applied=False)

            merged = merge_func(existing)
            with self._registry_lock:
                self._days[key] = merged
                if event_id is not None:
                    self._seen.setdefault(key, set()).add(event_id)
            return UpsertResult(record=merged, previous=existing, applied=True)

    def get(self, key: LedgerKey) -> Optional[LedgerDay]:
        self._ensure_available()
        with self._registry_lock:
            return self._days.get(key)

    def _tenant_days(self, tenant_id: str) -> List[LedgerDay]:
        self._ensure_available()
        with self._registry_lock:
            return [day for key, day in self._days.items() if key.tenant_id == tenant_id]

    def range_query(
        self,
        tenant_id: str,
        date_from: Optional[date],
        date_to: Optional[date],
        *,
        product_id: Optional[str] = None,
        cylinder_size_id: Optional[str] = None,
    ) -> List[LedgerDay]:
        """Return ledger records of ``tenant_id`` in ``[date_from, date_to]``.

        ``None`` bounds are open. Results are sorted by key.
        """

        rows = [
            day
            for day in self._tenant_days(tenant_id)
            if (date_from is None or day.date >= date_from)
            and (date_to is None or day.date <= date_to)
            and (product_id is None or day.product_id == product_id)
            and (cylinder_size_id is None or day.cylinder_size_id == cylinder_size_id)
        ]
        rows.sort(key=lambda day: day.key)
        return rows

    def group_sum(
        self,
        tenant_id: str,
        date_from: Optional[date],
        date_to: Optional[date],
        group_by: Sequence[str],
        sum_fields: Sequence[str],
        *,
        cylinder_size_id: Optional[str] = None,
    ) -> Dict[Tuple[Any, ...], Dict[str, Any]]:
        """Sum flow fields over a date range grouped by record attributes.

        Args:
            tenant_id (str): Tenant whose records are aggregated.
            date_from (date | None): Inclusive lower bound.
            date_to (date | None): Inclusive upper bound.
            group_by (Sequence[str]): Attribute names forming the group key,
                for example ``("date", "cylinder_size_id")``.
            sum_fields (Sequence[str]): Attribute names to total.
            cylinder_size_id (str | None): Optional size filter.

        Returns:
            dict[tuple, dict[str, Any]]: Totals per group key.
        """

        totals: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
        for day in self.range_query(tenant_id, date_from, date_to, cylinder_size_id=cylinder_size_id):
            group = tuple(getattr(day, name) for name in group_by)
            bucket = totals.setdefault(group, {name: 0 for name in sum_fields})
            for name in sum_fields:
                value = getattr(day, name)
                if value is not None:
                    bucket[name] += value
        return totals

    def latest_balance_before(self, tenant_id: str, cylinder_size_id: str, before: date) -> Optional[LedgerDay]:
        """Return the latest size row dated before ``before`` that holds balances."""

        candidates = [
            day
            for day in self._tenant_days(tenant_id)
            if day.cylinder_size_id == cylinder_size_id
            and day.product_id == NO_PRODUCT
            and day.date < before
            and day.has_balances
        ]
        return max(candidates, key=lambda day: day.date, default=None)

    def onboarding_rows(self, tenant_id: str, cylinder_size_id: Optional[str] = None) -> List[LedgerDay]:
        rows = [
            day
            for day in self._tenant_days(tenant_id)
            if day.is_onboarded and (cylinder_size_id is None or day.cylinder_size_id == cylinder_size_id)
        ]
        rows.sort(key=lambda day: day.key)
        return rows

    # ------------------------------------------------------------------
    # Registries
    # ------------------------------------------------------------------

    def register_shipment(self, record: ShipmentRecord) -> None:
        """Insert or replace the registry entry for a shipment."""

        self._ensure_available()
        with self._registry_lock:
            self._shipments[(record.tenant_id, record.shipment_id)] = record

    def update_shipment(
        self,
        tenant_id: str,
        shipment_id: str,
        update: Callable[[Optional[ShipmentRecord]], ShipmentRecord],
    ) -> ShipmentRecord:
        """Replace a registry entry with ``update(current)`` in one locked step."""

        self._ensure_available()
        with self._registry_lock:
            key = (tenant_id, shipment_id)
            record = update(self._shipments.get(key))
            self._shipments[key] = record
            return record

    def get_shipment(self, tenant_id: str, shipment_id: str) -> Optional[ShipmentRecord]:
        self._ensure_available()
        with self._registry_lock:
            return self._shipments.get((tenant_id, shipment_id))

    def shipments(
        self,
        tenant_id: str,
        *,
        direction: Optional[ShipmentDirection] = None,
        until: Optional[date] = None,
        cylinder_size_id: Optional[str] = None,
    ) -> List[ShipmentRecord]:
        self._ensure_available()
        with self._registry_lock:
            records = [record for (tenant, _), record in self._shipments.items() if tenant == tenant_id]
        selected = [
            record
            for record in records
            if (direction is None or record.direction == direction)
            and (until is None or record.shipment_date <= until)
            and (cylinder_size_id is None or record.cylinder_size_id == cylinder_size_id)
        ]
        selected.sort(key=lambda record: (record.shipment_date, record.shipment_id))
        return selected

    def register_sale(self, record: SaleRecord) -> None:
        self._ensure_available()
        with self._registry_lock:
            self._sales[(record.tenant_id, record.sale_id)] = record

    def sales(self, tenant_id: str, *, until: Optional[date] = None) -> List[SaleRecord]:
        self._ensure_available()
        with self._registry_lock:
            records = [record for (tenant, _), record in self._sales.items() if tenant == tenant_id]
        selected = [record for record in records if until is None or record.sale_date <= until]
        selected.sort(key=lambda record: (record.sale_date, record.sale_id))
        return selected

    def register_stock_count(self, record: StockCountRecord) -> None:
        """Keep the latest manual count per (tenant, size, day)."""

        self._ensure_available()
        with self._registry_lock:
            self._counts[(record.tenant_id, record.cylinder_size_id, record.count_date)] = record

    def stock_count(self, tenant_id: str, cylinder_size_id: str, day: date) -> Optional[StockCountRecord]:
        self._ensure_available()
        with self._registry_lock:
            return self._counts.get((tenant_id, cylinder_size_id, day))

    def sizes_with_activity(self, tenant_id: str) -> Set[str]:
        """Return sizes that have any recorded sale, shipment, or stock count."""

        self._ensure_available()
        with self._registry_lock:
            sizes = {record.cylinder_size_id for (tenant, _), record in self._sales.items() if tenant == tenant_id}
            sizes.update(
                record.cylinder_size_id for (tenant, _), record in self._shipments.items() if tenant == tenant_id
            )
            sizes.update(size for (tenant, size, _) in self._counts if tenant == tenant_id)
        return sizes

    # ------------------------------------------------------------------
    # Stale balance markers
    # ------------------------------------------------------------------

    def mark_dirty(self, tenant_id: str, cylinder_size_id: str, day: date) -> None:
        """Record that persisted balances from ``day`` onward are stale."""

        key = (tenant_id, cylinder_size_id)
        with self._registry_lock:
            self._dirty_marks[key] = self._dirty_marks.get(key, 0) + 1
            current = self._dirty.get(key)
            if current is None or day < current:
                self._dirty[key] = day

    def dirty_from(self, tenant_id: str, cylinder_size_id: str) -> Optional[date]:
        with self._registry_lock:
            return self._dirty.get((tenant_id, cylinder_size_id))

    def dirty_state(self, tenant_id: str, cylinder_size_id: str) -> Tuple[Optional[date], int]:
        """Return the stale marker together with the number of marks so far."""

        key = (tenant_id, cylinder_size_id)
        with self._registry_lock:
            return self._dirty.get(key), self._dirty_marks.get(key, 0)

    def clear_dirty(
        self,
        tenant_id: str,
        cylinder_size_id: str,
        *,
        covered_from: date,
        through: date,
        seen_marks: Optional[int] = None,
    ) -> bool:
        """Clear the stale marker after balances were recomputed over a range.

        ``seen_marks`` is the mark count read from :meth:`dirty_state` before
        the walk started. A size marked again since then keeps its marker,
        since the new change may sit on a day the walk had already persisted.
        Nothing happens either when the marker moved before ``covered_from``.
        When balances persisted after ``through`` exist they are still stale,
        so the marker moves to the following day instead.

        Returns:
            bool: ``True`` when the marker was cleared or moved.
        """

        with self._registry_lock:
            key = (tenant_id, cylinder_size_id)
            if seen_marks is not None and self._dirty_marks.get(key, 0) != seen_marks:
                log.debug("Size '%s' of '%s' was marked stale during recompute", cylinder_size_id, tenant_id)
                return False
            current = self._dirty.get(key)
            if current is None or current < covered_from:
                return False
            later = any(
                k.tenant_id == tenant_id
                and k.cylinder_size_id == cylinder_size_id
                and k.product_id == NO_PRODUCT
                and k.date > through
                and day.has_balances
                for k, day in self._days.items()
            )
            if later:
                self._dirty[key] = through + timedelta(days=1)
            else:
                del self._dirty[key]
            return True

    # ------------------------------------------------------------------
    # Receivable snapshots
    # ------------------------------------------------------------------

    def append_snapshots(self, snapshots: Iterable[DriverReceivableSnapshot]) -> int:
        self._ensure_available()
        rows = list(snapshots)
        with self._registry_lock:
            self._snapshots.extend(rows)
        return len(rows)

    def snapshots(
        self,
        tenant_id: str,
        *,
        driver_id: Optional[str] = None,
        until: Optional[date] = None,
    ) -> List[DriverReceivableSnapshot]:
        self._ensure_available()
        with self._registry_lock:
            rows = list(self._snapshots)
        return [
            row
            for row in rows
            if row.tenant_id == tenant_id
            and (driver_id is None or row.driver_id == driver_id)
            and (until is None or row.snapshot_date <= until)
        ]

    # ------------------------------------------------------------------
    # Workbook persistence
    # ------------------------------------------------------------------

    def load(self, workbook: Workbook) -> None:
        """Replace the store contents with the ledger sheets of ``workbook``."""

        days = {day.key: day for day in data_manager.iter_ledger_days(workbook)}
        seen: Dict[LedgerKey, Set[str]] = defaultdict(set)
        for row in data_manager.iter_seen_events(workbook):
            seen[row.key].add(row.event_id)
        shipments = {(row.tenant_id, row.shipment_id): row for row in data_manager.iter_shipments(workbook)}
        sales = {(row.tenant_id, row.sale_id): row for row in data_manager.iter_sales(workbook)}
        dirty = {(row.tenant_id, row.cylinder_size_id): row.dirty_from for row in data_manager.iter_dirty_markers(workbook)}
        snapshots = list(data_manager.iter_receivable_snapshots(workbook))
        counts = {(r.tenant_id, r.cylinder_size_id, r.count_date): r for r in data_manager.iter_stock_counts(workbook)}

        with self._registry_lock:
            self._days = days
            self._seen = dict(seen)
            self._shipments = shipments
            self._sales = sales
            self._dirty = dirty
            self._snapshots = snapshots
            self._counts = counts
            self._key_locks = {}
        log.info(
            "Loaded record store: %d ledger rows, %d shipments, %d sales",
            len(days),
            len(shipments),
            len(sales),
        )

    def dump(self, workbook: Workbook) -> None:
        """Write the full store contents into the ledger sheets of ``workbook``."""

        with self._registry_lock:
            days = sorted(self._days.values(), key=lambda day: day.key)
            seen = sorted(
                (SeenEventRow(key=key, event_id=event_id) for key, ids in self._seen.items() for event_id in ids),
                key=lambda row: (row.key, row.event_id),
            )
            shipments = sorted(self._shipments.values(), key=lambda r: (r.tenant_id, r.shipment_date, r.shipment_id))
            sales = sorted(self._sales.values(), key=lambda r: (r.tenant_id, r.sale_date, r.sale_id))
            dirty = [DirtyMarkerRow(tenant, size, day) for (tenant, size), day in sorted(self._dirty.items())]
            snapshots = list(self._snapshots)
            counts = sorted(self._counts.values(), key=lambda r: (r.tenant_id, r.count_date, r.cylinder_size_id))

        data_manager.replace_sheet_rows(
            workbook, SheetName.LEDGER_DAYS.value, (data_manager.serialize_ledger_day(d) for d in days)
        )
        data_manager.replace_sheet_rows(
            workbook, SheetName.SEEN_EVENTS.value, (data_manager.serialize_seen_event(r) for r in seen)
        )
        data_manager.replace_sheet_rows(
            workbook, SheetName.SHIPMENTS.value, (data_manager.serialize_shipment(r) for r in shipments)
        )
        data_manager.replace_sheet_rows(workbook, SheetName.SALES.value, (data_manager.serialize_sale(r) for r in sales))
        data_manager.replace_sheet_rows(
            workbook, SheetName.DIRTY_MARKERS.value, (data_manager.serialize_dirty_marker(r) for r in dirty)
        )
        data_manager.replace_sheet_rows(
            workbook,
            SheetName.RECEIVABLE_SNAPSHOTS.value,
            (data_manager.serialize_receivable_snapshot(r) for r in snapshots),
        )
        data_manager.replace_sheet_rows(
            workbook, SheetName.STOCK_COUNTS.value, (data_manager.serialize_stock_count(r) for r in counts)
        )
        log.info("Dumped record store: %d ledger rows", len(days))
