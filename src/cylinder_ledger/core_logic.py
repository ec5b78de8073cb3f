"""Business logic layer for the cylinder ledger.

This module orchestrates the ledger engine for one tenant. It loads the
configuration and workbook, keeps the catalog (sizes, products, drivers) in
memoized buckets, feeds events through normalization, validation, and merge,
and serves the daily ledger, outstanding orders, and receivables reports.

Reports are memoized in a :class:`ReportCache` owned by the runtime context.
The engine modules underneath never see the cache and always compute from the
record store alone.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .carry_forward import RecomputeResult, ReconstructionError, recompute_range
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    SEQUENCE_CODES,
    UNASSIGNED_DRIVER,
    DayStatus,
    IngestStatus,
    LedgerError,
    SheetName,
    ShipmentDirection,
    ShipmentStatus,
)
from .data_manager import LedgerDay, ShipmentRecord
from .events import LedgerEvent, ShipmentEvent, normalize_event
from .merge import LedgerMergeEngine, MergeConflictError
from .outstanding import outstanding_as_of
from .receivables import ReceivablesPosition, ReceivablesReconciler, record_snapshots
from .record_store import RecordStore
from .validator import CatalogContext, Violation, check_availability, validate_delta


class BusinessRuleViolation(LedgerError):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced size, product, driver, or shipment is unknown."""


class SequenceError(BusinessRuleViolation):
    """Raised when an event arrives out of the onboarding-first order."""

    def __init__(self, violations: Iterable[Violation]) -> None:
        self.violations = tuple(violations)
        super().__init__("; ".join(v.message for v in self.violations))


class ReportCache:
    """Time-bound memo of computed reports keyed by ``(tenant_id, ...)`` tuples.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, ttl: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: Dict[Tuple[Hashable, ...], Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: Tuple[Hashable, ...]) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                log.debug("Report cache entry expired: %s", key)
                return None
            return value

    def put(self, key: Tuple[Hashable, ...], value: Any) -> None:
        if self._ttl <= 0:
            return
        with self._lock:
            self._entries[key] = (value, self._clock() + self._ttl)

    def invalidate_tenant(self, tenant_id: str) -> int:
        with self._lock:
            stale = [key for key in self._entries if key and key[0] == tenant_id]
            for key in stale:
                del self._entries[key]
        if stale:
            log.debug("Invalidated %d report cache entries for '%s'", len(stale), tenant_id)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, workbook, and engine state used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    store: RecordStore
    report_cache: ReportCache
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)

    @property
    def tenant_id(self) -> str:
        return self.settings.tenant_id


@dataclass(frozen=True)
class IngestResult:
    """Outcome of feeding one event through the ledger pipeline."""

    status: IngestStatus
    event_id: Optional[str]
    violations: Tuple[Violation, ...] = ()
    record: Optional[LedgerDay] = None
    conflict: Optional[MergeConflictError] = None


@dataclass(frozen=True)
class LowStockAlert:
    cylinder_size_id: str
    label: str
    full_cylinders: int
    threshold: int


def _resolve_today(candidate: Optional[date]) -> date:
    return candidate if candidate is not None else datetime.now(UTC).date()


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    The business logic layer keeps catalog lookups in memoized buckets keyed by
    domain area (sizes, products, drivers, baselines) so repeated operations
    do not re-scan the workbook.

    Args:
        context (RuntimeContext): Runtime state carrying the shared cache
            dictionary.
        name (str): Logical bucket name to fetch or create.

    Returns:
        dict[str, Any]: Mutable mapping used to cache derived collections.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more catalog buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_catalog_bucket(
    context: RuntimeContext,
    name: str,
    loader: Callable[[Workbook], Iterable[Any]],
    id_attr: Optional[str],
) -> Dict[str, Any]:
    """Populate a catalog bucket on demand.

    Rows of other tenants are dropped so every lookup is tenant-scoped.

    Returns:
        dict[str, Any]: Bucket containing ``all`` rows, ``active`` rows, and a
            ``by_id`` lookup when ``id_attr`` is given.
    """

    bucket = _get_cache_bucket(context, name)
    if "all" not in bucket:
        rows = [row for row in loader(context.workbook) if row.tenant_id == context.tenant_id]
        bucket["all"] = rows
        bucket["active"] = [row for row in rows if getattr(row, "is_active", True)]
        if id_attr is not None:
            bucket["by_id"] = {getattr(row, id_attr): row for row in rows}
        log.debug("Populated %s cache with %d entries (%d active)", name, len(rows), len(bucket["active"]))
    return bucket


def _sizes_bucket(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_catalog_bucket(context, "sizes", data_manager.iter_cylinder_sizes, "cylinder_size_id")


def _products_bucket(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_catalog_bucket(context, "products", data_manager.iter_products, "product_id")


def _drivers_bucket(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_catalog_bucket(context, "drivers", data_manager.iter_drivers, "driver_id")


def _baselines_bucket(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_catalog_bucket(context, "baselines", data_manager.iter_driver_baselines, None)


# ---------------------------------------------------------------------------
# Context lifecycle
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings, the workbook, and the record store.

    The helper resolves ``config.ini``, parses settings, opens the workbook,
    and loads the ledger sheets into a fresh :class:`RecordStore`. The
    resulting :class:`RuntimeContext` also owns an empty report cache sized
    by ``[Ledger] ReportCacheTTL``.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    store = RecordStore()
    store.load(workbook)
    log.info("Loaded runtime context for workbook '%s' (tenant '%s')", settings.data_file, settings.tenant_id)
    return RuntimeContext(
        settings=settings,
        workbook=workbook,
        store=store,
        report_cache=ReportCache(settings.report_cache_ttl),
    )


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Dump the record store into the workbook and save it to disk.

    Args:
        context (RuntimeContext): Runtime context whose workbook should be
            saved.

    Saves always target :attr:`RuntimeContext.settings.data_file`. Catalog
    buckets and cached reports stay valid because nothing is reloaded.
    """
    context.store.dump(context.workbook)
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook and record store, discarding unsaved changes.

    Returns:
        RuntimeContext: Fresh context with a newly loaded store, empty catalog
            buckets, and an empty report cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    store = RecordStore()
    store.load(workbook)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(
        settings=context.settings,
        workbook=workbook,
        store=store,
        report_cache=ReportCache(context.settings.report_cache_ttl),
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def list_cylinder_sizes(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.CylinderSizeRow]:
    """Return the tenant's cylinder sizes, active ones only by default."""

    bucket = _sizes_bucket(context)
    return list(bucket["all"] if include_inactive else bucket["active"])


def list_products(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.ProductRow]:
    bucket = _products_bucket(context)
    return list(bucket["all"] if include_inactive else bucket["active"])


def list_drivers(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.DriverRow]:
    bucket = _drivers_bucket(context)
    return list(bucket["all"] if include_inactive else bucket["active"])


def list_driver_baselines(context: RuntimeContext) -> List[data_manager.DriverBaselineRow]:
    return list(_baselines_bucket(context)["all"])


def get_cylinder_size(context: RuntimeContext, cylinder_size_id: str) -> data_manager.CylinderSizeRow:
    """Resolve a cylinder size by its identifier.

    Raises:
        MissingReferenceError: If the tenant has no such size.
    """
    try:
        return _sizes_bucket(context)["by_id"][cylinder_size_id]
    except KeyError as exc:
        log.warning("Cylinder size lookup failed for id '%s'", cylinder_size_id)
        raise MissingReferenceError(f"Unknown cylinder size id: {cylinder_size_id}") from exc


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product by its identifier.

    Raises:
        MissingReferenceError: If the tenant has no such product.
    """
    try:
        return _products_bucket(context)["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def get_driver(context: RuntimeContext, driver_id: str) -> data_manager.DriverRow:
    try:
        return _drivers_bucket(context)["by_id"][driver_id]
    except KeyError as exc:
        log.warning("Driver lookup failed for id '%s'", driver_id)
        raise MissingReferenceError(f"Unknown driver id: {driver_id}") from exc


def add_cylinder_size(
    context: RuntimeContext, cylinder_size_id: str, label: str, *, low_stock_threshold: int = 0
) -> data_manager.CylinderSizeRow:
    """Register a new cylinder size for the tenant.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        cylinder_size_id (str): Identifier of the size, e.g. ``"12L"``.
        label (str): Human readable label.
        low_stock_threshold (int): Full cylinder count at or below which the
            size is reported by :func:`check_low_stock`.

    Returns:
        data_manager.CylinderSizeRow: The appended row.

    Raises:
        BusinessRuleViolation: If the identifier is already in use.
        ValueError: If ``low_stock_threshold`` is negative.
    """
    if cylinder_size_id in _sizes_bucket(context)["by_id"]:
        log.warning("Duplicate cylinder size id '%s'", cylinder_size_id)
        raise BusinessRuleViolation(f"Cylinder size '{cylinder_size_id}' already exists")
    if low_stock_threshold < 0:
        raise ValueError("Low stock threshold must be zero or positive")

    row = data_manager.CylinderSizeRow(
        tenant_id=context.tenant_id,
        cylinder_size_id=cylinder_size_id,
        label=label,
        low_stock_threshold=low_stock_threshold,
        is_active=True,
    )
    data_manager.append_cylinder_size(context.workbook, row)
    _invalidate_cache(context, "sizes")
    context.report_cache.invalidate_tenant(context.tenant_id)
    log.info("Added cylinder size '%s' (%s)", cylinder_size_id, label)
    return row


def add_product(
    context: RuntimeContext,
    product_id: str,
    cylinder_size_id: str,
    product_name: str,
    *,
    company_id: str = "",
) -> data_manager.ProductRow:
    """Register a product bound to an existing cylinder size.

    The size reference is fixed at creation; no operation changes it later.

    Raises:
        BusinessRuleViolation: If the product id is already in use.
        MissingReferenceError: If the size does not exist.
    """
    if product_id in _products_bucket(context)["by_id"]:
        log.warning("Duplicate product id '%s'", product_id)
        raise BusinessRuleViolation(f"Product '{product_id}' already exists")
    get_cylinder_size(context, cylinder_size_id)

    row = data_manager.ProductRow(
        tenant_id=context.tenant_id,
        product_id=product_id,
        company_id=company_id,
        product_name=product_name,
        cylinder_size_id=cylinder_size_id,
        is_active=True,
    )
    data_manager.append_product(context.workbook, row)
    _invalidate_cache(context, "products")
    log.info("Added product '%s' of size '%s'", product_id, cylinder_size_id)
    return row


def add_driver(context: RuntimeContext, driver_id: str, driver_name: str) -> data_manager.DriverRow:
    if driver_id in _drivers_bucket(context)["by_id"]:
        log.warning("Duplicate driver id '%s'", driver_id)
        raise BusinessRuleViolation(f"Driver '{driver_id}' already exists")

    row = data_manager.DriverRow(
        tenant_id=context.tenant_id,
        driver_id=driver_id,
        driver_name=driver_name,
        is_active=True,
    )
    data_manager.append_driver(context.workbook, row)
    _invalidate_cache(context, "drivers")
    log.info("Added driver '%s'", driver_id)
    return row


def add_driver_baseline(
    context: RuntimeContext,
    driver_id: str,
    cylinder_size_id: str,
    baseline_date: date,
    *,
    cylinder_receivables: int = 0,
    cash_receivables: Any = 0,
) -> data_manager.DriverBaselineRow:
    """Record what a driver owed for one size when the tenant was onboarded.

    Raises:
        MissingReferenceError: If the driver or size is unknown.
        ValueError: If either amount is negative.
    """
    get_driver(context, driver_id)
    get_cylinder_size(context, cylinder_size_id)
    cash = data_manager.to_money(cash_receivables)
    if cylinder_receivables < 0 or cash < 0:
        log.error("Negative driver baseline for '%s': %s / %s", driver_id, cylinder_receivables, cash)
        raise ValueError("Driver baselines must be zero or positive")

    row = data_manager.DriverBaselineRow(
        tenant_id=context.tenant_id,
        driver_id=driver_id,
        cylinder_size_id=cylinder_size_id,
        baseline_date=baseline_date,
        cylinder_receivables=cylinder_receivables,
        cash_receivables=cash,
    )
    data_manager.append_driver_baseline(context.workbook, row)
    _invalidate_cache(context, "baselines")
    context.report_cache.invalidate_tenant(context.tenant_id)
    log.info("Added receivables baseline for driver '%s' size '%s'", driver_id, cylinder_size_id)
    return row


_ACTIVATION_TARGETS: Dict[str, Tuple[SheetName, str, str, Callable[[RuntimeContext, str], Any]]] = {
    "size": (SheetName.CYLINDER_SIZES, "CylinderSizeID", "sizes", get_cylinder_size),
    "product": (SheetName.PRODUCTS, "ProductID", "products", get_product),
    "driver": (SheetName.DRIVERS, "DriverID", "drivers", get_driver),
}


def set_catalog_active(context: RuntimeContext, kind: str, record_id: str, *, active: bool) -> Any:
    """Activate or deactivate a cylinder size, product, or driver in place.

    The row stays on its sheet and every ledger entry that references it is
    kept. New events naming an inactive size or product are rejected with
    ``INACTIVE_REFERENCE``, and an inactive size drops out of daily reports.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        kind (str): One of ``"size"``, ``"product"``, or ``"driver"``.
        record_id (str): Identifier of the catalog entry.
        active (bool): Target state of the ``IsActive`` flag.

    Returns:
        The catalog row after the change.

    Raises:
        KeyError: If ``kind`` is not a catalog kind.
        MissingReferenceError: If the tenant has no such entry.
        BusinessRuleViolation: If the unassigned driver would be deactivated.
    """
    if kind not in _ACTIVATION_TARGETS:
        raise KeyError(f"Unknown catalog kind: {kind}")
    sheet, id_column, bucket_name, resolve = _ACTIVATION_TARGETS[kind]
    current = resolve(context, record_id)
    if kind == "driver" and record_id == UNASSIGNED_DRIVER and not active:
        raise BusinessRuleViolation("The unassigned driver cannot be deactivated")
    if current.is_active == active:
        return current

    data_manager.update_row(
        context.workbook,
        sheet.value,
        {"TenantID": context.tenant_id, id_column: record_id},
        field_values={"IsActive": active},
    )
    _invalidate_cache(context, bucket_name)
    context.report_cache.invalidate_tenant(context.tenant_id)
    log.info("%s %s '%s'", "Activated" if active else "Deactivated", kind, record_id)
    return resolve(context, record_id)


# ---------------------------------------------------------------------------
# Event ingestion
# ---------------------------------------------------------------------------


def generate_event_id(*, prefix: str = "E", when: Optional[datetime] = None) -> str:
    """Generate a sortable event identifier using UTC timestamps.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """
    when = when or datetime.now(UTC)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def build_catalog_context(context: RuntimeContext, *, today: Optional[date] = None) -> CatalogContext:
    """Snapshot the catalog and event history the validator checks against."""

    tenant_id = context.tenant_id
    store = context.store
    return CatalogContext(
        tenant_id=tenant_id,
        sizes=dict(_sizes_bucket(context)["by_id"]),
        products=dict(_products_bucket(context)["by_id"]),
        onboarded=frozenset((row.cylinder_size_id, row.product_id) for row in store.onboarding_rows(tenant_id)),
        sizes_with_events=frozenset(store.sizes_with_activity(tenant_id)),
        known_shipments=frozenset(record.shipment_id for record in store.shipments(tenant_id)),
        today=_resolve_today(today),
    )


def ingest_event(context: RuntimeContext, event: LedgerEvent, *, today: Optional[date] = None) -> IngestResult:
    """Normalize, validate, and merge one event into the ledger.

    Ordering violations abort with :class:`SequenceError` and nothing is
    committed. Other validation failures come back as a ``REJECTED`` result.
    A re-delivered event is reported as ``DUPLICATE`` without touching the
    ledger, and a merge that breaks the balance invariant is committed as
    ``FLAGGED``. Every applied event evicts the tenant's cached reports.

    Args:
        context (RuntimeContext): Runtime context providing the store and
            catalog.
        event (LedgerEvent): Raw onboarding, sale, shipment, or stock count
            event.
        today (date | None): Reference day for the future-date rule; defaults
            to the current UTC date.

    Returns:
        IngestResult: Status, violations, and the stored record.

    Raises:
        SequenceError: If the event breaks the onboarding-first ordering.
        StoreUnavailableError: If the record store cannot be reached.
    """
    delta = normalize_event(context.tenant_id, event)
    violations = validate_delta(delta, build_catalog_context(context, today=today))

    sequence = [v for v in violations if v.code in SEQUENCE_CODES]
    if sequence:
        log.warning("Sequence violation for event '%s': %s", delta.event_id, "; ".join(v.message for v in sequence))
        raise SequenceError(sequence)
    if violations:
        log.warning(
            "Rejected event '%s': %s",
            delta.event_id,
            "; ".join(f"{v.field}: {v.message}" for v in violations),
        )
        return IngestResult(IngestStatus.REJECTED, delta.event_id, violations=tuple(violations))

    outcome = LedgerMergeEngine(context.store).apply(delta)
    if outcome.duplicate:
        return IngestResult(IngestStatus.DUPLICATE, delta.event_id, record=outcome.record)

    context.report_cache.invalidate_tenant(context.tenant_id)
    status = IngestStatus.FLAGGED if outcome.conflict is not None else IngestStatus.APPLIED
    log.info("Applied %s event '%s' to %s", delta.kind.value, delta.event_id, delta.key)
    return IngestResult(status, delta.event_id, record=outcome.record, conflict=outcome.conflict)


def ingest_batch(
    context: RuntimeContext, events: Iterable[LedgerEvent], *, today: Optional[date] = None
) -> List[IngestResult]:
    """Ingest events in order, turning sequence errors into rejected results."""

    results: List[IngestResult] = []
    for event in events:
        try:
            results.append(ingest_event(context, event, today=today))
        except SequenceError as exc:
            results.append(IngestResult(IngestStatus.REJECTED, event.event_id, violations=exc.violations))
    applied = sum(1 for result in results if result.status in (IngestStatus.APPLIED, IngestStatus.FLAGGED))
    log.info("Ingested batch of %d events (%d applied)", len(results), applied)
    return results


def get_shipment(context: RuntimeContext, shipment_id: str) -> ShipmentRecord:
    record = context.store.get_shipment(context.tenant_id, shipment_id)
    if record is None:
        log.warning("Shipment lookup failed for id '%s'", shipment_id)
        raise MissingReferenceError(f"Unknown shipment id: {shipment_id}")
    return record


def update_shipment_status(
    context: RuntimeContext,
    shipment_id: str,
    status: ShipmentStatus,
    *,
    when: Optional[datetime] = None,
    event_id: Optional[str] = None,
    today: Optional[date] = None,
) -> IngestResult:
    """Feed a status change of a known shipment through the pipeline.

    Completing a shipment books its completed-only quantities on the shipment
    date and reopens the carry-forward from there. ``when`` (UTC now by
    default) is kept as the completion instant for the outstanding view.

    Raises:
        MissingReferenceError: If the shipment is unknown.
        BusinessRuleViolation: If the shipment is already completed or
            cancelled.
    """
    record = get_shipment(context, shipment_id)
    if record.status in (ShipmentStatus.COMPLETED, ShipmentStatus.CANCELLED):
        log.warning("Shipment '%s' is already %s", shipment_id, record.status.value)
        raise BusinessRuleViolation(f"Shipment '{shipment_id}' is already {record.status.value}")

    when = when or datetime.now(UTC)
    event = ShipmentEvent(
        event_id=event_id or generate_event_id(prefix="S", when=when),
        shipment_id=record.shipment_id,
        date=record.shipment_date,
        product_id=record.product_id,
        cylinder_size_id=record.cylinder_size_id,
        direction=record.direction,
        quantity=record.quantity,
        cost=record.cost,
        is_refill_purchase=record.is_refill_purchase,
        status=ShipmentStatus(status),
        completed_at=when if status is ShipmentStatus.COMPLETED else None,
        is_status_update=True,
    )
    return ingest_event(context, event, today=today)


def complete_shipment(
    context: RuntimeContext,
    shipment_id: str,
    *,
    completed_at: Optional[datetime] = None,
    event_id: Optional[str] = None,
    today: Optional[date] = None,
) -> IngestResult:
    return update_shipment_status(
        context, shipment_id, ShipmentStatus.COMPLETED, when=completed_at, event_id=event_id, today=today
    )


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def build_daily_ledger(
    context: RuntimeContext,
    date_from: date,
    date_to: date,
    *,
    cancel_event: Optional[threading.Event] = None,
    resume: Optional[RecomputeResult] = None,
) -> RecomputeResult:
    """Compute the daily ledger of every active size over a date range.

    Results for a fully successful range are cached per tenant and range until
    the TTL expires or the tenant ingests another event.

    Args:
        context (RuntimeContext): Runtime context providing the store,
            catalog, and ``[Ledger]`` settings.
        date_from (date): First reported day.
        date_to (date): Last reported day.
        cancel_event (threading.Event | None): Cooperative cancellation flag.
        resume (RecomputeResult | None): Partial result to continue from.

    Returns:
        RecomputeResult: Reports and per-day status for the range.

    Raises:
        ReconstructionError: If every day of the range failed.
        ValueError: If the range is inverted.
    """
    key = (context.tenant_id, "ledger", date_from, date_to)
    if resume is None:
        cached = context.report_cache.get(key)
        if cached is not None:
            log.debug("Serving ledger %s..%s from cache", date_from, date_to)
            return cached

    settings = context.settings
    result = recompute_range(
        context.store,
        context.tenant_id,
        date_from,
        date_to,
        size_ids=[size.cylinder_size_id for size in list_cylinder_sizes(context)],
        workers=settings.workers,
        unit_timeout=settings.unit_timeout_seconds or None,
        cancel_event=cancel_event,
        resume=resume,
        baselines=list_driver_baselines(context),
    )
    statuses = list(result.day_status.values())
    if statuses and all(status is DayStatus.FAILED for status in statuses):
        log.error("Ledger reconstruction failed for every day in %s..%s", date_from, date_to)
        raise ReconstructionError(f"Could not reconstruct any day between {date_from} and {date_to}")
    if result.is_complete and DayStatus.FAILED not in statuses:
        context.report_cache.put(key, result)
    return result


def list_outstanding(
    context: RuntimeContext, as_of: date, direction: Optional[ShipmentDirection] = None
) -> List[ShipmentRecord]:
    """Return shipments outstanding at the end of ``as_of``, optionally by direction."""

    directions = [ShipmentDirection(direction)] if direction is not None else list(ShipmentDirection)
    records: List[ShipmentRecord] = []
    for item in directions:
        records.extend(outstanding_as_of(context.store, context.tenant_id, as_of, item))
    records.sort(key=lambda record: (record.shipment_date, record.shipment_id))
    return records


def receivables_position(context: RuntimeContext, as_of: date) -> ReceivablesPosition:
    key = (context.tenant_id, "receivables", as_of)
    cached = context.report_cache.get(key)
    if cached is not None:
        return cached
    position = ReceivablesReconciler(context.store, list_driver_baselines(context)).position_as_of(
        context.tenant_id, as_of
    )
    context.report_cache.put(key, position)
    return position


def snapshot_receivables(context: RuntimeContext, as_of: date) -> int:
    """Append the receivable position of ``as_of`` to the snapshot history."""

    return record_snapshots(context.store, receivables_position(context, as_of))


def check_low_stock(context: RuntimeContext, as_of: date) -> List[LowStockAlert]:
    """List sizes whose full cylinders are at or below their threshold.

    Sizes whose day could not be computed are skipped rather than reported.
    """
    report = build_daily_ledger(context, as_of, as_of).reports[as_of]
    alerts: List[LowStockAlert] = []
    for size in list_cylinder_sizes(context):
        breakdown = report.per_size_breakdown.get(size.cylinder_size_id)
        if breakdown is None:
            continue
        if breakdown.full_cylinders <= size.low_stock_threshold:
            alerts.append(
                LowStockAlert(
                    cylinder_size_id=size.cylinder_size_id,
                    label=size.label,
                    full_cylinders=breakdown.full_cylinders,
                    threshold=size.low_stock_threshold,
                )
            )
    if alerts:
        log.warning("Low stock on %s for sizes: %s", as_of, ", ".join(a.cylinder_size_id for a in alerts))
    return alerts


def check_shipment_availability(
    context: RuntimeContext,
    cylinder_size_id: str,
    direction: ShipmentDirection,
    quantity: int,
    *,
    is_refill_purchase: bool = False,
    as_of: Optional[date] = None,
) -> List[Violation]:
    """Warn when a planned shipment exceeds the stock available on ``as_of``.

    Full stock is the computed full cylinder balance; empty stock excludes
    cylinders still owed by drivers.

    Raises:
        MissingReferenceError: If the size is unknown.
    """
    get_cylinder_size(context, cylinder_size_id)
    day = _resolve_today(as_of)
    report = build_daily_ledger(context, day, day).reports[day]
    breakdown = report.per_size_breakdown.get(cylinder_size_id)
    full = breakdown.full_cylinders if breakdown is not None else 0
    empty = breakdown.empty_cylinders_in_stock if breakdown is not None else 0
    warnings = check_availability(direction, is_refill_purchase, quantity, full, empty)
    for warning in warnings:
        log.warning("Availability check for size '%s': %s", cylinder_size_id, warning.message)
    return warnings
