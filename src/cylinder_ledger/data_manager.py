"""Data access layer for the cylinder ledger.

This module provides low-level helpers that read from and write to the
ledger workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records, appending catalog rows, and
   rewriting the ledger sheets owned by the record store.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, fields
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, TypeVar

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    MONEY_QUANTUM,
    NO_PRODUCT,
    ZERO_MONEY,
    SaleType,
    SheetName,
    ShipmentDirection,
    ShipmentStatus,
)


CONFIG_FILE_NAME = "config.ini"
DEFAULT_WORKERS = 4
DEFAULT_UNIT_TIMEOUT_SECONDS = 0.0
DEFAULT_REPORT_CACHE_TTL = 300.0

RowT = TypeVar("RowT")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    tenant_id: str
    schema_version: str
    workers: int = DEFAULT_WORKERS
    unit_timeout_seconds: float = DEFAULT_UNIT_TIMEOUT_SECONDS
    report_cache_ttl: float = DEFAULT_REPORT_CACHE_TTL


@dataclass(frozen=True)
class CylinderSizeRow:
    """In-memory view of a row from the ``CylinderSizes`` sheet."""

    tenant_id: str
    cylinder_size_id: str
    label: str
    low_stock_threshold: int
    is_active: bool


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    tenant_id: str
    product_id: str
    company_id: str
    product_name: str
    cylinder_size_id: str
    is_active: bool


@dataclass(frozen=True)
class DriverRow:
    """In-memory view of a row from the ``Drivers`` sheet."""

    tenant_id: str
    driver_id: str
    driver_name: str
    is_active: bool


@dataclass(frozen=True)
class DriverBaselineRow:
    """Opening receivables owed by a driver when the tenant was onboarded."""

    tenant_id: str
    driver_id: str
    cylinder_size_id: str
    baseline_date: date
    cylinder_receivables: int
    cash_receivables: Decimal


@dataclass(frozen=True, order=True)
class LedgerKey:
    """Identity of one per-day ledger record.

    Aggregate-by-size rows carry :data:`~cylinder_ledger.constants.NO_PRODUCT`
    as their product id.
    """

    tenant_id: str
    date: date
    product_id: str
    cylinder_size_id: str

    @property
    def is_size_row(self) -> bool:
        return self.product_id == NO_PRODUCT


@dataclass(frozen=True)
class LedgerDay:
    """Per-day ledger record for one (tenant, date, product, size) key."""

    tenant_id: str
    date: date
    product_id: str
    cylinder_size_id: str
    # onboarding baseline
    onboarding_date: Optional[date] = None
    onboarding_full_cylinders: Optional[int] = None
    onboarding_empty_cylinders: Optional[int] = None
    onboarding_cylinder_receivables: Optional[int] = None
    # flows
    package_sales_quantity: int = 0
    refill_sales_quantity: int = 0
    package_sales_revenue: Decimal = ZERO_MONEY
    refill_sales_revenue: Decimal = ZERO_MONEY
    sales_discount: Decimal = ZERO_MONEY
    cash_deposited: Decimal = ZERO_MONEY
    cylinders_deposited: int = 0
    package_purchase: int = 0
    refill_purchase: int = 0
    all_refill_purchase: int = 0
    incoming_full_quantity: int = 0
    incoming_empty_quantity: int = 0
    outgoing_full_quantity: int = 0
    outgoing_empty_quantity: int = 0
    shipment_cost: Decimal = ZERO_MONEY
    # point-in-time balances
    full_cylinders: Optional[int] = None
    empty_cylinders: Optional[int] = None
    total_cylinders: Optional[int] = None
    empty_cylinder_receivables: Optional[int] = None
    total_cash_receivables: Optional[Decimal] = None
    total_cylinder_receivables: Optional[int] = None
    needs_review: bool = False

    @property
    def key(self) -> LedgerKey:
        return LedgerKey(self.tenant_id, self.date, self.product_id, self.cylinder_size_id)

    @property
    def is_onboarded(self) -> bool:
        return self.onboarding_date is not None

    @property
    def has_balances(self) -> bool:
        return self.full_cylinders is not None and self.empty_cylinders is not None

    @classmethod
    def empty_for(cls, key: LedgerKey) -> "LedgerDay":
        return cls(
            tenant_id=key.tenant_id,
            date=key.date,
            product_id=key.product_id,
            cylinder_size_id=key.cylinder_size_id,
        )


@dataclass(frozen=True)
class ShipmentRecord:
    """Registry entry for a shipment, including its completion instant."""

    tenant_id: str
    shipment_id: str
    shipment_date: date
    product_id: str
    cylinder_size_id: str
    direction: ShipmentDirection
    quantity: int
    cost: Decimal
    is_refill_purchase: bool
    status: ShipmentStatus
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class SaleRecord:
    """Registry entry for a completed sale."""

    tenant_id: str
    sale_id: str
    sale_date: date
    driver_id: str
    product_id: str
    cylinder_size_id: str
    sale_type: SaleType
    quantity: int
    revenue: Decimal
    discount: Decimal
    cash_deposited: Decimal
    cylinders_deposited: int


@dataclass(frozen=True)
class SeenEventRow:
    """Deduplication index entry for an accumulated event."""

    key: LedgerKey
    event_id: str


@dataclass(frozen=True)
class DirtyMarkerRow:
    """Earliest date whose persisted balances are stale for one size."""

    tenant_id: str
    cylinder_size_id: str
    dirty_from: date


@dataclass(frozen=True)
class DriverReceivableSnapshot:
    """Point-in-time receivable balance owed by a driver for one size."""

    tenant_id: str
    driver_id: str
    snapshot_date: date
    cylinder_size_id: str
    cylinder_balance: int
    cash_balance: Decimal


@dataclass(frozen=True)
class StockCountRecord:
    """Manual count of the cylinders physically present at the end of a day."""

    tenant_id: str
    count_id: str
    count_date: date
    cylinder_size_id: str
    full_cylinders: int
    empty_cylinders: int


LEDGER_FLOW_FIELDS: tuple[str, ...] = tuple(
    f.name for f in fields(LedgerDay) if f.name not in {"tenant_id", "date", "product_id", "cylinder_size_id"}
)


def _camel(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in name.split("_"))


SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.CYLINDER_SIZES.value: ["TenantID", "CylinderSizeID", "Label", "LowStockThreshold", "IsActive"],
    SheetName.PRODUCTS.value: [
        "TenantID",
        "ProductID",
        "CompanyID",
        "ProductName",
        "CylinderSizeID",
        "IsActive",
    ],
    SheetName.DRIVERS.value: ["TenantID", "DriverID", "DriverName", "IsActive"],
    SheetName.DRIVER_BASELINES.value: [
        "TenantID",
        "DriverID",
        "CylinderSizeID",
        "BaselineDate",
        "CylinderReceivables",
        "CashReceivables",
    ],
    SheetName.LEDGER_DAYS.value: ["TenantID", "Date", "ProductID", "CylinderSizeID"]
    + [_camel(name) for name in LEDGER_FLOW_FIELDS],
    SheetName.SHIPMENTS.value: [
        "TenantID",
        "ShipmentID",
        "ShipmentDate",
        "ProductID",
        "CylinderSizeID",
        "Direction",
        "Quantity",
        "Cost",
        "IsRefillPurchase",
        "Status",
        "CompletedAt",
    ],
    SheetName.SALES.value: [
        "TenantID",
        "SaleID",
        "SaleDate",
        "DriverID",
        "ProductID",
        "CylinderSizeID",
        "SaleType",
        "Quantity",
        "Revenue",
        "Discount",
        "CashDeposited",
        "CylindersDeposited",
    ],
    SheetName.SEEN_EVENTS.value: ["TenantID", "Date", "ProductID", "CylinderSizeID", "EventID"],
    SheetName.DIRTY_MARKERS.value: ["TenantID", "CylinderSizeID", "DirtyFrom"],
    SheetName.RECEIVABLE_SNAPSHOTS.value: [
        "TenantID",
        "DriverID",
        "SnapshotDate",
        "CylinderSizeID",
        "CylinderBalance",
        "CashBalance",
    ],
    SheetName.STOCK_COUNTS.value: [
        "TenantID",
        "CountID",
        "CountDate",
        "CylinderSizeID",
        "FullCylinders",
        "EmptyCylinders",
    ],
}


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. The ``[Ledger]`` section is optional
    and every option in it falls back to a module default. Relative data file
    paths are anchored to ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If a ``[Ledger]`` option is not numeric or out of range.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        tenant_id = parser.get("System", "TenantId")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    workers = parser.getint("Ledger", "Workers", fallback=DEFAULT_WORKERS)
    unit_timeout = parser.getfloat("Ledger", "UnitTimeoutSeconds", fallback=DEFAULT_UNIT_TIMEOUT_SECONDS)
    cache_ttl = parser.getfloat("Ledger", "ReportCacheTTL", fallback=DEFAULT_REPORT_CACHE_TTL)
    if workers < 1:
        raise ValueError(f"Ledger.Workers must be at least 1, got {workers}")
    if unit_timeout < 0 or cache_ttl < 0:
        raise ValueError("Ledger timeouts must be zero or positive")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        tenant_id=tenant_id,
        schema_version=schema_version,
        workers=workers,
        unit_timeout_seconds=unit_timeout,
        report_cache_ttl=cache_ttl,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet(workbook: Workbook, sheet_name: str, deserializer: Callable[[Sequence[object]], RowT]) -> Iterable[RowT]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserializer(raw)


def iter_cylinder_sizes(workbook: Workbook) -> Iterable[CylinderSizeRow]:
    """Iterate over cylinder size records stored on the ``CylinderSizes`` sheet."""

    return _iter_sheet(workbook, SheetName.CYLINDER_SIZES.value, deserialize_cylinder_size)


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` sheet."""

    return _iter_sheet(workbook, SheetName.PRODUCTS.value, deserialize_product)


def iter_drivers(workbook: Workbook) -> Iterable[DriverRow]:
    """Iterate over driver records stored on the ``Drivers`` sheet."""

    return _iter_sheet(workbook, SheetName.DRIVERS.value, deserialize_driver)


def iter_driver_baselines(workbook: Workbook) -> Iterable[DriverBaselineRow]:
    return _iter_sheet(workbook, SheetName.DRIVER_BASELINES.value, deserialize_driver_baseline)


def iter_ledger_days(workbook: Workbook) -> Iterable[LedgerDay]:
    """Stream ledger records from the ``LedgerDays`` sheet.

    Optional balance columns remain ``None`` when blank so the carry-forward
    calculator can tell "never computed" apart from a computed zero.
    """

    return _iter_sheet(workbook, SheetName.LEDGER_DAYS.value, deserialize_ledger_day)


def iter_shipments(workbook: Workbook) -> Iterable[ShipmentRecord]:
    return _iter_sheet(workbook, SheetName.SHIPMENTS.value, deserialize_shipment)


def iter_sales(workbook: Workbook) -> Iterable[SaleRecord]:
    return _iter_sheet(workbook, SheetName.SALES.value, deserialize_sale)


def iter_seen_events(workbook: Workbook) -> Iterable[SeenEventRow]:
    return _iter_sheet(workbook, SheetName.SEEN_EVENTS.value, deserialize_seen_event)


def iter_dirty_markers(workbook: Workbook) -> Iterable[DirtyMarkerRow]:
    return _iter_sheet(workbook, SheetName.DIRTY_MARKERS.value, deserialize_dirty_marker)


def iter_receivable_snapshots(workbook: Workbook) -> Iterable[DriverReceivableSnapshot]:
    return _iter_sheet(workbook, SheetName.RECEIVABLE_SNAPSHOTS.value, deserialize_receivable_snapshot)


def iter_stock_counts(workbook: Workbook) -> Iterable[StockCountRecord]:
    return _iter_sheet(workbook, SheetName.STOCK_COUNTS.value, deserialize_stock_count)


def append_cylinder_size(workbook: Workbook, record: CylinderSizeRow) -> None:
    """Append a cylinder size record to the ``CylinderSizes`` worksheet."""

    workbook[SheetName.CYLINDER_SIZES.value].append(serialize_cylinder_size(record))


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[SheetName.PRODUCTS.value].append(serialize_product(record))


def append_driver(workbook: Workbook, record: DriverRow) -> None:
    """Append a driver record to the ``Drivers`` worksheet."""

    workbook[SheetName.DRIVERS.value].append(serialize_driver(record))


def append_driver_baseline(workbook: Workbook, record: DriverBaselineRow) -> None:
    workbook[SheetName.DRIVER_BASELINES.value].append(serialize_driver_baseline(record))


def update_row(workbook: Workbook, sheet_name: str, criteria: Mapping[str, object], *, field_values: dict[str, Any]) -> None:
    """Update selected columns for the row matching ``criteria``.

    Only the specified fields are modified, leaving other columns untouched.

    Args:
        workbook (Workbook): Workbook containing the sheet.
        sheet_name (str): Worksheet to modify.
        criteria (Mapping[str, object]): Column/value pairs identifying the row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, criteria)
    if row_index is None:
        raise KeyError(f"Row not found in {sheet_name}: {dict(criteria)}")

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)

    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field}")
        sheet.cell(row=row_index, column=header_map[field], value=value)


def _header_map(sheet: Any) -> dict[str, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def locate_row(workbook: Workbook, sheet_name: str, criteria: Mapping[str, object]) -> Optional[int]:
    """Find the first row whose cells match every column/value pair in ``criteria``.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If a criteria column is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    for column in criteria:
        if column not in header_map:
            raise KeyError(f"Unknown column: {column}")

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if all(row[header_map[column] - 1] == value for column, value in criteria.items()):
            return row_idx

    return None


def replace_sheet_rows(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> int:
    """Rewrite every data row of ``sheet_name`` keeping the header row.

    The record store owns the ledger sheets and dumps its full state on
    persist, so rewriting is simpler and safer than row-level patching.

    Returns:
        int: Number of data rows written.
    """

    sheet = workbook[sheet_name]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    count = 0
    # explicit coordinates; append() keeps its cursor past deleted rows
    for row_idx, row in enumerate(rows, start=2):
        for col_idx, value in enumerate(row, start=1):
            sheet.cell(row=row_idx, column=col_idx, value=value)
        count += 1
    log.debug("Rewrote sheet '%s' with %d rows", sheet_name, count)
    return count


# ---------------------------------------------------------------------------
# Cell coercion helpers
# ---------------------------------------------------------------------------


def to_money(raw: object) -> Decimal:
    """Coerce a cell value into a two-place :class:`~decimal.Decimal`."""

    if raw is None or raw == "":
        return ZERO_MONEY
    return Decimal(str(raw)).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def _optional_money(raw: object) -> Optional[Decimal]:
    return None if raw is None or raw == "" else to_money(raw)


def _to_int(raw: object) -> int:
    if raw is None or raw == "":
        return 0
    return int(Decimal(str(raw)))


def _optional_int(raw: object) -> Optional[int]:
    return None if raw is None or raw == "" else _to_int(raw)


def to_date(raw: object) -> date:
    """Coerce ISO strings and Excel datetimes into :class:`~datetime.date`."""

    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw))


def _optional_date(raw: object) -> Optional[date]:
    return None if raw is None or raw == "" else to_date(raw)


def _optional_datetime(raw: object) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    value = raw if isinstance(raw, datetime) else datetime.fromisoformat(str(raw))
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------


def serialize_cylinder_size(record: CylinderSizeRow) -> list[object]:
    return [record.tenant_id, record.cylinder_size_id, record.label, record.low_stock_threshold, record.is_active]


def serialize_product(record: ProductRow) -> list[object]:
    return [
        record.tenant_id,
        record.product_id,
        record.company_id,
        record.product_name,
        record.cylinder_size_id,
        record.is_active,
    ]


def serialize_driver(record: DriverRow) -> list[object]:
    return [record.tenant_id, record.driver_id, record.driver_name, record.is_active]


def serialize_driver_baseline(record: DriverBaselineRow) -> list[object]:
    return [
        record.tenant_id,
        record.driver_id,
        record.cylinder_size_id,
        _iso(record.baseline_date),
        record.cylinder_receivables,
        record.cash_receivables,
    ]


def serialize_ledger_day(record: LedgerDay) -> list[object]:
    """Convert a ledger record into the ``LedgerDays`` column order.

    Dates are written as ISO strings; numeric fields keep their Python types
    so Excel preserves precision.
    """

    values: list[object] = [record.tenant_id, _iso(record.date), record.product_id, record.cylinder_size_id]
    for name in LEDGER_FLOW_FIELDS:
        value = getattr(record, name)
        values.append(_iso(value) if isinstance(value, date) else value)
    return values


def serialize_shipment(record: ShipmentRecord) -> list[object]:
    return [
        record.tenant_id,
        record.shipment_id,
        _iso(record.shipment_date),
        record.product_id,
        record.cylinder_size_id,
        record.direction.value,
        record.quantity,
        record.cost,
        record.is_refill_purchase,
        record.status.value,
        record.completed_at.isoformat() if record.completed_at is not None else None,
    ]


def serialize_sale(record: SaleRecord) -> list[object]:
    return [
        record.tenant_id,
        record.sale_id,
        _iso(record.sale_date),
        record.driver_id,
        record.product_id,
        record.cylinder_size_id,
        record.sale_type.value,
        record.quantity,
        record.revenue,
        record.discount,
        record.cash_deposited,
        record.cylinders_deposited,
    ]


def serialize_seen_event(record: SeenEventRow) -> list[object]:
    key = record.key
    return [key.tenant_id, _iso(key.date), key.product_id, key.cylinder_size_id, record.event_id]


def serialize_dirty_marker(record: DirtyMarkerRow) -> list[object]:
    return [record.tenant_id, record.cylinder_size_id, _iso(record.dirty_from)]


def serialize_receivable_snapshot(record: DriverReceivableSnapshot) -> list[object]:
    return [
        record.tenant_id,
        record.driver_id,
        _iso(record.snapshot_date),
        record.cylinder_size_id,
        record.cylinder_balance,
        record.cash_balance,
    ]


def serialize_stock_count(record: StockCountRecord) -> list[object]:
    return [
        record.tenant_id,
        record.count_id,
        _iso(record.count_date),
        record.cylinder_size_id,
        record.full_cylinders,
        record.empty_cylinders,
    ]


# ---------------------------------------------------------------------------
# Deserializers
# ---------------------------------------------------------------------------


def deserialize_cylinder_size(raw_row: Sequence[object]) -> CylinderSizeRow:
    """Convert a raw worksheet row into a typed cylinder size record.

    Identifiers are coerced to ``str`` to avoid surprises caused by Excel
    interpreting labels such as ``12`` as numbers.
    """

    tenant_id, size_id, label, threshold, is_active = raw_row[:5]
    return CylinderSizeRow(
        tenant_id=str(tenant_id),
        cylinder_size_id=str(size_id),
        label=str(label) if label is not None else str(size_id),
        low_stock_threshold=_to_int(threshold),
        is_active=bool(is_active),
    )


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    tenant_id, product_id, company_id, product_name, size_id, is_active = raw_row[:6]
    return ProductRow(
        tenant_id=str(tenant_id),
        product_id=str(product_id),
        company_id=str(company_id) if company_id is not None else "",
        product_name=str(product_name) if product_name is not None else "",
        cylinder_size_id=str(size_id),
        is_active=bool(is_active),
    )


def deserialize_driver(raw_row: Sequence[object]) -> DriverRow:
    tenant_id, driver_id, driver_name, is_active = raw_row[:4]
    return DriverRow(
        tenant_id=str(tenant_id),
        driver_id=str(driver_id),
        driver_name=str(driver_name) if driver_name is not None else "",
        is_active=bool(is_active),
    )


def deserialize_driver_baseline(raw_row: Sequence[object]) -> DriverBaselineRow:
    tenant_id, driver_id, size_id, baseline_date, cylinders, cash = raw_row[:6]
    return DriverBaselineRow(
        tenant_id=str(tenant_id),
        driver_id=str(driver_id),
        cylinder_size_id=str(size_id),
        baseline_date=to_date(baseline_date),
        cylinder_receivables=_to_int(cylinders),
        cash_receivables=to_money(cash),
    )


_MONEY_FIELDS = frozenset(
    {
        "package_sales_revenue",
        "refill_sales_revenue",
        "sales_discount",
        "cash_deposited",
        "shipment_cost",
        "total_cash_receivables",
    }
)
_OPTIONAL_FIELDS = frozenset(
    {
        "onboarding_full_cylinders",
        "onboarding_empty_cylinders",
        "onboarding_cylinder_receivables",
        "full_cylinders",
        "empty_cylinders",
        "total_cylinders",
        "empty_cylinder_receivables",
        "total_cash_receivables",
        "total_cylinder_receivables",
    }
)


def deserialize_ledger_day(raw_row: Sequence[object]) -> LedgerDay:
    """Convert a raw ``LedgerDays`` row into a :class:`LedgerDay`.

    Money columns become two-place decimals, count columns become integers,
    and optional columns stay ``None`` when blank.
    """

    tenant_id, day, product_id, size_id = raw_row[:4]
    values: dict[str, Any] = {}
    for name, raw in zip(LEDGER_FLOW_FIELDS, raw_row[4:]):
        if name == "onboarding_date":
            values[name] = _optional_date(raw)
        elif name == "needs_review":
            values[name] = bool(raw)
        elif name in _MONEY_FIELDS:
            values[name] = _optional_money(raw) if name in _OPTIONAL_FIELDS else to_money(raw)
        else:
            values[name] = _optional_int(raw) if name in _OPTIONAL_FIELDS else _to_int(raw)
    return LedgerDay(
        tenant_id=str(tenant_id),
        date=to_date(day),
        product_id=str(product_id) if product_id is not None else NO_PRODUCT,
        cylinder_size_id=str(size_id),
        **values,
    )


def deserialize_shipment(raw_row: Sequence[object]) -> ShipmentRecord:
    (
        tenant_id,
        shipment_id,
        shipment_date,
        product_id,
        size_id,
        direction,
        quantity,
        cost,
        is_refill,
        status,
        completed_at,
    ) = raw_row[:11]
    return ShipmentRecord(
        tenant_id=str(tenant_id),
        shipment_id=str(shipment_id),
        shipment_date=to_date(shipment_date),
        product_id=str(product_id) if product_id is not None else NO_PRODUCT,
        cylinder_size_id=str(size_id),
        direction=ShipmentDirection(str(direction)),
        quantity=_to_int(quantity),
        cost=to_money(cost),
        is_refill_purchase=bool(is_refill),
        status=ShipmentStatus(str(status)),
        completed_at=_optional_datetime(completed_at),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRecord:
    (
        tenant_id,
        sale_id,
        sale_date,
        driver_id,
        product_id,
        size_id,
        sale_type,
        quantity,
        revenue,
        discount,
        cash_deposited,
        cylinders_deposited,
    ) = raw_row[:12]
    return SaleRecord(
        tenant_id=str(tenant_id),
        sale_id=str(sale_id),
        sale_date=to_date(sale_date),
        driver_id=str(driver_id),
        product_id=str(product_id),
        cylinder_size_id=str(size_id),
        sale_type=SaleType(str(sale_type)),
        quantity=_to_int(quantity),
        revenue=to_money(revenue),
        discount=to_money(discount),
        cash_deposited=to_money(cash_deposited),
        cylinders_deposited=_to_int(cylinders_deposited),
    )


def deserialize_seen_event(raw_row: Sequence[object]) -> SeenEventRow:
    tenant_id, day, product_id, size_id, event_id = raw_row[:5]
    key = LedgerKey(str(tenant_id), to_date(day), str(product_id), str(size_id))
    return SeenEventRow(key=key, event_id=str(event_id))


def deserialize_dirty_marker(raw_row: Sequence[object]) -> DirtyMarkerRow:
    tenant_id, size_id, dirty_from = raw_row[:3]
    return DirtyMarkerRow(tenant_id=str(tenant_id), cylinder_size_id=str(size_id), dirty_from=to_date(dirty_from))


def deserialize_receivable_snapshot(raw_row: Sequence[object]) -> DriverReceivableSnapshot:
    tenant_id, driver_id, snapshot_date, size_id, cylinders, cash = raw_row[:6]
    return DriverReceivableSnapshot(
        tenant_id=str(tenant_id),
        driver_id=str(driver_id),
        snapshot_date=to_date(snapshot_date),
        cylinder_size_id=str(size_id),
        cylinder_balance=_to_int(cylinders),
        cash_balance=to_money(cash),
    )


def deserialize_stock_count(raw_row: Sequence[object]) -> StockCountRecord:
    tenant_id, count_id, count_date, size_id, full, empty = raw_row[:6]
    return StockCountRecord(
        tenant_id=str(tenant_id),
        count_id=str(count_id),
        count_date=to_date(count_date),
        cylinder_size_id=str(size_id),
        full_cylinders=_to_int(full),
        empty_cylinders=_to_int(empty),
    )
