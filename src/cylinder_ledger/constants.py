"""Enumerations shared across the cylinder ledger modules.

Centralises domain constants so that the workbook layer, the ledger engine,
and the command-line front-end rely on a single source of truth for critical
identifiers.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Product key used by the aggregate-by-size ledger rows.
NO_PRODUCT = "-"

# Pseudo driver owning tenant-level onboarding receivables and driverless sales.
UNASSIGNED_DRIVER = "__unassigned__"

MONEY_QUANTUM = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")


class LedgerError(Exception):
    """Base class for every error raised by the ledger engine."""


class SaleType(str, Enum):
    """Enumerate the two ways a full cylinder leaves the depot."""

    PACKAGE = "PACKAGE"
    REFILL = "REFILL"


class ShipmentDirection(str, Enum):
    """Enumerate the shipment movements tracked by the ledger."""

    INCOMING_FULL = "INCOMING_FULL"
    INCOMING_EMPTY = "INCOMING_EMPTY"
    OUTGOING_FULL = "OUTGOING_FULL"
    OUTGOING_EMPTY = "OUTGOING_EMPTY"


class ShipmentStatus(str, Enum):
    """Enumerate shipment lifecycle states."""

    PENDING = "PENDING"
    IN_TRANSIT = "IN_TRANSIT"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class MergePolicy(str, Enum):
    """How a delta field combines with the stored value for the same key."""

    REPLACE = "REPLACE"
    ACCUMULATE = "ACCUMULATE"


class DeltaKind(str, Enum):
    """Enumerate the sources of ledger deltas."""

    ONBOARDING = "ONBOARDING"
    SALE = "SALE"
    SHIPMENT = "SHIPMENT"
    SHIPMENT_STATUS = "SHIPMENT_STATUS"
    INVENTORY_COUNT = "INVENTORY_COUNT"
    BALANCE = "BALANCE"


class DayStatus(str, Enum):
    """Per-day outcome of a recompute job."""

    OK = "OK"
    DEGRADED = "DEGRADED"
    FAILED = "FAILED"


class IngestStatus(str, Enum):
    """Outcome of feeding one event through the ledger pipeline."""

    APPLIED = "APPLIED"
    DUPLICATE = "DUPLICATE"
    REJECTED = "REJECTED"
    FLAGGED = "FLAGGED"


class ViolationCode(str, Enum):
    """Machine-readable categories for validation findings."""

    MISSING_FIELD = "MISSING_FIELD"
    FUTURE_DATE = "FUTURE_DATE"
    UNKNOWN_REFERENCE = "UNKNOWN_REFERENCE"
    INACTIVE_REFERENCE = "INACTIVE_REFERENCE"
    SIZE_MISMATCH = "SIZE_MISMATCH"
    NEGATIVE_VALUE = "NEGATIVE_VALUE"
    MISSING_ONBOARDING = "MISSING_ONBOARDING"
    DUPLICATE_ONBOARDING = "DUPLICATE_ONBOARDING"
    ONBOARDING_NOT_FIRST = "ONBOARDING_NOT_FIRST"
    EMPTY_ONBOARDING = "EMPTY_ONBOARDING"
    BALANCE_MISMATCH = "BALANCE_MISMATCH"
    UNKNOWN_SHIPMENT = "UNKNOWN_SHIPMENT"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"


SEQUENCE_CODES = frozenset(
    {
        ViolationCode.MISSING_ONBOARDING,
        ViolationCode.DUPLICATE_ONBOARDING,
        ViolationCode.ONBOARDING_NOT_FIRST,
    }
)


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    CYLINDER_SIZES = "CylinderSizes"
    PRODUCTS = "Products"
    DRIVERS = "Drivers"
    DRIVER_BASELINES = "DriverBaselines"
    LEDGER_DAYS = "LedgerDays"
    SHIPMENTS = "Shipments"
    SALES = "Sales"
    SEEN_EVENTS = "SeenEvents"
    DIRTY_MARKERS = "DirtyMarkers"
    RECEIVABLE_SNAPSHOTS = "ReceivableSnapshots"
    STOCK_COUNTS = "StockCounts"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "NO_PRODUCT",
    "UNASSIGNED_DRIVER",
    "MONEY_QUANTUM",
    "ZERO_MONEY",
    "LedgerError",
    "SaleType",
    "ShipmentDirection",
    "ShipmentStatus",
    "MergePolicy",
    "DeltaKind",
    "DayStatus",
    "IngestStatus",
    "ViolationCode",
    "SEQUENCE_CODES",
    "SheetName",
]
