"""Per-driver receivables reconciliation.

Drivers take full cylinders out on refill sales and owe the matching empty
cylinders until they deposit them. For each driver and size the reconciler
walks the days in order::

    balance = max(0, balance + refill_sold - cylinders_deposited)

so a driver who owes nothing and over-deposits contributes zero instead of a
negative amount that would hide another driver's debt. Cash follows the same
shape with ``revenue - cash_deposited - discount``.

Opening balances come from driver baselines and, for receivables recorded at
tenant level during onboarding, from the onboarding rows of the ledger. Those
and sales without a driver belong to
:data:`~cylinder_ledger.constants.UNASSIGNED_DRIVER`.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from . import log
from .constants import UNASSIGNED_DRIVER, ZERO_MONEY, SaleType
from .data_manager import DriverBaselineRow, DriverReceivableSnapshot, SaleRecord, to_money
from .record_store import RecordStore


DriverSizeKey = Tuple[str, str]


@dataclass(frozen=True)
class DriverPosition:
    driver_id: str
    cylinder_size_id: str
    cylinder_balance: int
    cash_balance: Decimal


@dataclass(frozen=True)
class ReceivablesPosition:
    """Receivable balances of every driver of a tenant at the end of a day."""

    tenant_id: str
    as_of: date
    drivers: Tuple[DriverPosition, ...] = ()

    def empty_cylinder_receivables(self, cylinder_size_id: Optional[str] = None) -> int:
        return sum(
            max(0, p.cylinder_balance)
            for p in self.drivers
            if cylinder_size_id is None or p.cylinder_size_id == cylinder_size_id
        )

    def total_cash_receivables(self, cylinder_size_id: Optional[str] = None) -> Decimal:
        total = sum(
            (max(ZERO_MONEY, p.cash_balance) for p in self.drivers
             if cylinder_size_id is None or p.cylinder_size_id == cylinder_size_id),
            ZERO_MONEY,
        )
        return to_money(total)

    def for_driver(self, driver_id: str) -> List[DriverPosition]:
        return [p for p in self.drivers if p.driver_id == driver_id]


@dataclass
class _DayFlow:
    cylinders: int = 0
    cash: Decimal = ZERO_MONEY


class ReceivablesReconciler:
    """Compute driver receivable positions from the sales registry."""

    def __init__(self, store: RecordStore, baselines: Iterable[DriverBaselineRow] = ()) -> None:
        self._store = store
        self._baselines = tuple(baselines)

    def position_as_of(self, tenant_id: str, as_of: date) -> ReceivablesPosition:
        return self.daily_positions(tenant_id, as_of, as_of)[as_of]

    def daily_positions(self, tenant_id: str, date_from: date, date_to: date) -> Dict[date, ReceivablesPosition]:
        """Return the end-of-day position of every day in ``[date_from, date_to]``.

        History before ``date_from`` is replayed so opening balances are
        correct; only days inside the range are returned.

        Raises:
            ValueError: If ``date_from`` is after ``date_to``.
            StoreUnavailableError: If the store cannot be read.
        """

        if date_from > date_to:
            raise ValueError(f"Invalid range: {date_from} is after {date_to}")

        opening = self._opening_flows(tenant_id, date_to)
        flows = self._sale_flows(self._store.sales(tenant_id, until=date_to))

        cylinders: Dict[DriverSizeKey, int] = defaultdict(int)
        cash: Dict[DriverSizeKey, Decimal] = defaultdict(lambda: ZERO_MONEY)
        active_days = sorted(set(opening) | set(flows))

        positions: Dict[date, ReceivablesPosition] = {}
        pending = iter(active_days)
        next_day = next(pending, None)
        day = min(active_days[0], date_from) if active_days else date_from
        while day <= date_to:
            while next_day is not None and next_day <= day:
                for key, amount in opening.get(next_day, {}).items():
                    cylinders[key] += amount.cylinders
                    cash[key] += amount.cash
                for key, flow in flows.get(next_day, {}).items():
                    cylinders[key] = max(0, cylinders[key] + flow.cylinders)
                    cash[key] = max(ZERO_MONEY, cash[key] + flow.cash)
                next_day = next(pending, None)
            if day >= date_from:
                positions[day] = self._snapshot(tenant_id, day, cylinders, cash)
            if day < date_from:
                day = date_from if next_day is None else min(next_day, date_from)
            else:
                day += timedelta(days=1)

        log.debug("Reconciled receivables for '%s' over %s..%s", tenant_id, date_from, date_to)
        return positions

    def _opening_flows(self, tenant_id: str, until: date) -> Dict[date, Dict[DriverSizeKey, _DayFlow]]:
        opening: Dict[date, Dict[DriverSizeKey, _DayFlow]] = defaultdict(lambda: defaultdict(_DayFlow))
        for baseline in self._baselines:
            if baseline.tenant_id != tenant_id or baseline.baseline_date > until:
                continue
            flow = opening[baseline.baseline_date][(baseline.driver_id, baseline.cylinder_size_id)]
            flow.cylinders += baseline.cylinder_receivables
            flow.cash += baseline.cash_receivables
        for row in self._store.onboarding_rows(tenant_id):
            if row.onboarding_date is None or row.onboarding_date > until:
                continue
            if row.onboarding_cylinder_receivables:
                flow = opening[row.onboarding_date][(UNASSIGNED_DRIVER, row.cylinder_size_id)]
                flow.cylinders += row.onboarding_cylinder_receivables
        return opening

    @staticmethod
    def _sale_flows(sales: Sequence[SaleRecord]) -> Dict[date, Dict[DriverSizeKey, _DayFlow]]:
        flows: Dict[date, Dict[DriverSizeKey, _DayFlow]] = defaultdict(lambda: defaultdict(_DayFlow))
        for sale in sales:
            flow = flows[sale.sale_date][(sale.driver_id or UNASSIGNED_DRIVER, sale.cylinder_size_id)]
            refill_sold = sale.quantity if sale.sale_type is SaleType.REFILL else 0
            flow.cylinders += refill_sold - sale.cylinders_deposited
            flow.cash += sale.revenue - sale.cash_deposited - sale.discount
        return flows

    @staticmethod
    def _snapshot(
        tenant_id: str,
        day: date,
        cylinders: Dict[DriverSizeKey, int],
        cash: Dict[DriverSizeKey, Decimal],
    ) -> ReceivablesPosition:
        keys = sorted(set(cylinders) | set(cash))
        drivers = tuple(
            DriverPosition(
                driver_id=driver_id,
                cylinder_size_id=size_id,
                cylinder_balance=cylinders.get((driver_id, size_id), 0),
                cash_balance=to_money(cash.get((driver_id, size_id), ZERO_MONEY)),
            )
            for driver_id, size_id in keys
        )
        return ReceivablesPosition(tenant_id=tenant_id, as_of=day, drivers=drivers)


def record_snapshots(store: RecordStore, position: ReceivablesPosition) -> int:
    """Append one :class:`DriverReceivableSnapshot` per driver and size."""

    rows = [
        DriverReceivableSnapshot(
            tenant_id=position.tenant_id,
            driver_id=p.driver_id,
            snapshot_date=position.as_of,
            cylinder_size_id=p.cylinder_size_id,
            cylinder_balance=p.cylinder_balance,
            cash_balance=p.cash_balance,
        )
        for p in position.drivers
    ]
    count = store.append_snapshots(rows)
    log.info("Recorded %d receivable snapshots for '%s' on %s", count, position.tenant_id, position.as_of)
    return count


def latest_snapshot(
    store: RecordStore,
    tenant_id: str,
    driver_id: str,
    as_of: date,
    *,
    cylinder_size_id: Optional[str] = None,
) -> Optional[DriverReceivableSnapshot]:
    """Return the most recent snapshot of a driver taken on or before ``as_of``."""

    rows = [
        row
        for row in store.snapshots(tenant_id, driver_id=driver_id, until=as_of)
        if cylinder_size_id is None or row.cylinder_size_id == cylinder_size_id
    ]
    return max(rows, key=lambda row: (row.snapshot_date, row.cylinder_size_id), default=None)
