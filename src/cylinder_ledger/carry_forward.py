"""Carry-forward calculation of daily cylinder balances.

For every cylinder size the calculator starts from a trusted opening balance
and walks the days in ascending order::

    full  = max(0, full_prev + package_purchase + refill_purchase - total_sales)
    empty = max(0, empty_prev + refill_sales + empty_buy_sell - all_refill_purchase)
    total = full + empty + outstanding_refill

where ``empty_buy_sell`` is completed incoming empties minus completed
outgoing empties and ``outstanding_refill`` counts refill orders still open at
the end of the day. Balances are computed per size; tenant figures are sums
over sizes.

:func:`recompute_range` runs one unit per size on a thread pool, persists the
computed balances, and reports per-day status so a failing or cancelled unit
never masquerades as a zero balance.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import log
from .constants import NO_PRODUCT, ZERO_MONEY, DayStatus, LedgerError
from .data_manager import DriverBaselineRow, LedgerKey
from .events import balance_delta
from .merge import LedgerMergeEngine
from .outstanding import outstanding_refill_quantity
from .receivables import ReceivablesPosition, ReceivablesReconciler
from .record_store import RecordStore, StoreUnavailableError


_FLOW_FIELDS = (
    "package_sales_quantity",
    "refill_sales_quantity",
    "package_purchase",
    "refill_purchase",
    "all_refill_purchase",
    "incoming_empty_quantity",
    "outgoing_empty_quantity",
)


class ReconstructionError(LedgerError):
    """Raised when no day of a requested range could be reconstructed."""


@dataclass(frozen=True)
class ReconciliationDiagnostic:
    """A discrepancy found while reconstructing a day.

    ``raw_value`` holds the pre-clamp figure when a balance would have gone
    negative; both values are ``None`` for failures.
    """

    date: date
    cylinder_size_id: str
    field: str
    message: str
    raw_value: Optional[int] = None
    clamped_value: Optional[int] = None


@dataclass(frozen=True)
class SizeBreakdown:
    cylinder_size_id: str
    package_sales_qty: int
    refill_sales_qty: int
    full_cylinders: int
    empty_cylinders: int
    empty_cylinders_in_stock: int
    empty_cylinder_receivables: int
    outstanding_refill_orders: int
    total_cylinders: int
    total_cash_receivables: Decimal
    raw_full_cylinders: int
    raw_empty_cylinders: int
    status: DayStatus = DayStatus.OK
    diagnostics: Tuple[ReconciliationDiagnostic, ...] = ()


@dataclass(frozen=True)
class SizeLedger:
    """Result of one recompute unit: a size over a range of days."""

    tenant_id: str
    cylinder_size_id: str
    days: Mapping[date, SizeBreakdown]
    failures: Mapping[date, ReconciliationDiagnostic] = field(default_factory=dict)
    completed: bool = True


@dataclass(frozen=True)
class DailyLedgerReport:
    """Tenant-level ledger of one day.

    Totals are ``None`` when the day FAILED; a failed day never reports zero.
    """

    date: date
    per_size_breakdown: Mapping[str, SizeBreakdown]
    package_sales_qty: Optional[int]
    refill_sales_qty: Optional[int]
    full_cylinders: Optional[int]
    empty_cylinders: Optional[int]
    empty_cylinders_in_stock: Optional[int]
    empty_cylinder_receivables: Optional[int]
    outstanding_refill_orders: Optional[int]
    total_cylinders: Optional[int]
    status: DayStatus
    diagnostics: Tuple[ReconciliationDiagnostic, ...] = ()


@dataclass(frozen=True)
class RecomputeResult:
    tenant_id: str
    date_from: date
    date_to: date
    reports: Mapping[date, DailyLedgerReport]
    size_ledgers: Mapping[str, SizeLedger]
    completed_units: FrozenSet[str]
    cancelled: bool = False

    @property
    def day_status(self) -> Dict[date, DayStatus]:
        return {day: report.status for day, report in self.reports.items()}

    @property
    def diagnostics(self) -> List[ReconciliationDiagnostic]:
        return [diag for report in self.reports.values() for diag in report.diagnostics]

    @property
    def is_complete(self) -> bool:
        return len(self.completed_units) == len(self.size_ledgers)


def _days(date_from: date, date_to: date) -> Iterable[date]:
    day = date_from
    while day <= date_to:
        yield day
        day += timedelta(days=1)


class CarryForwardCalculator:
    """Compute per-size daily balances from the record store."""

    def __init__(self, store: RecordStore, *, persist: bool = True) -> None:
        self._store = store
        self._engine = LedgerMergeEngine(store)
        self._persist = persist

    def compute_size(
        self,
        tenant_id: str,
        cylinder_size_id: str,
        date_from: date,
        date_to: date,
        receivables_by_day: Mapping[date, ReceivablesPosition],
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> SizeLedger:
        """Walk one size from its opening balance through ``date_to``.

        The opening balance is the latest persisted size row before
        ``date_from`` that is not stale, otherwise the onboarding baseline on
        the onboarding date, otherwise zero. Days before ``date_from`` that
        must be walked are persisted but not returned.

        Args:
            tenant_id (str): Tenant owning the size.
            cylinder_size_id (str): Size to compute.
            date_from (date): First reported day.
            date_to (date): Last reported day.
            receivables_by_day (Mapping[date, ReceivablesPosition]): End-of-day
                receivable positions covering every walked day.
            cancel_event (threading.Event | None): Checked before each day.
            deadline (float | None): ``time.monotonic`` instant after which
                the unit stops.

        Returns:
            SizeLedger: Computed days plus the failed ones with their reason.
        """

        days: Dict[date, SizeBreakdown] = {}
        try:
            dirty_from, seen_marks = self._store.dirty_state(tenant_id, cylinder_size_id)
            start, opening_day, onboarded, (full_prev, empty_prev), opening = self._opening(
                tenant_id, cylinder_size_id, date_from, dirty_from
            )
        except StoreUnavailableError as exc:
            log.error("Store unavailable while opening size '%s' for '%s': %s", cylinder_size_id, tenant_id, exc)
            failures = self._fail_from(date_from, date_from, date_to, cylinder_size_id, f"store unavailable: {exc}")
            return SizeLedger(tenant_id, cylinder_size_id, days, failures, completed=False)

        for day in _days(start, date_to):
            stop_reason = self._stop_reason(cancel_event, deadline)
            if stop_reason is not None:
                log.warning("Recompute of size '%s' for '%s' %s at %s", cylinder_size_id, tenant_id, stop_reason, day)
                failures = self._fail_from(day, date_from, date_to, cylinder_size_id, stop_reason)
                return SizeLedger(tenant_id, cylinder_size_id, days, failures, completed=False)

            if opening_day is not None and day == opening_day:
                full_prev, empty_prev = opening

            try:
                breakdown = self._compute_day(
                    tenant_id, cylinder_size_id, day, full_prev, empty_prev, receivables_by_day.get(day)
                )
                if self._persist and onboarded and (opening_day is None or day >= opening_day):
                    self._engine.apply(
                        balance_delta(
                            LedgerKey(tenant_id, day, NO_PRODUCT, cylinder_size_id),
                            full_cylinders=breakdown.full_cylinders,
                            empty_cylinders=breakdown.empty_cylinders,
                            empty_cylinder_receivables=breakdown.empty_cylinder_receivables,
                            total_cash_receivables=breakdown.total_cash_receivables,
                        )
                    )
            except StoreUnavailableError as exc:
                log.error("Store unavailable for size '%s' of '%s' on %s: %s", cylinder_size_id, tenant_id, day, exc)
                failures = self._fail_from(day, date_from, date_to, cylinder_size_id, f"store unavailable: {exc}")
                return SizeLedger(tenant_id, cylinder_size_id, days, failures, completed=False)

            if day >= date_from:
                days[day] = breakdown
            full_prev, empty_prev = breakdown.full_cylinders, breakdown.empty_cylinders

        if self._persist and onboarded:
            self._store.clear_dirty(
                tenant_id, cylinder_size_id, covered_from=start, through=date_to, seen_marks=seen_marks
            )
        return SizeLedger(tenant_id, cylinder_size_id, days)

    def _opening(
        self, tenant_id: str, cylinder_size_id: str, date_from: date, dirty_from: Optional[date]
    ) -> Tuple[date, Optional[date], bool, Tuple[int, int], Tuple[int, int]]:
        """Return the walk start, onboarding day, onboarded flag, state, and onboarding opening."""

        onboarding = self._store.onboarding_rows(tenant_id, cylinder_size_id)
        onboarding_day = min((row.onboarding_date for row in onboarding), default=None)
        opening = (
            sum(row.onboarding_full_cylinders or 0 for row in onboarding),
            sum(row.onboarding_empty_cylinders or 0 for row in onboarding),
        )

        cutoff = date_from if dirty_from is None else min(date_from, dirty_from)
        prior = self._store.latest_balance_before(tenant_id, cylinder_size_id, cutoff)
        if prior is not None and onboarding_day is not None and prior.date < onboarding_day:
            prior = None

        if prior is not None:
            state = (prior.full_cylinders or 0, prior.empty_cylinders or 0)
            return prior.date + timedelta(days=1), None, True, state, opening
        if onboarding_day is not None:
            return min(onboarding_day, date_from), onboarding_day, True, (0, 0), opening
        return date_from, None, False, (0, 0), opening

    def _compute_day(
        self,
        tenant_id: str,
        cylinder_size_id: str,
        day: date,
        full_prev: int,
        empty_prev: int,
        position: Optional[ReceivablesPosition],
    ) -> SizeBreakdown:
        rows = self._store.range_query(tenant_id, day, day, cylinder_size_id=cylinder_size_id)
        flows = {name: sum(getattr(row, name) for row in rows) for name in _FLOW_FIELDS}

        package_sales = flows["package_sales_quantity"]
        refill_sales = flows["refill_sales_quantity"]
        total_sales = package_sales + refill_sales
        raw_full = full_prev + flows["package_purchase"] + flows["refill_purchase"] - total_sales
        empty_buy_sell = flows["incoming_empty_quantity"] - flows["outgoing_empty_quantity"]
        raw_empty = empty_prev + refill_sales + empty_buy_sell - flows["all_refill_purchase"]
        full = max(0, raw_full)
        empty = max(0, raw_empty)

        diagnostics: List[ReconciliationDiagnostic] = []
        if raw_full < 0:
            diagnostics.append(
                ReconciliationDiagnostic(
                    day, cylinder_size_id, "full_cylinders", f"full cylinders clamped from {raw_full} to 0", raw_full, 0
                )
            )
        if raw_empty < 0:
            diagnostics.append(
                ReconciliationDiagnostic(
                    day, cylinder_size_id, "empty_cylinders", f"empty cylinders clamped from {raw_empty} to 0", raw_empty, 0
                )
            )

        count = self._store.stock_count(tenant_id, cylinder_size_id, day)
        if count is not None:
            if (count.full_cylinders, count.empty_cylinders) != (full, empty):
                log.info(
                    "Stock count '%s' adjusts size '%s' on %s from %s/%s to %s/%s",
                    count.count_id,
                    cylinder_size_id,
                    day,
                    full,
                    empty,
                    count.full_cylinders,
                    count.empty_cylinders,
                )
            full, empty = count.full_cylinders, count.empty_cylinders

        receivables = position.empty_cylinder_receivables(cylinder_size_id) if position else 0
        cash = position.total_cash_receivables(cylinder_size_id) if position else ZERO_MONEY
        outstanding = outstanding_refill_quantity(self._store, tenant_id, cylinder_size_id, day)

        return SizeBreakdown(
            cylinder_size_id=cylinder_size_id,
            package_sales_qty=package_sales,
            refill_sales_qty=refill_sales,
            full_cylinders=full,
            empty_cylinders=empty,
            empty_cylinders_in_stock=max(0, empty - receivables),
            empty_cylinder_receivables=receivables,
            outstanding_refill_orders=outstanding,
            total_cylinders=full + empty + outstanding,
            total_cash_receivables=cash,
            raw_full_cylinders=raw_full,
            raw_empty_cylinders=raw_empty,
            status=DayStatus.DEGRADED if diagnostics else DayStatus.OK,
            diagnostics=tuple(diagnostics),
        )

    @staticmethod
    def _stop_reason(cancel_event: Optional[threading.Event], deadline: Optional[float]) -> Optional[str]:
        if cancel_event is not None and cancel_event.is_set():
            return "cancelled"
        if deadline is not None and time.monotonic() > deadline:
            return "timed out"
        return None

    @staticmethod
    def _fail_from(
        day: date, date_from: date, date_to: date, cylinder_size_id: str, reason: str
    ) -> Dict[date, ReconciliationDiagnostic]:
        return {
            failed: ReconciliationDiagnostic(failed, cylinder_size_id, "status", reason)
            for failed in _days(max(day, date_from), date_to)
        }


def aggregate_day(day: date, ledgers: Sequence[SizeLedger]) -> DailyLedgerReport:
    """Combine the per-size results of ``day`` into a tenant report."""

    breakdown: Dict[str, SizeBreakdown] = {}
    diagnostics: List[ReconciliationDiagnostic] = []
    failed = False
    for ledger in ledgers:
        entry = ledger.days.get(day)
        if entry is None:
            failed = True
            failure = ledger.failures.get(day)
            diagnostics.append(
                failure
                if failure is not None
                else ReconciliationDiagnostic(day, ledger.cylinder_size_id, "status", "not computed")
            )
            continue
        breakdown[ledger.cylinder_size_id] = entry
        diagnostics.extend(entry.diagnostics)

    if failed:
        return DailyLedgerReport(
            date=day,
            per_size_breakdown=breakdown,
            package_sales_qty=None,
            refill_sales_qty=None,
            full_cylinders=None,
            empty_cylinders=None,
            empty_cylinders_in_stock=None,
            empty_cylinder_receivables=None,
            outstanding_refill_orders=None,
            total_cylinders=None,
            status=DayStatus.FAILED,
            diagnostics=tuple(diagnostics),
        )

    entries = list(breakdown.values())
    degraded = any(entry.status is DayStatus.DEGRADED for entry in entries)
    return DailyLedgerReport(
        date=day,
        per_size_breakdown=breakdown,
        package_sales_qty=sum(e.package_sales_qty for e in entries),
        refill_sales_qty=sum(e.refill_sales_qty for e in entries),
        full_cylinders=sum(e.full_cylinders for e in entries),
        empty_cylinders=sum(e.empty_cylinders for e in entries),
        empty_cylinders_in_stock=sum(e.empty_cylinders_in_stock for e in entries),
        empty_cylinder_receivables=sum(e.empty_cylinder_receivables for e in entries),
        outstanding_refill_orders=sum(e.outstanding_refill_orders for e in entries),
        total_cylinders=sum(e.total_cylinders for e in entries),
        status=DayStatus.DEGRADED if degraded else DayStatus.OK,
        diagnostics=tuple(diagnostics),
    )


def recompute_range(
    store: RecordStore,
    tenant_id: str,
    date_from: date,
    date_to: date,
    *,
    size_ids: Sequence[str],
    workers: int = 4,
    unit_timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    resume: Optional[RecomputeResult] = None,
    baselines: Iterable[DriverBaselineRow] = (),
    persist: bool = True,
) -> RecomputeResult:
    """Recompute and persist daily balances for every size of a tenant.

    Each size is an independent unit run on a
    :class:`~concurrent.futures.ThreadPoolExecutor`. Units share nothing but
    the store. Receivable positions are computed once up front and handed to
    every unit.

    Args:
        store (RecordStore): Ledger records and registries.
        tenant_id (str): Tenant to recompute.
        date_from (date): First reported day.
        date_to (date): Last reported day.
        size_ids (Sequence[str]): Sizes to compute, one unit each.
        workers (int): Thread pool size.
        unit_timeout (float | None): Seconds a unit may run; ``None`` or ``0``
            disables the limit.
        cancel_event (threading.Event | None): Cooperative cancellation flag.
        resume (RecomputeResult | None): Earlier result over the same range
            whose completed units are reused instead of recomputed.
        baselines (Iterable[DriverBaselineRow]): Driver opening receivables.
        persist (bool): Write computed balances back to the store.

    Returns:
        RecomputeResult: Reports, per-unit ledgers, and completed units.

    Raises:
        ValueError: If the range is inverted or ``workers`` is below one.
    """

    if date_from > date_to:
        raise ValueError(f"Invalid range: {date_from} is after {date_to}")
    if workers < 1:
        raise ValueError("workers must be at least 1")

    ledgers: Dict[str, SizeLedger] = {}
    if resume is not None:
        if (resume.tenant_id, resume.date_from, resume.date_to) != (tenant_id, date_from, date_to):
            raise ValueError("Resume result covers a different tenant or range")
        for size_id in resume.completed_units:
            ledgers[size_id] = resume.size_ledgers[size_id]

    pending = [size_id for size_id in dict.fromkeys(size_ids) if size_id not in ledgers]
    log.info(
        "Recomputing '%s' %s..%s: %d units (%d resumed)",
        tenant_id,
        date_from,
        date_to,
        len(pending),
        len(ledgers),
    )

    if pending:
        try:
            onboarding = store.onboarding_rows(tenant_id)
            earliest = min([row.onboarding_date for row in onboarding if row.onboarding_date] + [date_from])
            positions = ReceivablesReconciler(store, baselines).daily_positions(tenant_id, earliest, date_to)
        except StoreUnavailableError as exc:
            log.error("Store unavailable while reconciling receivables for '%s': %s", tenant_id, exc)
            for size_id in pending:
                failures = CarryForwardCalculator._fail_from(
                    date_from, date_from, date_to, size_id, f"store unavailable: {exc}"
                )
                ledgers[size_id] = SizeLedger(tenant_id, size_id, {}, failures, completed=False)
            pending = []

    if pending:
        calculator = CarryForwardCalculator(store, persist=persist)

        def run_unit(size_id: str) -> SizeLedger:
            deadline = time.monotonic() + unit_timeout if unit_timeout else None
            return calculator.compute_size(
                tenant_id, size_id, date_from, date_to, positions, cancel_event=cancel_event, deadline=deadline
            )

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="recompute") as executor:
            futures = {size_id: executor.submit(run_unit, size_id) for size_id in pending}
            for size_id, future in futures.items():
                ledgers[size_id] = future.result()

    ordered = [ledgers[size_id] for size_id in dict.fromkeys(size_ids) if size_id in ledgers]
    reports = {day: aggregate_day(day, ordered) for day in _days(date_from, date_to)}
    completed = frozenset(ledger.cylinder_size_id for ledger in ordered if ledger.completed)
    cancelled = cancel_event is not None and cancel_event.is_set()
    failed_days = sum(1 for report in reports.values() if report.status is DayStatus.FAILED)
    if failed_days:
        log.warning("Recompute of '%s' finished with %d failed days", tenant_id, failed_days)
    return RecomputeResult(
        tenant_id=tenant_id,
        date_from=date_from,
        date_to=date_to,
        reports=reports,
        size_ledgers={ledger.cylinder_size_id: ledger for ledger in ordered},
        completed_units=completed,
        cancelled=cancelled,
    )
