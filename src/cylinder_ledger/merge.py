"""Ledger merge engine.

Applies normalized deltas to the record store with explicit REPLACE and
ACCUMULATE semantics. The merge itself is a pure function; the engine adds
per-key serialization, idempotency by event id, conflict flagging, and the
bookkeeping the reconstructor and reconciler rely on.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from . import log
from .constants import DeltaKind, LedgerError, MergePolicy
from .data_manager import LedgerDay, SaleRecord, ShipmentRecord, StockCountRecord
from .events import Delta
from .record_store import RecordStore


class MergeConflictError(LedgerError):
    """Raised when a merged record breaks ``total == full + empty``."""

    def __init__(self, delta: Delta, before: Optional[LedgerDay], after: LedgerDay) -> None:
        self.delta = delta
        self.before = before
        self.after = after
        super().__init__(
            f"Balance conflict on {delta.key}: total {after.total_cylinders} != "
            f"full {after.full_cylinders} + empty {after.empty_cylinders}"
        )


@dataclass(frozen=True)
class MergeOutcome:
    record: LedgerDay
    duplicate: bool = False
    conflict: Optional[MergeConflictError] = None


def merge_ledger_day(existing: Optional[LedgerDay], delta: Delta) -> LedgerDay:
    """Combine ``delta`` into ``existing`` following each field's policy.

    REPLACE fields take the delta value when it is present. ACCUMULATE fields
    add the delta value to the stored one, treating missing values as zero.
    """

    base = existing if existing is not None else LedgerDay.empty_for(delta.key)
    updates: Dict[str, Any] = {}
    for name, change in delta.changes.items():
        if change.policy is MergePolicy.REPLACE:
            if change.value is not None:
                updates[name] = change.value
        else:
            updates[name] = (getattr(base, name) or 0) + (change.value or 0)
    return replace(base, **updates)


def balance_is_consistent(record: LedgerDay) -> bool:
    if record.full_cylinders is None or record.empty_cylinders is None or record.total_cylinders is None:
        return True
    return record.total_cylinders == record.full_cylinders + record.empty_cylinders


class LedgerMergeEngine:
    """Apply deltas to a :class:`~cylinder_ledger.record_store.RecordStore`."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    @property
    def store(self) -> RecordStore:
        return self._store

    def apply(self, delta: Delta) -> MergeOutcome:
        """Merge ``delta`` into the stored record for its key.

        A delta whose event id was already applied to the key is a no-op and
        comes back with ``duplicate=True``. A merge that breaks the balance
        invariant is still committed, flagged with ``needs_review``, and the
        :class:`MergeConflictError` is returned on the outcome.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """

        conflicts: List[MergeConflictError] = []

        def merge_func(existing: Optional[LedgerDay]) -> LedgerDay:
            merged = merge_ledger_day(existing, delta)
            if delta.touches_balances and not balance_is_consistent(merged):
                merged = replace(merged, needs_review=True)
                conflicts.append(MergeConflictError(delta, existing, merged))
            return merged

        result = self._store.upsert(delta.key, merge_func, event_id=delta.event_id)
        if not result.applied:
            return MergeOutcome(record=result.record, duplicate=True)

        conflict = conflicts[-1] if conflicts else None
        if conflict is not None:
            log.warning("%s; before=%s after=%s", conflict, conflict.before, conflict.after)

        self._register_source(delta)
        if delta.kind is not DeltaKind.BALANCE and delta.changes:
            self._store.mark_dirty(delta.tenant_id, delta.cylinder_size_id, delta.date)
        return MergeOutcome(record=result.record, conflict=conflict)

    def _register_source(self, delta: Delta) -> None:
        source = delta.source
        if isinstance(source, SaleRecord):
            self._store.register_sale(source)
        elif isinstance(source, ShipmentRecord):
            if delta.kind is DeltaKind.SHIPMENT_STATUS:
                self._store.update_shipment(
                    source.tenant_id, source.shipment_id, lambda known: _with_status(known, source)
                )
            else:
                self._store.register_shipment(source)
        elif isinstance(source, StockCountRecord):
            self._store.register_stock_count(source)


def _with_status(known: Optional[ShipmentRecord], update: ShipmentRecord) -> ShipmentRecord:
    if known is None:
        return update
    return replace(known, status=update.status, completed_at=update.completed_at)
