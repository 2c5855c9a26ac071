"""
Position ledger: signed per-(trader, instrument) exposure.

Alongside the raw positions we maintain two derived structures incrementally,
so risk code never has to scan instruments a trader has never touched:

- an open-instrument index per trader (arena list + reverse slot map),
- an aggregate short counter per trader (sum of |negative positions|).

Invariants (checked by `check_invariants()`):
- an instrument is in a trader's index iff the position is nonzero,
- the short counter equals the sum of |negative positions|,
- no stored position equals INT256_MIN (reserved: negating it overflows).

These are internal primitives. The trade, settlement and liquidation engines
are the only writers, and they re-check margin around every write.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ..core.errors import ArithmeticOverflowError, ValidationError
from ..core.safe_math import INT256_MAX, INT256_MIN, UINT256_MAX, abs_val
from .balances import AccountId


InstrumentId = int


class OpenInstrumentIndex:
    """
    Ordered list of instrument ids with O(1) membership, append and removal.

    `_slots[iid]` holds list position + 1; a missing key means absent. Removal
    swaps the victim with the last element, so list order is insertion order
    only until the first removal.
    """

    def __init__(self) -> None:
        self._items: List[InstrumentId] = []
        self._slots: Dict[InstrumentId, int] = {}

    def __contains__(self, instrument_id: InstrumentId) -> bool:
        return self._slots.get(instrument_id, 0) != 0

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[InstrumentId]:
        return iter(list(self._items))

    def add(self, instrument_id: InstrumentId) -> None:
        if instrument_id in self:
            return
        self._items.append(instrument_id)
        self._slots[instrument_id] = len(self._items)

    def remove(self, instrument_id: InstrumentId) -> None:
        slot = self._slots.pop(instrument_id, 0)
        if slot == 0:
            return
        idx = slot - 1
        last = self._items.pop()
        if idx < len(self._items):
            self._items[idx] = last
            self._slots[last] = slot

    def slot_of(self, instrument_id: InstrumentId) -> int:
        """1-based list position, 0 when absent."""
        return self._slots.get(instrument_id, 0)

    def slice(self, offset: int = 0, limit: Optional[int] = None) -> List[InstrumentId]:
        if offset < 0:
            raise ValidationError("offset must be non-negative")
        if limit is not None and limit < 0:
            raise ValidationError("limit must be non-negative")
        end = len(self._items) if limit is None else min(len(self._items), offset + limit)
        return self._items[offset:end]

    def copy(self) -> "OpenInstrumentIndex":
        copied = OpenInstrumentIndex()
        copied._items = list(self._items)
        copied._slots = dict(self._slots)
        return copied


class PositionLedger:
    """Positions, open-instrument indices and aggregate short counters."""

    def __init__(self) -> None:
        self._positions: Dict[Tuple[AccountId, InstrumentId], int] = {}
        self._short_total: Dict[AccountId, int] = {}
        self._open: Dict[AccountId, OpenInstrumentIndex] = {}

    # -- Reads ---------------------------------------------------------------

    def get(self, trader: AccountId, instrument_id: InstrumentId) -> int:
        return self._positions.get((trader, instrument_id), 0)

    def short_exposure(self, trader: AccountId) -> int:
        return self._short_total.get(trader, 0)

    def open_instruments(
        self, trader: AccountId, offset: int = 0, limit: Optional[int] = None
    ) -> List[InstrumentId]:
        index = self._open.get(trader)
        if index is None:
            return []
        return index.slice(offset, limit)

    def open_count(self, trader: AccountId) -> int:
        index = self._open.get(trader)
        return 0 if index is None else len(index)

    def is_open(self, trader: AccountId, instrument_id: InstrumentId) -> bool:
        index = self._open.get(trader)
        return index is not None and instrument_id in index

    def traders(self) -> List[AccountId]:
        return sorted({trader for trader, _ in self._positions})

    def items(self) -> List[Tuple[AccountId, InstrumentId, int]]:
        """All nonzero positions, sorted by (trader, instrument)."""
        return sorted((t, i, q) for (t, i), q in self._positions.items() if q != 0)

    # -- Writes --------------------------------------------------------------

    def apply_delta(self, trader: AccountId, instrument_id: InstrumentId, delta: int) -> int:
        """Apply a signed delta and keep the index and short counter in step. Returns the new position."""
        if not isinstance(delta, int) or isinstance(delta, bool):
            raise ValidationError("delta must be an int")
        old = self.get(trader, instrument_id)
        new = old + delta
        if new > INT256_MAX or new <= INT256_MIN:
            raise ArithmeticOverflowError(f"position out of range for instrument {instrument_id}")
        if delta == 0:
            return old

        old_short = abs_val(old) if old < 0 else 0
        new_short = abs_val(new) if new < 0 else 0
        total = self.short_exposure(trader) - old_short + new_short
        if total < 0 or total > UINT256_MAX:
            raise ArithmeticOverflowError("aggregate short exposure out of range")

        if new == 0:
            self._positions.pop((trader, instrument_id), None)
            index = self._open.get(trader)
            if index is not None:
                index.remove(instrument_id)
                if len(index) == 0:
                    del self._open[trader]
        else:
            self._positions[(trader, instrument_id)] = new
            self._open.setdefault(trader, OpenInstrumentIndex()).add(instrument_id)

        if total == 0:
            self._short_total.pop(trader, None)
        else:
            self._short_total[trader] = total
        return new

    def copy(self) -> "PositionLedger":
        copied = PositionLedger()
        copied._positions = dict(self._positions)
        copied._short_total = dict(self._short_total)
        copied._open = {t: idx.copy() for t, idx in self._open.items()}
        return copied

    # -- Invariants ----------------------------------------------------------

    def check_invariants(self) -> List[str]:
        """Return list of violated invariant ids (empty = all pass)."""
        return [inv_id for inv_id, check_fn in _INVARIANTS.items() if not check_fn(self)]


def _inv_index_matches_nonzero(ledger: PositionLedger) -> bool:
    expected: Dict[AccountId, set] = {}
    for (trader, iid), qty in ledger._positions.items():
        if qty != 0:
            expected.setdefault(trader, set()).add(iid)
    actual = {t: set(idx._items) for t, idx in ledger._open.items() if len(idx)}
    if expected != actual:
        return False
    for idx in ledger._open.values():
        for pos, iid in enumerate(idx._items):
            if idx._slots.get(iid) != pos + 1:
                return False
        if len(idx._slots) != len(idx._items):
            return False
    return True


def _inv_short_counter_matches(ledger: PositionLedger) -> bool:
    sums: Dict[AccountId, int] = {}
    for (trader, _), qty in ledger._positions.items():
        if qty < 0:
            sums[trader] = sums.get(trader, 0) - qty
    actual = {t: v for t, v in ledger._short_total.items() if v != 0}
    return sums == actual


def _inv_no_sentinel(ledger: PositionLedger) -> bool:
    return all(qty != INT256_MIN for qty in ledger._positions.values())


_INVARIANTS: Dict[str, Callable[[PositionLedger], bool]] = {
    "inv_index_matches_nonzero": _inv_index_matches_nonzero,
    "inv_short_counter_matches": _inv_short_counter_matches,
    "inv_no_sentinel": _inv_no_sentinel,
}
