"""
Settlement records.

Per (instrument, trader): a one-shot "already settled" flag.
Per instrument: running totals of value collected from losing traders, value
paid to winning traders and bad debt passed to the backstop. Records are
created lazily on first settlement and never reset.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Mapping, Set, Tuple

from .balances import AccountId


InstrumentId = int


@dataclass(frozen=True)
class SettlementTotals:
    collected: int = 0
    paid: int = 0
    bad_debt: int = 0


class SettlementBook:
    def __init__(self) -> None:
        self._settled: Set[Tuple[InstrumentId, AccountId]] = set()
        self._totals: Dict[InstrumentId, SettlementTotals] = {}

    def is_settled(self, instrument_id: InstrumentId, trader: AccountId) -> bool:
        return (instrument_id, trader) in self._settled

    def mark_settled(self, instrument_id: InstrumentId, trader: AccountId) -> None:
        key = (instrument_id, trader)
        if key in self._settled:
            raise ValueError(f"instrument {instrument_id} already settled for {trader}")
        self._settled.add(key)
        self._totals.setdefault(instrument_id, SettlementTotals())

    def record(
        self,
        instrument_id: InstrumentId,
        *,
        collected: int = 0,
        paid: int = 0,
        bad_debt: int = 0,
    ) -> SettlementTotals:
        if collected < 0 or paid < 0 or bad_debt < 0:
            raise ValueError("settlement amounts must be non-negative")
        current = self._totals.get(instrument_id, SettlementTotals())
        updated = replace(
            current,
            collected=current.collected + collected,
            paid=current.paid + paid,
            bad_debt=current.bad_debt + bad_debt,
        )
        self._totals[instrument_id] = updated
        return updated

    def totals(self, instrument_id: InstrumentId) -> SettlementTotals:
        return self._totals.get(instrument_id, SettlementTotals())

    def all_totals(self) -> Mapping[InstrumentId, SettlementTotals]:
        return dict(self._totals)

    def settled_pairs(self) -> list[Tuple[InstrumentId, AccountId]]:
        return sorted(self._settled)

    def copy(self) -> "SettlementBook":
        copied = SettlementBook()
        copied._settled = set(self._settled)
        copied._totals = dict(self._totals)
        return copied
