"""
Ledger state snapshot encoding.

Goals:
- Deterministic JSON-compatible dict for hashing / diffing between replicas.
- Explicit versioning.

Custodian balances are not part of the ledger's state and are not included.
The commitment is computed over the dict, never stored inside it.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Optional

from ..core.ledger import MarginLedger
from ..state.canonical import canonical_json_bytes, domain_sep_bytes, sha256_hex
from .order_intake import SignedOrderIntake


LEDGER_SNAPSHOT_VERSION = 1


def snapshot_ledger(
    ledger: MarginLedger,
    intake: Optional[SignedOrderIntake] = None,
    *,
    version: int = LEDGER_SNAPSHOT_VERSION,
) -> Dict[str, Any]:
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise ValueError("version must be a positive int")

    positions = ledger.positions
    position_entries = [
        {"trader": trader, "instrument_id": int(iid), "quantity": int(qty)}
        for trader, iid, qty in positions.items()
    ]
    position_entries.sort(key=lambda e: (e["trader"], e["instrument_id"]))

    # Index order is state (swap-with-last removal), so it is kept as-is.
    account_entries = [
        {
            "trader": trader,
            "open_instruments": [int(i) for i in positions.open_instruments(trader)],
            "short_exposure": int(positions.short_exposure(trader)),
        }
        for trader in sorted(positions.traders())
    ]

    settlements = ledger.settlements
    settled_entries = [
        {"instrument_id": int(iid), "trader": trader} for iid, trader in settlements.settled_pairs()
    ]
    settled_entries.sort(key=lambda e: (e["instrument_id"], e["trader"]))
    totals_entries = [
        {
            "instrument_id": int(iid),
            "collected": int(t.collected),
            "paid": int(t.paid),
            "bad_debt": int(t.bad_debt),
        }
        for iid, t in settlements.all_totals().items()
    ]
    totals_entries.sort(key=lambda e: e["instrument_id"])

    nonce_entries = []
    if intake is not None:
        nonce_entries = [{"trader": t, "nonce": int(n)} for t, n in intake.nonces.get_all().items()]
        nonce_entries.sort(key=lambda e: e["trader"])

    return {
        "version": int(version),
        "paused": bool(ledger.paused),
        "risk_params": asdict(ledger.risk_params),
        "liquidation_params": asdict(ledger.liquidation_params),
        "positions": position_entries,
        "accounts": account_entries,
        "settled": settled_entries,
        "settlement_totals": totals_entries,
        "nonces": nonce_entries,
    }


def snapshot_hash(snapshot: Dict[str, Any]) -> str:
    """Domain-separated SHA-256 over the canonical JSON of a snapshot dict."""
    version = snapshot.get("version", LEDGER_SNAPSHOT_VERSION)
    return sha256_hex(domain_sep_bytes("ledger_snapshot", version=version) + canonical_json_bytes(snapshot))
