"""
Nonce table for signed-order replay protection.

We track, per trader, the nonce the next signed order must carry. The policy
is exact-match: an order is usable only while its embedded nonce equals the
stored value, and every consumption or cancellation moves the counter
strictly forward.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping

from .balances import AccountId
from .canonical import canonical_hex_fixed_allow_0x


MAX_NONCE = 0xFFFFFFFFFFFFFFFF


def _require_nonce(value: int, *, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise TypeError(f"{name} must be a non-negative int")
    if value > MAX_NONCE:
        raise ValueError(f"{name} must fit in u64")
    return int(value)


@dataclass
class NonceTable:
    """
    Mutable mapping: trader -> current (next expected) nonce.

    Unknown traders start at 0. Values never decrease.
    """

    _current: Dict[AccountId, int] = field(default_factory=dict)

    def get(self, trader: AccountId) -> int:
        pk = canonical_hex_fixed_allow_0x(trader, nbytes=48, name="trader")
        v = self._current.get(pk, 0)
        if not isinstance(v, int) or isinstance(v, bool) or v < 0:
            raise ValueError(f"invalid stored nonce for {trader!r}: {v!r}")
        return int(v)

    def consume(self, trader: AccountId, nonce: int) -> int:
        """Consume `nonce` for `trader`; it must equal the stored value. Returns the new value."""
        n = _require_nonce(nonce, name="nonce")
        current = self.get(trader)
        if n != current:
            raise ValueError(f"nonce mismatch: expected {current}, got {n}")
        if current == MAX_NONCE:
            raise ValueError("nonce space exhausted")
        return self.advance_to(trader, current + 1)

    def advance_to(self, trader: AccountId, new_nonce: int) -> int:
        """Move the counter to `new_nonce`, which must be strictly greater than the current value."""
        n = _require_nonce(new_nonce, name="new_nonce")
        current = self.get(trader)
        if n <= current:
            raise ValueError(f"nonce can only move forward: {current} -> {n}")
        pk = canonical_hex_fixed_allow_0x(trader, nbytes=48, name="trader")
        self._current[pk] = n
        return n

    def copy(self) -> "NonceTable":
        return NonceTable(dict(self._current))

    def get_all(self) -> Mapping[AccountId, int]:
        # Shallow copy so callers can iterate while the table mutates.
        return dict(self._current)
