"""
Custody balances keyed by (account, asset).

This is the storage behind the in-memory custodian; the ledger itself never
owns balances, it only asks the custodian to move them. Amounts are
non-negative ints in the asset's native units and the table stays sparse:
a balance that reaches zero is dropped.
"""

from typing import Dict, Iterator, Tuple


# Type aliases
AccountId = str  # BLS12-381 public key as 0x-prefixed 48-byte hex string
AssetId = str  # 0x-prefixed 32-byte hex string
Amount = int  # Non-negative integer in the asset's native units


def _require_amount(amount: Amount) -> Amount:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
        raise ValueError(f"amount must be a non-negative int: {amount!r}")
    return amount


class BalanceTable:
    """
    (account, asset) -> amount.

    `move` is the only two-sided operation; it checks the source before
    touching either side, so a failed move changes nothing.
    """

    def __init__(self) -> None:
        self._held: Dict[Tuple[AccountId, AssetId], Amount] = {}

    def get(self, account: AccountId, asset: AssetId) -> Amount:
        return self._held.get((account, asset), 0)

    def _put(self, account: AccountId, asset: AssetId, amount: Amount) -> None:
        if amount == 0:
            self._held.pop((account, asset), None)
        else:
            self._held[(account, asset)] = amount

    def credit(self, account: AccountId, asset: AssetId, amount: Amount) -> None:
        self._put(account, asset, self.get(account, asset) + _require_amount(amount))

    def debit(self, account: AccountId, asset: AssetId, amount: Amount) -> None:
        """
        Raises:
            ValueError: if `account` holds less than `amount` of `asset`
        """
        held = self.get(account, asset)
        if held < _require_amount(amount):
            raise ValueError(f"{account} holds {held} of {asset}, needs {amount}")
        self._put(account, asset, held - amount)

    def move(self, asset: AssetId, source: AccountId, dest: AccountId, amount: Amount) -> None:
        self.debit(source, asset, amount)
        self.credit(dest, asset, amount)

    def total_for_asset(self, asset: AssetId) -> Amount:
        """Sum held in `asset` across all accounts; transfers never change it."""
        return sum(amount for (_, a), amount in self._held.items() if a == asset)

    def items(self) -> Iterator[Tuple[AccountId, AssetId, Amount]]:
        """Non-zero balances in (account, asset) order."""
        for (account, asset), amount in sorted(self._held.items()):
            yield account, asset, amount

    def copy(self) -> "BalanceTable":
        copied = BalanceTable()
        copied._held = dict(self._held)
        return copied

    def __repr__(self) -> str:
        return f"BalanceTable({len(self._held)} entries)"
