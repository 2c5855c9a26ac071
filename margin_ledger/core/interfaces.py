"""Collaborator interfaces consumed by the ledger.

The catalog, custodian, oracle and risk-parameter source are owned by other
services; the ledger only depends on these structural protocols. In-memory
implementations live in `margin_ledger/integration/memory.py`.

Custodians additionally expose `snapshot()` / `restore()` so the ledger can
roll back cash movements when an operation fails after a transfer has been
made.
"""

from __future__ import annotations

from typing import Any, Protocol

from ..state.balances import AccountId, AssetId
from .params import RiskParams
from .types import AssetConfig, Instrument, InstrumentId, PriceQuote, SettlementInfo


class InstrumentCatalog(Protocol):
    def get_instrument(self, instrument_id: InstrumentId) -> Instrument: ...

    def get_settlement_info(self, instrument_id: InstrumentId) -> SettlementInfo: ...


class CollateralCustodian(Protocol):
    def balance_of(self, account: AccountId, asset: AssetId) -> int: ...

    def transfer_between(self, asset: AssetId, source: AccountId, dest: AccountId, amount: int) -> None: ...

    def deposit_for(self, account: AccountId, asset: AssetId, amount: int) -> None: ...

    def withdraw_for(self, account: AccountId, asset: AssetId, amount: int) -> None: ...

    def get_asset_config(self, asset: AssetId) -> AssetConfig: ...

    def best_effort_sync(self, account: AccountId, asset: AssetId) -> None: ...

    def snapshot(self) -> Any: ...

    def restore(self, token: Any) -> None: ...


class PriceOracle(Protocol):
    def get_price(self, asset_a: AssetId, asset_b: AssetId) -> PriceQuote: ...


class RiskParamSource(Protocol):
    def get_risk_params(self) -> RiskParams: ...
