"""
In-memory collaborators for the margin ledger.

These back local runs and tests. They implement the protocols in
`margin_ledger/core/interfaces.py` and nothing more; production deployments
plug in adapters for the real catalog, custodian, oracle and risk service.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Dict, Optional, Tuple

from ..core.errors import InsufficientBalanceError, ValidationError
from ..core.params import RiskParams
from ..core.types import AssetConfig, Instrument, InstrumentId, PriceQuote, SettlementInfo
from ..state.balances import AccountId, AssetId, BalanceTable
from ..state.canonical import canonical_hex_fixed_allow_0x


def _account(value: str) -> AccountId:
    return canonical_hex_fixed_allow_0x(value, nbytes=48, name="account")


def _asset(value: str) -> AssetId:
    return canonical_hex_fixed_allow_0x(value, nbytes=32, name="asset")


class InMemoryCatalog:
    def __init__(self) -> None:
        self._instruments: Dict[InstrumentId, Instrument] = {}
        self._settlements: Dict[InstrumentId, SettlementInfo] = {}

    def add_instrument(self, instrument_id: InstrumentId, instrument: Instrument) -> None:
        if instrument_id in self._instruments:
            raise ValueError(f"instrument {instrument_id} already listed")
        self._instruments[instrument_id] = replace(
            instrument,
            underlying=_asset(instrument.underlying),
            settlement_asset=_asset(instrument.settlement_asset),
        )

    def set_active(self, instrument_id: InstrumentId, is_active: bool) -> None:
        self._instruments[instrument_id] = replace(self._instruments[instrument_id], is_active=bool(is_active))

    def finalize(self, instrument_id: InstrumentId, final_price_e8: int) -> None:
        if instrument_id not in self._instruments:
            raise KeyError(instrument_id)
        self._settlements[instrument_id] = SettlementInfo(final_price_e8=int(final_price_e8), is_finalized=True)

    def get_instrument(self, instrument_id: InstrumentId) -> Instrument:
        return self._instruments[instrument_id]

    def get_settlement_info(self, instrument_id: InstrumentId) -> SettlementInfo:
        return self._settlements.get(instrument_id, SettlementInfo(final_price_e8=0, is_finalized=False))


class InMemoryCustodian:
    """
    Custodian backed by a `BalanceTable`.

    `on_transfer` is invoked before every transfer; tests use it to simulate a
    collaborator calling back into the ledger. Set `fail_sync` to make
    `best_effort_sync` raise.
    """

    def __init__(self, *, supports_on_behalf: bool = True) -> None:
        self._balances = BalanceTable()
        self._assets: Dict[AssetId, AssetConfig] = {}
        self.supports_on_behalf = supports_on_behalf
        self.fail_sync = False
        self.sync_calls = 0
        self.on_transfer: Optional[Callable[[], None]] = None

    # -- Setup ---------------------------------------------------------------

    def register_asset(self, asset: AssetId, *, decimals: int, supported: bool = True) -> None:
        self._assets[_asset(asset)] = AssetConfig(is_supported=supported, decimals=decimals)

    def credit(self, account: AccountId, asset: AssetId, amount: int) -> None:
        """Fund an account directly (test and bootstrap helper)."""
        self._balances.credit(_account(account), _asset(asset), amount)

    @property
    def balances(self) -> BalanceTable:
        return self._balances

    # -- CollateralCustodian -------------------------------------------------

    def balance_of(self, account: AccountId, asset: AssetId) -> int:
        return self._balances.get(_account(account), _asset(asset))

    def transfer_between(self, asset: AssetId, source: AccountId, dest: AccountId, amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValidationError("transfer amount must be a positive int")
        if self.on_transfer is not None:
            self.on_transfer()
        asset, source, dest = _asset(asset), _account(source), _account(dest)
        try:
            self._balances.move(asset, source, dest, amount)
        except ValueError as exc:
            raise InsufficientBalanceError(str(exc)) from exc

    def deposit_for(self, account: AccountId, asset: AssetId, amount: int) -> None:
        if not self.supports_on_behalf:
            raise NotImplementedError("deposit_for")
        self._balances.credit(_account(account), _asset(asset), amount)

    def withdraw_for(self, account: AccountId, asset: AssetId, amount: int) -> None:
        if not self.supports_on_behalf:
            raise NotImplementedError("withdraw_for")
        try:
            self._balances.debit(_account(account), _asset(asset), amount)
        except ValueError as exc:
            raise InsufficientBalanceError(str(exc)) from exc

    def get_asset_config(self, asset: AssetId) -> AssetConfig:
        return self._assets.get(_asset(asset), AssetConfig(is_supported=False, decimals=0))

    def best_effort_sync(self, account: AccountId, asset: AssetId) -> None:
        self.sync_calls += 1
        if self.fail_sync:
            raise RuntimeError("sync unavailable")

    def snapshot(self) -> BalanceTable:
        return self._balances.copy()

    def restore(self, token: BalanceTable) -> None:
        self._balances = token.copy()


class StaticOracle:
    """Oracle returning whatever was last set; unknown pairs quote zero."""

    def __init__(self) -> None:
        self._quotes: Dict[Tuple[AssetId, AssetId], PriceQuote] = {}
        self.on_read: Optional[Callable[[], None]] = None

    def set_price(self, asset_a: AssetId, asset_b: AssetId, price_e8: int, *, updated_at: int) -> None:
        self._quotes[(_asset(asset_a), _asset(asset_b))] = PriceQuote(price_e8=int(price_e8), updated_at=int(updated_at))

    def get_price(self, asset_a: AssetId, asset_b: AssetId) -> PriceQuote:
        if self.on_read is not None:
            self.on_read()
        return self._quotes.get((_asset(asset_a), _asset(asset_b)), PriceQuote(price_e8=0, updated_at=0))


class StaticRiskParamSource:
    def __init__(self, params: RiskParams) -> None:
        self._params = params

    def set_params(self, params: RiskParams) -> None:
        self._params = params

    def get_risk_params(self) -> RiskParams:
        return self._params
