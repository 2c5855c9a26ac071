"""
Per-call execution context.

`LedgerState` is the ledger-owned mutable state. Every mutating operation runs
against a private copy of it (see `MarginLedger._transaction`), so engines
can mutate freely and a failure simply discards the copy.

`LedgerContext` bundles that working state with the collaborators, the
config and the call's timestamp, and wraps collaborator access with the
fail-closed checks every engine needs (contract size, asset support, oracle
staleness).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ..state.balances import AccountId, AssetId
from ..state.canonical import canonical_hex_fixed_allow_0x
from ..state.positions import PositionLedger
from ..state.settlements import SettlementBook
from .config import LedgerConfig
from .errors import (
    AuthorizationError,
    ConsistencyError,
    ExternalDependencyError,
    LedgerError,
    StaleOracleError,
    ValidationError,
)
from .interfaces import CollateralCustodian, InstrumentCatalog, PriceOracle, RiskParamSource
from .params import LiquidationParams, RiskParams
from .safe_math import MAX_POW10_EXPONENT, PRICE_SCALE
from .types import CONTRACT_SIZE_E8, AssetConfig, Event, Instrument, InstrumentId, LedgerEvent

logger = logging.getLogger(__name__)

_ZERO_ACCOUNT = "0x" + "00" * 48


def require_account(value: Any, *, name: str) -> AccountId:
    """Canonicalize an account id; empty, malformed or all-zero ids are rejected as unset."""
    if value is None or value == "":
        raise ValidationError(f"{name} is unset")
    try:
        account = canonical_hex_fixed_allow_0x(value, nbytes=48, name=name)
    except (TypeError, ValueError) as exc:
        raise ValidationError(str(exc)) from exc
    if account == _ZERO_ACCOUNT:
        raise ValidationError(f"{name} is unset")
    return account


def require_asset(value: Any, *, name: str) -> AssetId:
    try:
        return canonical_hex_fixed_allow_0x(value, nbytes=32, name=name)
    except (TypeError, ValueError) as exc:
        raise ValidationError(str(exc)) from exc


def require_positive_int(value: Any, *, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{name} must be an int")
    if value <= 0:
        raise ValidationError(f"{name} must be positive")
    return int(value)


def require_instrument_id(value: Any) -> InstrumentId:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValidationError("instrument_id must be a non-negative int")
    return int(value)


@dataclass
class LedgerState:
    positions: PositionLedger
    settlements: SettlementBook
    risk_params: RiskParams
    liquidation_params: LiquidationParams
    paused: bool = False
    events: List[LedgerEvent] = field(default_factory=list)

    def copy(self) -> "LedgerState":
        return LedgerState(
            positions=self.positions.copy(),
            settlements=self.settlements.copy(),
            risk_params=self.risk_params,
            liquidation_params=self.liquidation_params,
            paused=self.paused,
            events=list(self.events),
        )


@dataclass(frozen=True)
class Collaborators:
    catalog: InstrumentCatalog
    custodian: CollateralCustodian
    oracle: PriceOracle
    risk_source: RiskParamSource


@dataclass
class LedgerContext:
    state: LedgerState
    deps: Collaborators
    config: LedgerConfig
    now: int

    # -- Guards --------------------------------------------------------------

    def ensure_not_paused(self) -> None:
        if self.state.paused:
            raise AuthorizationError("ledger is paused")

    def ensure_risk_params_synced(self) -> RiskParams:
        """Fail closed unless the cached risk parameters equal the source's."""
        try:
            source = self.deps.risk_source.get_risk_params()
        except LedgerError:
            raise
        except Exception as exc:
            raise ExternalDependencyError(f"risk parameter source unavailable: {exc}") from exc
        cached = self.state.risk_params
        if not cached.same_terms(source):
            raise ConsistencyError(
                f"risk parameters out of sync (cached v{cached.version}, source v{source.version}); "
                "call sync_risk_params()"
            )
        return cached

    # -- Catalog -------------------------------------------------------------

    def instrument(self, instrument_id: InstrumentId) -> Instrument:
        iid = require_instrument_id(instrument_id)
        try:
            inst = self.deps.catalog.get_instrument(iid)
        except LedgerError:
            raise
        except KeyError as exc:
            raise ValidationError(f"unknown instrument {iid}") from exc
        if inst.contract_size_e8 != CONTRACT_SIZE_E8:
            raise ConsistencyError(
                f"instrument {iid} has contract size {inst.contract_size_e8}, expected {CONTRACT_SIZE_E8}"
            )
        return inst

    def is_expired(self, inst: Instrument) -> bool:
        return self.now >= inst.expiry

    # -- Custodian -----------------------------------------------------------

    def asset_config(self, asset: AssetId) -> AssetConfig:
        cfg = self.deps.custodian.get_asset_config(asset)
        if not cfg.is_supported:
            raise ValidationError(f"asset {asset} is not supported by the custodian")
        if not isinstance(cfg.decimals, int) or cfg.decimals < 0 or cfg.decimals > MAX_POW10_EXPONENT:
            raise ConsistencyError(f"asset {asset} has invalid decimals {cfg.decimals!r}")
        return cfg

    def decimals(self, asset: AssetId) -> int:
        return self.asset_config(asset).decimals

    def sync_balance(self, account: AccountId, asset: AssetId) -> None:
        """Advisory refresh of yield-bearing balances; failures are logged and ignored."""
        try:
            self.deps.custodian.best_effort_sync(account, asset)
        except Exception as exc:
            logger.warning("best_effort_sync failed for %s/%s: %s", account, asset, exc)

    def available(self, account: AccountId, asset: AssetId) -> int:
        self.sync_balance(account, asset)
        return int(self.deps.custodian.balance_of(account, asset))

    def transfer(self, asset: AssetId, source: AccountId, dest: AccountId, amount: int) -> None:
        if amount == 0:
            return
        self.deps.custodian.transfer_between(asset, source, dest, amount)

    # -- Oracle --------------------------------------------------------------

    def price(self, asset_a: AssetId, asset_b: AssetId, *, max_staleness: Optional[int] = None) -> int:
        """Staleness-checked price of one whole `asset_a` in `asset_b`, 1e8-scaled."""
        if asset_a == asset_b:
            return PRICE_SCALE
        limit = self.state.liquidation_params.max_oracle_staleness if max_staleness is None else max_staleness
        try:
            quote = self.deps.oracle.get_price(asset_a, asset_b)
        except LedgerError:
            raise
        except Exception as exc:
            raise ExternalDependencyError(f"oracle unavailable for {asset_a}/{asset_b}: {exc}") from exc
        if quote.price_e8 <= 0 or quote.updated_at <= 0:
            raise StaleOracleError(f"no price for {asset_a}/{asset_b}")
        if quote.updated_at > self.now or self.now - quote.updated_at > limit:
            raise StaleOracleError(f"stale price for {asset_a}/{asset_b} (updated_at={quote.updated_at})")
        return int(quote.price_e8)

    # -- Journal -------------------------------------------------------------

    def emit(self, event: Event, *, account: Optional[AccountId] = None, **data: Any) -> None:
        self.state.events.append(LedgerEvent(event=event, data=dict(data), account=account))
