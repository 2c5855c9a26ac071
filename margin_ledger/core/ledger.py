"""
MarginLedger: the public, transactional surface of the margin ledger.

Every mutating method runs as one serialized, all-or-nothing transaction:

- a process-wide mutex serializes callers; a reentrancy flag rejects nested
  entry from the same thread (e.g. a custodian or oracle calling back into
  the ledger mid-operation),
- engines work on a private copy of `LedgerState`; the copy replaces the
  committed state only if the operation returns normally,
- custodian balances are snapshotted at entry and restored on failure.

Read-only views (`position`, `account_risk`, `is_liquidatable`, ...) run
against the committed state without taking the transaction.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, List, Optional, Sequence

from ..state.balances import AccountId, AssetId
from ..state.positions import PositionLedger
from ..state.settlements import SettlementBook, SettlementTotals
from . import liquidation as _liquidation
from . import margin as _margin
from . import settlement as _settlement
from . import trading as _trading
from .config import LedgerConfig
from .context import (
    Collaborators,
    LedgerContext,
    LedgerState,
    require_account,
    require_asset,
    require_instrument_id,
    require_positive_int,
)
from .errors import AuthorizationError, ExternalDependencyError, LedgerError, MarginError, ReentrancyError
from .interfaces import CollateralCustodian, InstrumentCatalog, PriceOracle, RiskParamSource
from .params import LiquidationParams, RiskParams
from .types import (
    AccountRisk,
    Event,
    InstrumentId,
    LedgerEvent,
    LiquidationResult,
    SettlementResult,
    Trade,
    TradeFill,
)

logger = logging.getLogger(__name__)


def _wall_clock() -> int:
    return int(time.time())


class MarginLedger:
    def __init__(
        self,
        *,
        config: LedgerConfig,
        catalog: InstrumentCatalog,
        custodian: CollateralCustodian,
        oracle: PriceOracle,
        risk_source: RiskParamSource,
        liquidation_params: Optional[LiquidationParams] = None,
        risk_params: Optional[RiskParams] = None,
        clock: Callable[[], int] = _wall_clock,
    ) -> None:
        self._config = config
        self._deps = Collaborators(
            catalog=catalog,
            custodian=custodian,
            oracle=oracle,
            risk_source=risk_source,
        )
        self._clock = clock
        self._state = LedgerState(
            positions=PositionLedger(),
            settlements=SettlementBook(),
            risk_params=risk_params if risk_params is not None else risk_source.get_risk_params(),
            liquidation_params=liquidation_params if liquidation_params is not None else LiquidationParams(),
        )
        self._mutex = threading.RLock()
        self._entered = False

    # -- Transaction plumbing -------------------------------------------------

    def _context(self, state: LedgerState) -> LedgerContext:
        return LedgerContext(state=state, deps=self._deps, config=self._config, now=self.now())

    @contextmanager
    def _transaction(self) -> Iterator[LedgerContext]:
        with self._mutex:
            if self._entered:
                raise ReentrancyError("reentrant call into the margin ledger")
            self._entered = True
            try:
                working = self._state.copy()
                token = self._deps.custodian.snapshot()
                try:
                    yield self._context(working)
                except BaseException:
                    self._deps.custodian.restore(token)
                    raise
                self._state = working
            finally:
                self._entered = False

    def _require_admin(self, caller: AccountId) -> None:
        if require_account(caller, name="caller") != self._config.admin:
            raise AuthorizationError("admin only")

    # -- Trading --------------------------------------------------------------

    def apply_trade(self, trade: Trade, *, caller: AccountId) -> TradeFill:
        return self.apply_trades([trade], caller=caller)[0]

    def apply_trades(self, trades: Iterable[Trade], *, caller: AccountId) -> List[TradeFill]:
        with self._transaction() as ctx:
            return _trading.apply_trades(ctx, trades, caller=caller)

    # -- Settlement -----------------------------------------------------------

    def settle(self, instrument_id: InstrumentId, trader: AccountId) -> SettlementResult:
        with self._transaction() as ctx:
            result = _settlement.settle(ctx, instrument_id, trader)
        logger.info(
            "settled instrument=%s trader=%s position=%s paid=%s collected=%s bad_debt=%s",
            result.instrument_id,
            result.trader,
            result.position,
            result.paid,
            result.collected,
            result.bad_debt,
        )
        return result

    def settle_batch(self, instrument_id: InstrumentId, traders: Iterable[AccountId]) -> List[SettlementResult]:
        """All-or-nothing: one failing trader rolls back every settlement in the batch."""
        with self._transaction() as ctx:
            results = _settlement.settle_batch(ctx, instrument_id, traders)
        logger.info("settled instrument=%s for %d traders", instrument_id, len(results))
        return results

    # -- Liquidation ----------------------------------------------------------

    def liquidate(
        self,
        trader: AccountId,
        instrument_ids: Sequence[InstrumentId],
        quantities: Sequence[int],
        *,
        caller: AccountId,
    ) -> LiquidationResult:
        with self._transaction() as ctx:
            result = _liquidation.liquidate(ctx, trader, instrument_ids, quantities, liquidator=caller)
        logger.info(
            "liquidated trader=%s liquidator=%s contracts=%s ratio_bps=%s->%s penalty=%s/%s",
            result.trader,
            result.liquidator,
            result.contracts_closed,
            result.pre_ratio_bps,
            result.post_ratio_bps,
            result.penalty_covered,
            result.penalty_value,
        )
        return result

    # -- Collateral -----------------------------------------------------------

    def deposit(self, account: AccountId, asset: AssetId, amount: int, *, caller: AccountId) -> None:
        account = require_account(account, name="account")
        asset = require_asset(asset, name="asset")
        amount = require_positive_int(amount, name="amount")
        with self._transaction() as ctx:
            if require_account(caller, name="caller") != account:
                raise AuthorizationError("only the account owner may deposit")
            ctx.asset_config(asset)
            self._call_custodian(ctx.deps.custodian.deposit_for, account, asset, amount)
            ctx.emit(Event.COLLATERAL_DEPOSITED, account=account, asset=asset, amount=amount)

    def withdraw(self, account: AccountId, asset: AssetId, amount: int, *, caller: AccountId) -> None:
        account = require_account(account, name="account")
        asset = require_asset(asset, name="asset")
        amount = require_positive_int(amount, name="amount")
        with self._transaction() as ctx:
            if require_account(caller, name="caller") != account:
                raise AuthorizationError("only the account owner may withdraw")
            ctx.ensure_not_paused()
            ctx.ensure_risk_params_synced()
            ctx.asset_config(asset)
            self._call_custodian(ctx.deps.custodian.withdraw_for, account, asset, amount)
            risk = _margin.assess(ctx, account)
            if risk.equity < risk.initial_margin:
                raise MarginError(account, risk.equity, risk.initial_margin)
            ctx.emit(Event.COLLATERAL_WITHDRAWN, account=account, asset=asset, amount=amount)

    @staticmethod
    def _call_custodian(fn: Callable[[AccountId, AssetId, int], None], account: AccountId, asset: AssetId, amount: int) -> None:
        try:
            fn(account, asset, amount)
        except LedgerError:
            raise
        except NotImplementedError as exc:
            raise ExternalDependencyError(f"custodian does not support on-behalf operations: {exc}") from exc

    # -- Administration -------------------------------------------------------

    def sync_risk_params(self, *, caller: AccountId) -> RiskParams:
        """Re-cache the risk parameters from the source of truth."""
        self._require_admin(caller)
        with self._transaction() as ctx:
            fresh = ctx.deps.risk_source.get_risk_params()
            ctx.asset_config(fresh.base_asset)
            previous = ctx.state.risk_params
            ctx.state.risk_params = fresh
            ctx.emit(Event.RISK_PARAMS_SYNCED, previous_version=previous.version, version=fresh.version)
        logger.info("risk params synced: v%s -> v%s", previous.version, fresh.version)
        return fresh

    def set_liquidation_params(self, params: LiquidationParams, *, caller: AccountId) -> None:
        self._require_admin(caller)
        with self._transaction() as ctx:
            ctx.state.liquidation_params = params
            ctx.emit(Event.LIQUIDATION_PARAMS_SET, close_factor_bps=params.close_factor_bps)

    def pause(self, *, caller: AccountId) -> None:
        self._require_admin(caller)
        with self._transaction() as ctx:
            ctx.state.paused = True
            ctx.emit(Event.PAUSED)
        logger.warning("margin ledger paused")

    def unpause(self, *, caller: AccountId) -> None:
        self._require_admin(caller)
        with self._transaction() as ctx:
            ctx.state.paused = False
            ctx.emit(Event.UNPAUSED)
        logger.info("margin ledger unpaused")

    # -- Views ----------------------------------------------------------------

    @property
    def config(self) -> LedgerConfig:
        return self._config

    def now(self) -> int:
        return int(self._clock())

    @property
    def paused(self) -> bool:
        return self._state.paused

    @property
    def risk_params(self) -> RiskParams:
        return self._state.risk_params

    @property
    def liquidation_params(self) -> LiquidationParams:
        return self._state.liquidation_params

    @property
    def positions(self) -> PositionLedger:
        """Committed positions. Treat as read-only."""
        return self._state.positions

    @property
    def settlements(self) -> SettlementBook:
        """Committed settlement records. Treat as read-only."""
        return self._state.settlements

    def position(self, trader: AccountId, instrument_id: InstrumentId) -> int:
        return self._state.positions.get(require_account(trader, name="trader"), require_instrument_id(instrument_id))

    def short_exposure(self, trader: AccountId) -> int:
        return self._state.positions.short_exposure(require_account(trader, name="trader"))

    def open_instruments(self, trader: AccountId, offset: int = 0, limit: Optional[int] = None) -> List[InstrumentId]:
        return self._state.positions.open_instruments(require_account(trader, name="trader"), offset, limit)

    def settlement_totals(self, instrument_id: InstrumentId) -> SettlementTotals:
        return self._state.settlements.totals(require_instrument_id(instrument_id))

    def is_settled(self, instrument_id: InstrumentId, trader: AccountId) -> bool:
        return self._state.settlements.is_settled(
            require_instrument_id(instrument_id), require_account(trader, name="trader")
        )

    def events(self) -> List[LedgerEvent]:
        return list(self._state.events)

    def check_invariants(self) -> List[str]:
        """Ids of violated position-ledger invariants (empty when healthy)."""
        return self._state.positions.check_invariants()

    def account_risk(self, trader: AccountId) -> AccountRisk:
        ctx = self._context(self._state)
        return _margin.assess(ctx, require_account(trader, name="trader"))

    def margin_ratio_bps(self, trader: AccountId) -> int:
        return self.account_risk(trader).margin_ratio_bps

    def is_liquidatable(self, trader: AccountId) -> bool:
        ctx = self._context(self._state)
        ctx.ensure_risk_params_synced()
        return _margin.is_liquidatable(ctx, _margin.assess(ctx, require_account(trader, name="trader")))

    def risk_params_in_sync(self) -> bool:
        return self._state.risk_params.same_terms(self._deps.risk_source.get_risk_params())
