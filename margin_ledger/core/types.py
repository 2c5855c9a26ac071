"""Data types for the margin ledger.

All value types are frozen dataclasses.

Units/conventions:
- `*_e8` prices are 8-decimal fixed point.
- `*_bps` rates are basis points (1/10_000).
- positions are signed contract counts (long > 0, short < 0).
- trade `price` is premium per contract in settlement-asset native units.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Mapping, Optional, Tuple

from ..state.balances import AccountId, AssetId


InstrumentId = int

CONTRACT_SIZE_E8: int = 100_000_000


@unique
class Event(Enum):
    TRADE_APPLIED = "TradeApplied"
    SETTLED = "Settled"
    SETTLED_FLAT = "SettledFlat"
    LIQUIDATED = "Liquidated"
    PENALTY_SEIZED = "PenaltySeized"
    COLLATERAL_DEPOSITED = "CollateralDeposited"
    COLLATERAL_WITHDRAWN = "CollateralWithdrawn"
    RISK_PARAMS_SYNCED = "RiskParamsSynced"
    LIQUIDATION_PARAMS_SET = "LiquidationParamsSet"
    PAUSED = "Paused"
    UNPAUSED = "Unpaused"


@dataclass(frozen=True)
class Instrument:
    """Catalog entry for one option series."""

    underlying: AssetId
    settlement_asset: AssetId
    strike_e8: int
    expiry: int
    is_call: bool
    is_active: bool = True
    contract_size_e8: int = CONTRACT_SIZE_E8


@dataclass(frozen=True)
class SettlementInfo:
    final_price_e8: int
    is_finalized: bool


@dataclass(frozen=True)
class AssetConfig:
    is_supported: bool
    decimals: int


@dataclass(frozen=True)
class PriceQuote:
    price_e8: int
    updated_at: int


@dataclass(frozen=True)
class Trade:
    buyer: AccountId
    seller: AccountId
    instrument_id: InstrumentId
    quantity: int
    price: int


@dataclass(frozen=True)
class TradeFill:
    trade: Trade
    premium: int
    buyer_position: int
    seller_position: int


@dataclass(frozen=True)
class AccountRisk:
    """Point-in-time margin assessment, all values in base-asset native units."""

    equity: int
    maintenance_margin: int
    initial_margin: int
    margin_ratio_bps: int
    short_exposure: int


@dataclass(frozen=True)
class SettlementResult:
    instrument_id: InstrumentId
    trader: AccountId
    position: int
    payoff_per_contract_e8: int
    paid: int = 0
    collected: int = 0
    bad_debt: int = 0


@dataclass(frozen=True)
class LiquidationFill:
    instrument_id: InstrumentId
    quantity: int
    price_e8: int
    cash_required: int


@dataclass(frozen=True)
class LiquidationResult:
    trader: AccountId
    liquidator: AccountId
    fills: Tuple[LiquidationFill, ...]
    contracts_closed: int
    cash_paid: Mapping[AssetId, int]
    penalty_value: int
    penalty_covered: int
    pre_ratio_bps: int
    post_ratio_bps: int


@dataclass(frozen=True)
class LedgerEvent:
    event: Event
    data: Mapping[str, Any] = field(default_factory=dict)
    account: Optional[AccountId] = None
