"""Account risk: equity, maintenance/initial margin and margin ratio.

All values are denominated in native units of the base collateral asset.

- collateral value: the base-asset balance plus the balances of the other
  configured collateral assets, converted into the base asset at the
  staleness-checked oracle price (rounded down),
- position value: qty * intrinsic for each open instrument, using the
  finalized settlement price once an instrument has expired and been
  finalized, otherwise the oracle spot. Long value rounds down, short
  liability rounds up,
- maintenance margin: aggregate short exposure * base MM per contract,
- initial margin: MM * im_factor_bps / 10000, rounded up,
- margin ratio: equity * 10000 / MM in bps (0 if equity <= 0, UINT256_MAX if MM == 0).
"""

from __future__ import annotations

from ..state.balances import AccountId
from .context import LedgerContext
from .safe_math import (
    BPS_SCALE,
    UINT256_MAX,
    Rounding,
    abs_val,
    bps_of,
    checked_mul,
    convert_amount,
    intrinsic_value_e8,
    mul_div,
    price_to_native,
)
from .types import AccountRisk, Instrument


def mark_price_e8(ctx: LedgerContext, instrument_id: int, inst: Instrument) -> int:
    """Reference price of the underlying in the settlement asset."""
    if ctx.is_expired(inst):
        info = ctx.deps.catalog.get_settlement_info(instrument_id)
        if info.is_finalized and info.final_price_e8 > 0:
            return int(info.final_price_e8)
    return ctx.price(inst.underlying, inst.settlement_asset)


def collateral_value(ctx: LedgerContext, trader: AccountId) -> int:
    base = ctx.state.risk_params.base_asset
    base_decimals = ctx.decimals(base)
    total = ctx.available(trader, base)
    for asset in ctx.config.collateral_assets:
        if asset == base:
            continue
        balance = ctx.available(trader, asset)
        if balance == 0:
            continue
        total += convert_amount(
            balance,
            from_decimals=ctx.decimals(asset),
            to_decimals=base_decimals,
            price_e8=ctx.price(asset, base),
            rounding=Rounding.DOWN,
        )
    return total


def position_value(ctx: LedgerContext, trader: AccountId) -> int:
    """Signed mark-to-intrinsic value of every open position."""
    base = ctx.state.risk_params.base_asset
    base_decimals = ctx.decimals(base)
    positions = ctx.state.positions
    total = 0
    for iid in positions.open_instruments(trader):
        qty = positions.get(trader, iid)
        inst = ctx.instrument(iid)
        intrinsic = intrinsic_value_e8(
            is_call=inst.is_call,
            strike_e8=inst.strike_e8,
            spot_e8=mark_price_e8(ctx, iid, inst),
        )
        if intrinsic == 0:
            continue
        rounding = Rounding.DOWN if qty > 0 else Rounding.UP
        settle_decimals = ctx.decimals(inst.settlement_asset)
        native = price_to_native(checked_mul(abs_val(qty), intrinsic), settle_decimals, rounding)
        if inst.settlement_asset != base:
            native = convert_amount(
                native,
                from_decimals=settle_decimals,
                to_decimals=base_decimals,
                price_e8=ctx.price(inst.settlement_asset, base),
                rounding=rounding,
            )
        total += native if qty > 0 else -native
    return total


def maintenance_margin(ctx: LedgerContext, trader: AccountId) -> int:
    return checked_mul(ctx.state.positions.short_exposure(trader), ctx.state.risk_params.base_maintenance_margin)


def initial_margin_from(mm: int, im_factor_bps: int) -> int:
    return bps_of(mm, im_factor_bps, Rounding.UP)


def margin_ratio_bps(equity: int, mm: int) -> int:
    if mm == 0:
        return UINT256_MAX
    if equity <= 0:
        return 0
    return mul_div(equity, BPS_SCALE, mm, Rounding.DOWN)


def assess(ctx: LedgerContext, trader: AccountId) -> AccountRisk:
    mm = maintenance_margin(ctx, trader)
    equity = collateral_value(ctx, trader) + position_value(ctx, trader)
    return AccountRisk(
        equity=equity,
        maintenance_margin=mm,
        initial_margin=initial_margin_from(mm, ctx.state.risk_params.im_factor_bps),
        margin_ratio_bps=margin_ratio_bps(equity, mm),
        short_exposure=ctx.state.positions.short_exposure(trader),
    )


def is_liquidatable(ctx: LedgerContext, risk: AccountRisk) -> bool:
    if risk.maintenance_margin == 0 or risk.short_exposure == 0:
        return False
    return risk.margin_ratio_bps < ctx.state.liquidation_params.margin_threshold_bps
