"""Liquidation engine.

One call acts on one distressed trader over a caller-ordered list of
(instrument, requested quantity) candidates:

1. reject self-liquidation, empty or mismatched candidate lists,
   unsynchronized parameters and a zero close factor,
2. require the trader to be liquidatable with nonzero short exposure,
3. closing allowance = short exposure * close factor (at least 1),
4. move short exposure to the liquidator candidate by candidate, pricing each
   fill from the staleness-checked spot, bucketing cash per settlement asset,
5. abort if nothing executed,
6. pay the liquidator min(required, available) per asset,
7. seize the penalty into the backstop: base asset first, then the other
   touched assets, converting via the oracle,
8. require a measurable improvement of the trader's margin position,
9. require the liquidator to meet initial margin.

Any failure rolls back the whole call.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from ..state.balances import AccountId, AssetId
from .context import LedgerContext, require_account
from .errors import MarginError, ValidationError
from .margin import assess, is_liquidatable
from .safe_math import (
    BPS_SCALE,
    Rounding,
    amount_for_value,
    bps_of,
    checked_add,
    checked_mul,
    convert_amount,
    intrinsic_value_e8,
    mul_div,
    price_to_native,
)
from .types import AccountRisk, Event, Instrument, LiquidationFill, LiquidationResult

logger = logging.getLogger(__name__)


def liquidation_price_e8(ctx: LedgerContext, inst: Instrument) -> int:
    """Per-contract liquidation price: intrinsic plus spread, floored relative to intrinsic."""
    params = ctx.state.liquidation_params
    spot = ctx.price(inst.underlying, inst.settlement_asset)
    intrinsic = intrinsic_value_e8(is_call=inst.is_call, strike_e8=inst.strike_e8, spot_e8=spot)
    price = mul_div(intrinsic, BPS_SCALE + params.spread_bps, BPS_SCALE, Rounding.UP)
    if params.intrinsic_floor_bps:
        price = max(price, bps_of(intrinsic, params.intrinsic_floor_bps, Rounding.UP))
    return price


def closing_allowance(short_exposure: int, close_factor_bps: int) -> int:
    if short_exposure == 0:
        return 0
    return max(1, bps_of(short_exposure, close_factor_bps, Rounding.DOWN))


def _seize_penalty(
    ctx: LedgerContext,
    trader: AccountId,
    penalty: int,
    touched_assets: Sequence[AssetId],
) -> int:
    """Seize `penalty` (base-asset value) from the trader into the backstop. Returns value covered."""
    if penalty == 0:
        return 0
    base = ctx.state.risk_params.base_asset
    backstop = ctx.config.backstop

    take = min(penalty, ctx.available(trader, base))
    ctx.transfer(base, trader, backstop, take)
    covered = take
    if take:
        ctx.emit(Event.PENALTY_SEIZED, account=trader, asset=base, amount=take, value=take)

    base_decimals = ctx.decimals(base)
    for asset in touched_assets:
        remaining = penalty - covered
        if remaining == 0:
            break
        if asset == base:
            continue
        balance = ctx.available(trader, asset)
        if balance == 0:
            continue
        price = ctx.price(asset, base)
        asset_decimals = ctx.decimals(asset)
        needed = amount_for_value(
            remaining,
            value_decimals=base_decimals,
            amount_decimals=asset_decimals,
            price_e8=price,
            rounding=Rounding.UP,
        )
        amount = min(needed, balance)
        if amount == 0:
            continue
        value = remaining if amount == needed else convert_amount(
            amount,
            from_decimals=asset_decimals,
            to_decimals=base_decimals,
            price_e8=price,
            rounding=Rounding.DOWN,
        )
        ctx.transfer(asset, trader, backstop, amount)
        covered += min(value, remaining)
        ctx.emit(Event.PENALTY_SEIZED, account=trader, asset=asset, amount=amount, value=min(value, remaining))
    return covered


def _require_improvement(ctx: LedgerContext, pre: AccountRisk, post: AccountRisk) -> None:
    if pre.equity > 0:
        target = checked_add(pre.margin_ratio_bps, ctx.state.liquidation_params.min_improvement_bps)
        if post.margin_ratio_bps < target:
            raise ValidationError(
                f"liquidation does not improve margin ratio enough: {pre.margin_ratio_bps} -> {post.margin_ratio_bps}"
            )
        return
    if post.maintenance_margin < pre.maintenance_margin or post.equity > pre.equity:
        return
    raise ValidationError("liquidation of insolvent account neither reduced margin nor increased equity")


def liquidate(
    ctx: LedgerContext,
    trader: AccountId,
    instrument_ids: Sequence[int],
    quantities: Sequence[int],
    *,
    liquidator: AccountId,
) -> LiquidationResult:
    trader = require_account(trader, name="trader")
    liquidator = require_account(liquidator, name="liquidator")
    if trader == liquidator:
        raise ValidationError("liquidator cannot target itself")
    instrument_ids = list(instrument_ids)
    quantities = list(quantities)
    if not instrument_ids:
        raise ValidationError("no liquidation candidates")
    if len(instrument_ids) != len(quantities):
        raise ValidationError("instrument_ids and quantities must have the same length")
    ctx.ensure_not_paused()
    ctx.ensure_risk_params_synced()
    params = ctx.state.liquidation_params
    if params.close_factor_bps == 0:
        raise ValidationError("liquidation disabled: close factor is zero")

    pre = assess(ctx, trader)
    if pre.short_exposure == 0 or not is_liquidatable(ctx, pre):
        raise ValidationError(f"account {trader} is not liquidatable")

    remaining = closing_allowance(pre.short_exposure, params.close_factor_bps)
    positions = ctx.state.positions
    fills: List[LiquidationFill] = []
    cash_required: Dict[AssetId, int] = {}
    closed = 0

    for iid, requested in zip(instrument_ids, quantities):
        if remaining == 0:
            break
        if not isinstance(requested, int) or isinstance(requested, bool) or requested < 0:
            raise ValidationError("liquidation quantities must be non-negative ints")
        if requested == 0:
            continue
        inst = ctx.instrument(iid)
        if ctx.is_expired(inst):
            logger.debug("skip instrument %s: expired", iid)
            continue
        position = positions.get(trader, iid)
        if position >= 0:
            logger.debug("skip instrument %s: trader not short", iid)
            continue
        qty = min(requested, -position, remaining)

        positions.apply_delta(trader, iid, qty)
        positions.apply_delta(liquidator, iid, -qty)

        price_e8 = liquidation_price_e8(ctx, inst)
        per_contract = price_to_native(price_e8, ctx.decimals(inst.settlement_asset), Rounding.UP)
        cash = checked_mul(per_contract, qty)
        cash_required[inst.settlement_asset] = checked_add(cash_required.get(inst.settlement_asset, 0), cash)
        fills.append(LiquidationFill(instrument_id=iid, quantity=qty, price_e8=price_e8, cash_required=cash))
        remaining -= qty
        closed += qty

    if closed == 0:
        raise ValidationError("nothing to liquidate")

    cash_paid: Dict[AssetId, int] = {}
    for asset, required in cash_required.items():
        amount = min(required, ctx.available(trader, asset))
        ctx.transfer(asset, trader, liquidator, amount)
        cash_paid[asset] = amount

    penalty = bps_of(
        checked_mul(ctx.state.risk_params.base_maintenance_margin, closed),
        params.penalty_bps,
        Rounding.UP,
    )
    covered = _seize_penalty(ctx, trader, penalty, list(cash_required))

    post = assess(ctx, trader)
    _require_improvement(ctx, pre, post)

    liquidator_risk = assess(ctx, liquidator)
    if liquidator_risk.equity < liquidator_risk.initial_margin:
        raise MarginError(liquidator, liquidator_risk.equity, liquidator_risk.initial_margin)

    ctx.emit(
        Event.LIQUIDATED,
        account=trader,
        liquidator=liquidator,
        contracts_closed=closed,
        cash_paid=dict(cash_paid),
        penalty_value=penalty,
        penalty_covered=covered,
        pre_ratio_bps=pre.margin_ratio_bps,
        post_ratio_bps=post.margin_ratio_bps,
    )
    return LiquidationResult(
        trader=trader,
        liquidator=liquidator,
        fills=tuple(fills),
        contracts_closed=closed,
        cash_paid=cash_paid,
        penalty_value=penalty,
        penalty_covered=covered,
        pre_ratio_bps=pre.margin_ratio_bps,
        post_ratio_bps=post.margin_ratio_bps,
    )
