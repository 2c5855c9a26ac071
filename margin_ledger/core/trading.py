"""Trade application engine.

`apply_trades()` is the only code path that opens or changes positions in
response to a matched trade. It runs inside a ledger transaction; any
exception raised here discards every position and cash change of the call.
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from ..state.balances import AccountId
from .context import (
    LedgerContext,
    require_account,
    require_instrument_id,
    require_positive_int,
)
from .errors import AuthorizationError, MarginError, ValidationError
from .margin import assess
from .safe_math import abs_val, checked_mul
from .types import Event, Trade, TradeFill

logger = logging.getLogger(__name__)


def check_close_only(old: int, new: int, *, role: str) -> None:
    """Reduce-only rule for inactive instruments: no opening, no flip, no increase."""
    if old == 0 and new != 0:
        raise ValidationError(f"instrument inactive: {role} cannot open a position")
    if new != 0 and (old > 0) != (new > 0):
        raise ValidationError(f"instrument inactive: {role} position cannot flip sign")
    if abs_val(new) > abs_val(old):
        raise ValidationError(f"instrument inactive: {role} position cannot increase")


def normalize_trade(trade: Trade) -> Trade:
    buyer = require_account(trade.buyer, name="buyer")
    seller = require_account(trade.seller, name="seller")
    if buyer == seller:
        raise ValidationError("buyer and seller must differ")
    return Trade(
        buyer=buyer,
        seller=seller,
        instrument_id=require_instrument_id(trade.instrument_id),
        quantity=require_positive_int(trade.quantity, name="quantity"),
        price=require_positive_int(trade.price, name="price"),
    )


def _apply_one(ctx: LedgerContext, trade: Trade) -> TradeFill:
    trade = normalize_trade(trade)
    inst = ctx.instrument(trade.instrument_id)
    if ctx.is_expired(inst):
        raise ValidationError(f"instrument {trade.instrument_id} has expired")
    ctx.asset_config(inst.settlement_asset)

    positions = ctx.state.positions
    buyer_old = positions.get(trade.buyer, trade.instrument_id)
    seller_old = positions.get(trade.seller, trade.instrument_id)
    buyer_new = buyer_old + trade.quantity
    seller_new = seller_old - trade.quantity
    if not inst.is_active:
        check_close_only(buyer_old, buyer_new, role="buyer")
        check_close_only(seller_old, seller_new, role="seller")

    positions.apply_delta(trade.buyer, trade.instrument_id, trade.quantity)
    positions.apply_delta(trade.seller, trade.instrument_id, -trade.quantity)

    premium = checked_mul(trade.quantity, trade.price)
    ctx.transfer(inst.settlement_asset, trade.buyer, trade.seller, premium)

    for account in (trade.buyer, trade.seller):
        _require_initial_margin(ctx, account)

    ctx.emit(
        Event.TRADE_APPLIED,
        instrument_id=trade.instrument_id,
        buyer=trade.buyer,
        seller=trade.seller,
        quantity=trade.quantity,
        price=trade.price,
        premium=premium,
    )
    return TradeFill(trade=trade, premium=premium, buyer_position=buyer_new, seller_position=seller_new)


def _require_initial_margin(ctx: LedgerContext, account: AccountId) -> None:
    risk = assess(ctx, account)
    if risk.equity < risk.initial_margin:
        raise MarginError(account, risk.equity, risk.initial_margin)


def apply_trades(ctx: LedgerContext, trades: Iterable[Trade], *, caller: AccountId) -> List[TradeFill]:
    """Apply matched trades in order. All-or-nothing across the whole list."""
    if require_account(caller, name="caller") != ctx.config.trade_operator:
        raise AuthorizationError("only the trade operator may apply trades")
    ctx.ensure_not_paused()
    ctx.ensure_risk_params_synced()

    trades = list(trades)
    if not trades:
        raise ValidationError("no trades to apply")

    fills = [_apply_one(ctx, trade) for trade in trades]
    for fill in fills:
        logger.info(
            "trade applied: instrument=%s qty=%s price=%s buyer=%s seller=%s",
            fill.trade.instrument_id,
            fill.trade.quantity,
            fill.trade.price,
            fill.trade.buyer,
            fill.trade.seller,
        )
    return fills
