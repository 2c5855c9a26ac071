"""Settlement engine: one-time terminal payoff per (instrument, trader).

Longs are paid by the backstop treasury (a shortfall there fails the call).
Shorts are debited up to their available balance; whatever cannot be
collected is recorded as bad debt against the backstop and not pursued.
"""

from __future__ import annotations

from typing import Iterable, List

from ..state.balances import AccountId
from .context import LedgerContext, require_account, require_instrument_id
from .errors import ExternalDependencyError, InsufficientBalanceError, ValidationError
from .safe_math import Rounding, abs_val, checked_mul, intrinsic_value_e8, price_to_native
from .types import Event, SettlementResult


def payoff_per_contract_e8(ctx: LedgerContext, instrument_id: int) -> int:
    inst = ctx.instrument(instrument_id)
    if not ctx.is_expired(inst):
        raise ValidationError(f"instrument {instrument_id} has not expired")
    info = ctx.deps.catalog.get_settlement_info(instrument_id)
    if not info.is_finalized or info.final_price_e8 <= 0:
        raise ExternalDependencyError(f"settlement price for instrument {instrument_id} is not finalized")
    return intrinsic_value_e8(is_call=inst.is_call, strike_e8=inst.strike_e8, spot_e8=info.final_price_e8)


def settle(ctx: LedgerContext, instrument_id: int, trader: AccountId) -> SettlementResult:
    iid = require_instrument_id(instrument_id)
    trader = require_account(trader, name="trader")
    payoff_e8 = payoff_per_contract_e8(ctx, iid)

    book = ctx.state.settlements
    if book.is_settled(iid, trader):
        raise ValidationError(f"instrument {iid} already settled for {trader}")
    book.mark_settled(iid, trader)

    positions = ctx.state.positions
    qty = positions.get(trader, iid)
    if qty == 0:
        ctx.emit(Event.SETTLED_FLAT, account=trader, instrument_id=iid)
        return SettlementResult(instrument_id=iid, trader=trader, position=0, payoff_per_contract_e8=payoff_e8)

    inst = ctx.instrument(iid)
    asset = inst.settlement_asset
    decimals = ctx.decimals(asset)
    backstop = ctx.config.backstop
    paid = collected = bad_debt = 0

    if payoff_e8 > 0 and qty > 0:
        paid = price_to_native(checked_mul(qty, payoff_e8), decimals, Rounding.DOWN)
        available = ctx.available(backstop, asset)
        if available < paid:
            raise InsufficientBalanceError(
                f"backstop cannot fund settlement of instrument {iid}: {available} < {paid}"
            )
        ctx.transfer(asset, backstop, trader, paid)
    elif payoff_e8 > 0:
        owed = price_to_native(checked_mul(abs_val(qty), payoff_e8), decimals, Rounding.UP)
        collected = min(owed, ctx.available(trader, asset))
        bad_debt = owed - collected
        ctx.transfer(asset, trader, backstop, collected)

    book.record(iid, collected=collected, paid=paid, bad_debt=bad_debt)
    positions.apply_delta(trader, iid, -qty)
    ctx.emit(
        Event.SETTLED,
        account=trader,
        instrument_id=iid,
        position=qty,
        payoff_per_contract_e8=payoff_e8,
        paid=paid,
        collected=collected,
        bad_debt=bad_debt,
    )
    return SettlementResult(
        instrument_id=iid,
        trader=trader,
        position=qty,
        payoff_per_contract_e8=payoff_e8,
        paid=paid,
        collected=collected,
        bad_debt=bad_debt,
    )


def settle_batch(ctx: LedgerContext, instrument_id: int, traders: Iterable[AccountId]) -> List[SettlementResult]:
    """Settle `traders` in order inside one transaction.

    A single failing trader (already settled, backstop shortfall) aborts the
    whole batch; settle the rest separately or call `settle` per trader.
    """
    traders = list(traders)
    if not traders:
        raise ValidationError("no traders to settle")
    return [settle(ctx, instrument_id, trader) for trader in traders]
