from __future__ import annotations

import pytest

from margin_ledger.core.errors import (
    AuthorizationError,
    ConsistencyError,
    InsufficientBalanceError,
    MarginError,
    ReentrancyError,
    StaleOracleError,
    ValidationError,
)
from margin_ledger.core.params import RiskParams
from margin_ledger.core.trading import check_close_only
from margin_ledger.core.types import Event, Instrument, Trade


class TestApplyTrade:
    def test_trade_moves_positions_and_premium(self, venue) -> None:
        usd = venue.usd
        venue.fund(venue.alice, 2_000 * usd)
        venue.fund(venue.bob, 1_000 * usd)

        fill = venue.trade(venue.alice, venue.bob, 10)

        assert fill.premium == 1_000 * usd
        assert (fill.buyer_position, fill.seller_position) == (10, -10)
        assert venue.ledger.position(venue.alice, venue.call) == 10
        assert venue.ledger.position(venue.bob, venue.call) == -10
        assert venue.ledger.short_exposure(venue.bob) == 10
        assert venue.balance(venue.alice) == 1_000 * usd
        assert venue.balance(venue.bob) == 2_000 * usd
        assert venue.ledger.check_invariants() == []
        assert [e.event for e in venue.ledger.events()] == [Event.TRADE_APPLIED]

    def test_accounts_are_canonicalized(self, venue) -> None:
        venue.fund(venue.alice, 2_000 * venue.usd)
        venue.fund(venue.bob, 1_000 * venue.usd)
        venue.trade(venue.alice.upper().replace("0X", "0x"), venue.bob[2:], 1)
        assert venue.ledger.position(venue.alice, venue.call) == 1

    def test_initial_margin_failure_has_no_partial_effect(self, venue) -> None:
        usd = venue.usd
        venue.fund(venue.alice, 2_000 * usd)
        # Premium of 100 USDC cannot cover 600 USDC initial margin on 10 shorts.
        with pytest.raises(MarginError) as excinfo:
            venue.trade(venue.alice, venue.bob, 10, price=10 * usd)

        assert excinfo.value.account == venue.bob
        assert excinfo.value.required == 600 * usd
        assert venue.ledger.position(venue.alice, venue.call) == 0
        assert venue.ledger.position(venue.bob, venue.call) == 0
        assert venue.balance(venue.alice) == 2_000 * usd
        assert venue.balance(venue.bob) == 0
        assert venue.ledger.events() == []

    def test_batch_is_all_or_nothing(self, venue) -> None:
        usd = venue.usd
        venue.fund(venue.alice, 2_000 * usd)
        venue.fund(venue.bob, 1_000 * usd)
        good = Trade(buyer=venue.alice, seller=venue.bob, instrument_id=venue.call, quantity=1, price=100 * usd)
        bad = Trade(buyer=venue.carol, seller=venue.bob, instrument_id=venue.call, quantity=1, price=100 * usd)

        with pytest.raises(InsufficientBalanceError):
            venue.ledger.apply_trades([good, bad], caller=venue.operator)

        assert venue.ledger.position(venue.alice, venue.call) == 0
        assert venue.balance(venue.alice) == 2_000 * usd
        assert venue.balance(venue.bob) == 1_000 * usd

    def test_only_the_trade_operator_may_apply(self, venue) -> None:
        trade = Trade(buyer=venue.alice, seller=venue.bob, instrument_id=venue.call, quantity=1, price=1)
        with pytest.raises(AuthorizationError):
            venue.ledger.apply_trade(trade, caller=venue.alice)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"seller": "0x" + "01" * 48},  # same as buyer
            {"seller": ""},
            {"buyer": "0x" + "00" * 48},
            {"quantity": 0},
            {"price": 0},
            {"quantity": True},
            {"instrument_id": 404},
        ],
    )
    def test_malformed_trades_are_rejected(self, venue, overrides) -> None:
        fields = dict(buyer=venue.alice, seller=venue.bob, instrument_id=venue.call, quantity=1, price=1)
        fields.update(overrides)
        with pytest.raises(ValidationError):
            venue.ledger.apply_trade(Trade(**fields), caller=venue.operator)

    def test_empty_batch_is_rejected(self, venue) -> None:
        with pytest.raises(ValidationError):
            venue.ledger.apply_trades([], caller=venue.operator)

    def test_expired_instrument_is_rejected(self, venue) -> None:
        venue.fund(venue.alice, 2_000 * venue.usd)
        venue.fund(venue.bob, 1_000 * venue.usd)
        venue.now = venue.expiry
        venue.set_spot(3_000)
        with pytest.raises(ValidationError, match="expired"):
            venue.trade(venue.alice, venue.bob, 1)

    def test_unsupported_settlement_asset_is_rejected(self, venue) -> None:
        venue.catalog.add_instrument(
            7,
            Instrument(
                underlying=venue.weth,
                settlement_asset="0x" + "44" * 32,
                strike_e8=1,
                expiry=venue.expiry,
                is_call=True,
            ),
        )
        with pytest.raises(ValidationError, match="not supported"):
            venue.trade(venue.alice, venue.bob, 1, instrument_id=7)

    def test_stale_oracle_blocks_margin_check(self, venue) -> None:
        venue.fund(venue.alice, 2_000 * venue.usd)
        venue.fund(venue.bob, 1_000 * venue.usd)
        venue.set_spot(3_000, updated_at=venue.now - 10_000)
        with pytest.raises(StaleOracleError):
            venue.trade(venue.alice, venue.bob, 1)
        assert venue.ledger.position(venue.alice, venue.call) == 0


class TestCloseOnly:
    def test_rule(self) -> None:
        check_close_only(-10, -6, role="seller")
        check_close_only(5, 0, role="buyer")
        with pytest.raises(ValidationError, match="open"):
            check_close_only(0, 1, role="buyer")
        with pytest.raises(ValidationError, match="flip"):
            check_close_only(-6, 6, role="buyer")
        with pytest.raises(ValidationError, match="increase"):
            check_close_only(-6, -7, role="seller")

    def test_inactive_instrument_only_reduces(self, venue) -> None:
        venue.open_short_call()
        venue.catalog.set_active(venue.call, False)

        # Bob buys back 4 from Alice: both positions shrink.
        venue.trade(venue.bob, venue.alice, 4)
        assert venue.ledger.position(venue.bob, venue.call) == -6
        assert venue.ledger.position(venue.alice, venue.call) == 6

        venue.fund(venue.carol, 1_000 * venue.usd)
        with pytest.raises(ValidationError, match="cannot open"):
            venue.trade(venue.carol, venue.alice, 1)
        with pytest.raises(ValidationError, match="flip"):
            venue.trade(venue.bob, venue.alice, 7)
        assert venue.ledger.position(venue.bob, venue.call) == -6


class TestGuards:
    def test_pause_blocks_trading(self, venue) -> None:
        venue.ledger.pause(caller=venue.admin)
        assert venue.ledger.paused
        with pytest.raises(AuthorizationError, match="paused"):
            venue.trade(venue.alice, venue.bob, 1)
        venue.ledger.unpause(caller=venue.admin)
        venue.fund(venue.alice, 1_000 * venue.usd)
        venue.fund(venue.bob, 1_000 * venue.usd)
        venue.trade(venue.alice, venue.bob, 1)

    def test_unsynced_risk_params_fail_closed_until_resync(self, venue) -> None:
        venue.fund(venue.alice, 1_000 * venue.usd)
        venue.fund(venue.bob, 1_000 * venue.usd)
        venue.risk_source.set_params(
            RiskParams(base_asset=venue.usdc, base_maintenance_margin=60 * venue.usd, im_factor_bps=12_000, version=2)
        )
        with pytest.raises(ConsistencyError, match="sync_risk_params"):
            venue.trade(venue.alice, venue.bob, 1)
        with pytest.raises(ConsistencyError):
            venue.ledger.is_liquidatable(venue.bob)
        assert not venue.ledger.risk_params_in_sync()

        with pytest.raises(AuthorizationError):
            venue.ledger.sync_risk_params(caller=venue.alice)
        synced = venue.ledger.sync_risk_params(caller=venue.admin)
        assert synced.version == 2
        assert venue.ledger.risk_params.base_maintenance_margin == 60 * venue.usd
        venue.trade(venue.alice, venue.bob, 1)
        assert venue.ledger.account_risk(venue.bob).maintenance_margin == 60 * venue.usd

    def test_reentrant_call_is_rejected_and_rolled_back(self, venue) -> None:
        venue.fund(venue.alice, 2_000 * venue.usd)
        venue.fund(venue.bob, 1_000 * venue.usd)
        nested = Trade(buyer=venue.alice, seller=venue.bob, instrument_id=venue.call, quantity=1, price=1)

        def reenter() -> None:
            venue.ledger.apply_trade(nested, caller=venue.operator)

        venue.custodian.on_transfer = reenter
        with pytest.raises(ReentrancyError):
            venue.trade(venue.alice, venue.bob, 1)
        assert venue.ledger.position(venue.alice, venue.call) == 0

        # The guard is released after the failed call.
        venue.custodian.on_transfer = None
        venue.trade(venue.alice, venue.bob, 1)
        assert venue.ledger.position(venue.alice, venue.call) == 1
