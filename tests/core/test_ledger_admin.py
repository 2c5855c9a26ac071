from __future__ import annotations

import pytest

from margin_ledger.core.errors import (
    AuthorizationError,
    ExternalDependencyError,
    InsufficientBalanceError,
    MarginError,
    ValidationError,
)
from margin_ledger.core.params import LiquidationParams
from margin_ledger.core.types import Event


class TestCollateral:
    def test_deposit_and_withdraw(self, venue) -> None:
        usd = venue.usd
        venue.ledger.deposit(venue.alice, venue.usdc, 500 * usd, caller=venue.alice)
        venue.ledger.withdraw(venue.alice, venue.usdc, 200 * usd, caller=venue.alice)
        assert venue.balance(venue.alice) == 300 * usd
        assert [e.event for e in venue.ledger.events()] == [
            Event.COLLATERAL_DEPOSITED,
            Event.COLLATERAL_WITHDRAWN,
        ]

    def test_only_the_owner_moves_collateral(self, venue) -> None:
        with pytest.raises(AuthorizationError):
            venue.ledger.deposit(venue.alice, venue.usdc, 1, caller=venue.bob)
        venue.fund(venue.alice, 10)
        with pytest.raises(AuthorizationError):
            venue.ledger.withdraw(venue.alice, venue.usdc, 1, caller=venue.bob)

    def test_withdrawal_below_initial_margin_is_rolled_back(self, venue) -> None:
        usd = venue.usd
        venue.open_short_call()
        # IM is 600; equity is 5200.
        with pytest.raises(MarginError):
            venue.ledger.withdraw(venue.bob, venue.usdc, 4_700 * usd, caller=venue.bob)
        assert venue.balance(venue.bob) == 5_200 * usd
        venue.ledger.withdraw(venue.bob, venue.usdc, 4_600 * usd, caller=venue.bob)
        assert venue.balance(venue.bob) == 600 * usd

    def test_overdraw_and_bad_inputs(self, venue) -> None:
        with pytest.raises(InsufficientBalanceError):
            venue.ledger.withdraw(venue.alice, venue.usdc, 1, caller=venue.alice)
        with pytest.raises(ValidationError):
            venue.ledger.deposit(venue.alice, venue.usdc, 0, caller=venue.alice)
        with pytest.raises(ValidationError, match="not supported"):
            venue.ledger.deposit(venue.alice, "0x" + "44" * 32, 1, caller=venue.alice)

    def test_custodian_without_on_behalf_support(self, venue) -> None:
        venue.custodian.supports_on_behalf = False
        with pytest.raises(ExternalDependencyError, match="on-behalf"):
            venue.ledger.deposit(venue.alice, venue.usdc, 1, caller=venue.alice)

    def test_pause_blocks_withdrawals_but_not_deposits(self, venue) -> None:
        venue.ledger.pause(caller=venue.admin)
        venue.ledger.deposit(venue.alice, venue.usdc, 5, caller=venue.alice)
        with pytest.raises(AuthorizationError, match="paused"):
            venue.ledger.withdraw(venue.alice, venue.usdc, 5, caller=venue.alice)


class TestAdministration:
    def test_admin_only(self, venue) -> None:
        for call in (
            lambda: venue.ledger.pause(caller=venue.alice),
            lambda: venue.ledger.unpause(caller=venue.alice),
            lambda: venue.ledger.sync_risk_params(caller=venue.alice),
            lambda: venue.ledger.set_liquidation_params(LiquidationParams(), caller=venue.alice),
        ):
            with pytest.raises(AuthorizationError, match="admin"):
                call()

    def test_set_liquidation_params(self, venue) -> None:
        params = LiquidationParams(close_factor_bps=2_500, margin_threshold_bps=11_000)
        venue.ledger.set_liquidation_params(params, caller=venue.admin)
        assert venue.ledger.liquidation_params == params
        assert venue.ledger.events()[-1].event is Event.LIQUIDATION_PARAMS_SET

    def test_threshold_change_affects_liquidatability(self, venue) -> None:
        venue.open_short_call(seller_deposit=0)
        venue.set_spot(3_000)
        # Equity 1000 vs MM 500: ratio 20000 bps.
        assert not venue.ledger.is_liquidatable(venue.bob)
        venue.ledger.set_liquidation_params(LiquidationParams(margin_threshold_bps=25_000), caller=venue.admin)
        assert venue.ledger.is_liquidatable(venue.bob)

    def test_open_instruments_paginates(self, venue) -> None:
        venue.open_short_call()
        venue.trade(venue.alice, venue.bob, 1, instrument_id=venue.put)
        assert venue.ledger.open_instruments(venue.bob) == [venue.call, venue.put]
        assert venue.ledger.open_instruments(venue.bob, 1, 1) == [venue.put]
        assert venue.ledger.open_instruments(venue.bob, 0, 1) == [venue.call]
