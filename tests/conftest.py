from __future__ import annotations

from typing import Optional, Tuple

import pytest

from margin_ledger.core.config import LedgerConfig
from margin_ledger.core.context import Collaborators, LedgerContext
from margin_ledger.core.ledger import MarginLedger
from margin_ledger.core.params import LiquidationParams, RiskParams
from margin_ledger.core.types import Instrument, Trade, TradeFill
from margin_ledger.integration.memory import (
    InMemoryCatalog,
    InMemoryCustodian,
    StaticOracle,
    StaticRiskParamSource,
)


USDC = "0x" + "11" * 32  # base + settlement asset, 6 decimals
WETH = "0x" + "22" * 32  # underlying, 18 decimals

ADMIN = "0x" + "a1" * 48
OPERATOR = "0x" + "b2" * 48
BACKSTOP = "0x" + "c3" * 48
ALICE = "0x" + "01" * 48
BOB = "0x" + "02" * 48
CAROL = "0x" + "03" * 48

NOW = 1_700_000_000
WEEK = 7 * 24 * 3600
CALL_3000 = 1
PUT_3000 = 2

USD = 10**6  # one whole USDC in native units
BASE_MM = 50 * USD


class Venue:
    """A ledger wired to in-memory collaborators with a settable clock."""

    usdc = USDC
    weth = WETH
    admin = ADMIN
    operator = OPERATOR
    backstop = BACKSTOP
    alice = ALICE
    bob = BOB
    carol = CAROL
    call = CALL_3000
    put = PUT_3000
    usd = USD
    base_mm = BASE_MM
    start = NOW
    expiry = NOW + WEEK

    def __init__(
        self,
        *,
        liquidation_params: Optional[LiquidationParams] = None,
        collateral_assets: Tuple[str, ...] = (USDC, WETH),
    ) -> None:
        self.now = NOW
        self.catalog = InMemoryCatalog()
        self.custodian = InMemoryCustodian()
        self.oracle = StaticOracle()
        self.risk_source = StaticRiskParamSource(
            RiskParams(base_asset=USDC, base_maintenance_margin=BASE_MM, im_factor_bps=12_000)
        )
        self.config = LedgerConfig(
            admin=ADMIN,
            trade_operator=OPERATOR,
            backstop=BACKSTOP,
            collateral_assets=collateral_assets,
        )

        self.custodian.register_asset(USDC, decimals=6)
        self.custodian.register_asset(WETH, decimals=18)
        for iid, is_call in ((CALL_3000, True), (PUT_3000, False)):
            self.catalog.add_instrument(
                iid,
                Instrument(
                    underlying=WETH,
                    settlement_asset=USDC,
                    strike_e8=3_000 * 10**8,
                    expiry=self.expiry,
                    is_call=is_call,
                ),
            )
        self.set_spot(3_000)

        self.ledger = MarginLedger(
            config=self.config,
            catalog=self.catalog,
            custodian=self.custodian,
            oracle=self.oracle,
            risk_source=self.risk_source,
            liquidation_params=liquidation_params,
            clock=lambda: self.now,
        )

    def set_spot(self, whole_usd: int, *, updated_at: Optional[int] = None) -> None:
        when = self.now if updated_at is None else updated_at
        self.oracle.set_price(WETH, USDC, whole_usd * 10**8, updated_at=when)

    def fund(self, account: str, amount: int, asset: str = USDC) -> None:
        self.custodian.credit(account, asset, amount)

    def balance(self, account: str, asset: str = USDC) -> int:
        return self.custodian.balance_of(account, asset)

    def trade(
        self,
        buyer: str,
        seller: str,
        quantity: int,
        price: int = 100 * USD,
        instrument_id: int = CALL_3000,
    ) -> TradeFill:
        return self.ledger.apply_trade(
            Trade(buyer=buyer, seller=seller, instrument_id=instrument_id, quantity=quantity, price=price),
            caller=OPERATOR,
        )

    def open_short_call(self, *, seller_deposit: int = 4_200 * USD) -> None:
        """Alice long 10 calls from Bob at 100 USDC; Bob ends with deposit + 1000 USDC."""
        self.fund(ALICE, 2_000 * USD)
        if seller_deposit:
            self.fund(BOB, seller_deposit)
        self.trade(ALICE, BOB, 10)

    def context(self) -> LedgerContext:
        """A context over a copy of the committed state, for engine-level tests."""
        return LedgerContext(
            state=self.ledger._state.copy(),
            deps=Collaborators(
                catalog=self.catalog,
                custodian=self.custodian,
                oracle=self.oracle,
                risk_source=self.risk_source,
            ),
            config=self.config,
            now=self.now,
        )


@pytest.fixture
def venue() -> Venue:
    return Venue()


@pytest.fixture
def make_venue():
    return Venue
