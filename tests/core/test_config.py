from __future__ import annotations

from pathlib import Path

import pytest

from margin_ledger.core.config import LedgerConfig, config_from_mapping, load_config
from margin_ledger.core.errors import ConsistencyError
from margin_ledger.core.params import LiquidationParams, RiskParams


REPO_ROOT = Path(__file__).resolve().parents[2]

ADMIN = "0x" + "a1" * 48
OPERATOR = "0x" + "b2" * 48
BACKSTOP = "0x" + "c3" * 48
USDC = "0x" + "11" * 32


def _raw() -> dict:
    return {
        "ledger": {
            "admin": ADMIN.upper().replace("0X", "0x"),
            "trade_operator": OPERATOR,
            "backstop": BACKSTOP,
            "collateral_assets": [USDC],
        },
        "risk": {"base_asset": USDC, "base_maintenance_margin": 50_000_000, "im_factor_bps": 12_000},
        "liquidation": {"close_factor_bps": 2_500},
    }


def test_example_config_loads() -> None:
    loaded = load_config(REPO_ROOT / "config" / "ledger.example.yaml")
    assert loaded.ledger.admin == ADMIN
    assert loaded.ledger.collateral_assets[0] == USDC
    assert loaded.risk.base_maintenance_margin == 50_000_000
    assert loaded.liquidation == LiquidationParams()


def test_config_from_mapping_canonicalizes_and_applies_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MARGIN_LEDGER_CHAIN_ID", raising=False)
    loaded = config_from_mapping(_raw())
    assert loaded.ledger.admin == ADMIN
    assert loaded.ledger.chain_id == "margin-ledger-local"
    assert loaded.liquidation.close_factor_bps == 2_500
    assert loaded.liquidation.penalty_bps == 1_000

    monkeypatch.setenv("MARGIN_LEDGER_CHAIN_ID", "venue-mainnet")
    assert config_from_mapping(_raw()).ledger.chain_id == "venue-mainnet"


def test_load_config_from_yaml_file(tmp_path: Path) -> None:
    path = tmp_path / "ledger.yaml"
    path.write_text(
        "ledger:\n"
        f"  admin: '{ADMIN}'\n"
        f"  trade_operator: '{OPERATOR}'\n"
        f"  backstop: '{BACKSTOP}'\n"
        "risk:\n"
        f"  base_asset: '{USDC}'\n"
        "  base_maintenance_margin: 1\n"
        "  im_factor_bps: 10000\n",
        encoding="utf-8",
    )
    loaded = load_config(path)
    assert loaded.ledger.collateral_assets == ()
    assert loaded.risk.im_factor_bps == 10_000


def test_unknown_liquidation_key_is_rejected() -> None:
    raw = _raw()
    raw["liquidation"]["close_factor"] = 5_000
    with pytest.raises(ConsistencyError, match="unknown liquidation keys"):
        config_from_mapping(raw)


def test_missing_section_is_rejected() -> None:
    raw = _raw()
    del raw["risk"]
    with pytest.raises(ConsistencyError, match="risk must be a mapping"):
        config_from_mapping(raw)


def test_ledger_config_rejects_bad_accounts_and_duplicate_assets() -> None:
    with pytest.raises(ConsistencyError):
        LedgerConfig(admin="0x1234", trade_operator=OPERATOR, backstop=BACKSTOP)
    with pytest.raises(ConsistencyError, match="distinct"):
        LedgerConfig(admin=ADMIN, trade_operator=OPERATOR, backstop=BACKSTOP, collateral_assets=(USDC, USDC))


def test_risk_params_validation_and_terms() -> None:
    with pytest.raises(ConsistencyError, match="im_factor_bps"):
        RiskParams(base_asset=USDC, base_maintenance_margin=1, im_factor_bps=9_999)
    with pytest.raises(ConsistencyError):
        RiskParams(base_asset=USDC, base_maintenance_margin=-1, im_factor_bps=10_000)

    v1 = RiskParams(base_asset=USDC, base_maintenance_margin=5, im_factor_bps=12_000, version=1)
    v2 = RiskParams(base_asset=USDC, base_maintenance_margin=5, im_factor_bps=12_000, version=2)
    assert v1.same_terms(v2)
    assert not v1.same_terms(RiskParams(base_asset=USDC, base_maintenance_margin=6, im_factor_bps=12_000))


def test_liquidation_params_validation() -> None:
    with pytest.raises(ConsistencyError, match="close_factor_bps"):
        LiquidationParams(close_factor_bps=10_001)
    with pytest.raises(ConsistencyError, match="max_oracle_staleness"):
        LiquidationParams(max_oracle_staleness=0)
    with pytest.raises(ConsistencyError):
        LiquidationParams(spread_bps=-1)
    assert LiquidationParams(close_factor_bps=0).close_factor_bps == 0
    with pytest.raises(ConsistencyError, match="intrinsic_floor_bps"):
        LiquidationParams(intrinsic_floor_bps=9_000)
    with pytest.raises(ConsistencyError, match="intrinsic_floor_bps"):
        LiquidationParams(intrinsic_floor_bps=10_000)
    assert LiquidationParams(intrinsic_floor_bps=10_001).intrinsic_floor_bps == 10_001
