"""
Ledger configuration: frozen dataclasses plus a YAML loader.

A config file has three sections:

    ledger:
      admin: "0x..."            # 48-byte account id
      trade_operator: "0x..."   # the only caller allowed to apply trades
      backstop: "0x..."         # backstop treasury account
      chain_id: "margin-ledger-local"
      collateral_assets: ["0x...", ...]
    risk:
      base_asset: "0x..."
      base_maintenance_margin: 50000000
      im_factor_bps: 12000
    liquidation:
      close_factor_bps: 5000
      ...

Environment overrides (`MARGIN_LEDGER_CHAIN_ID`) take precedence over the file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Tuple

import yaml

from ..state.balances import AccountId, AssetId
from ..state.canonical import canonical_hex_fixed_allow_0x
from .errors import ConsistencyError
from .params import LiquidationParams, RiskParams


DEFAULT_CHAIN_ID = "margin-ledger-local"


def _bool_env(name: str, *, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return bool(default)
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    return bool(default)


def _int_env(name: str, *, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw, 10)
    except ValueError as exc:
        raise ConsistencyError(f"{name} must be an integer") from exc


def _canonical_account(value: Any, *, name: str) -> AccountId:
    try:
        return canonical_hex_fixed_allow_0x(value, nbytes=48, name=name)
    except (TypeError, ValueError) as exc:
        raise ConsistencyError(str(exc)) from exc


def _canonical_asset(value: Any, *, name: str) -> AssetId:
    try:
        return canonical_hex_fixed_allow_0x(value, nbytes=32, name=name)
    except (TypeError, ValueError) as exc:
        raise ConsistencyError(str(exc)) from exc


@dataclass(frozen=True)
class LedgerConfig:
    admin: AccountId
    trade_operator: AccountId
    backstop: AccountId
    collateral_assets: Tuple[AssetId, ...] = field(default_factory=tuple)
    chain_id: str = DEFAULT_CHAIN_ID

    def __post_init__(self) -> None:
        object.__setattr__(self, "admin", _canonical_account(self.admin, name="admin"))
        object.__setattr__(self, "trade_operator", _canonical_account(self.trade_operator, name="trade_operator"))
        object.__setattr__(self, "backstop", _canonical_account(self.backstop, name="backstop"))
        assets = tuple(
            _canonical_asset(a, name=f"collateral_assets[{i}]") for i, a in enumerate(self.collateral_assets)
        )
        if len(set(assets)) != len(assets):
            raise ConsistencyError("collateral_assets must be distinct")
        object.__setattr__(self, "collateral_assets", assets)
        if not isinstance(self.chain_id, str) or not self.chain_id.strip():
            raise ConsistencyError("chain_id must be a non-empty string")


@dataclass(frozen=True)
class LoadedConfig:
    ledger: LedgerConfig
    risk: RiskParams
    liquidation: LiquidationParams


def _require_mapping(obj: Any, *, name: str) -> Mapping[str, Any]:
    if not isinstance(obj, Mapping):
        raise ConsistencyError(f"{name} must be a mapping")
    return obj


def config_from_mapping(root: Mapping[str, Any]) -> LoadedConfig:
    root = _require_mapping(root, name="config")
    ledger_raw = _require_mapping(root.get("ledger"), name="ledger")
    risk_raw = _require_mapping(root.get("risk"), name="risk")
    liq_raw = _require_mapping(root.get("liquidation", {}) or {}, name="liquidation")

    unknown = set(liq_raw) - set(LiquidationParams.__dataclass_fields__)
    if unknown:
        raise ConsistencyError(f"unknown liquidation keys: {sorted(unknown)}")

    chain_id = os.environ.get("MARGIN_LEDGER_CHAIN_ID", "").strip() or str(
        ledger_raw.get("chain_id", DEFAULT_CHAIN_ID)
    )
    ledger = LedgerConfig(
        admin=ledger_raw.get("admin"),
        trade_operator=ledger_raw.get("trade_operator"),
        backstop=ledger_raw.get("backstop"),
        collateral_assets=tuple(ledger_raw.get("collateral_assets") or ()),
        chain_id=chain_id,
    )
    risk = RiskParams(
        base_asset=_canonical_asset(risk_raw.get("base_asset"), name="risk.base_asset"),
        base_maintenance_margin=risk_raw.get("base_maintenance_margin"),
        im_factor_bps=risk_raw.get("im_factor_bps"),
        version=risk_raw.get("version", 1),
    )
    liquidation = LiquidationParams(**dict(liq_raw))
    return LoadedConfig(ledger=ledger, risk=risk, liquidation=liquidation)


def load_config(path: Path) -> LoadedConfig:
    """Load and validate a YAML ledger config file."""
    raw = Path(path).read_text(encoding="utf-8")
    return config_from_mapping(yaml.safe_load(raw))
