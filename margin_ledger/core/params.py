"""Risk and liquidation parameters.

`RiskParams` is the versioned configuration object shared with the external
risk-parameter source. The ledger keeps its own cached copy and compares the
economic terms (base asset, base maintenance margin, IM factor) with the
source before every margin-sensitive operation. The two are never synced
implicitly: after a parameter change an administrator must call
`MarginLedger.sync_risk_params()`.

`LiquidationParams` are ledger-local.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..state.balances import AssetId
from .errors import ConsistencyError
from .safe_math import BPS_SCALE


def _require_non_negative_int(value: object, *, name: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ConsistencyError(f"{name} must be a non-negative int")


@dataclass(frozen=True)
class RiskParams:
    base_asset: AssetId
    base_maintenance_margin: int  # per contract, base-asset native units
    im_factor_bps: int  # initial margin = maintenance margin * im_factor_bps / 10000
    version: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.base_asset, str) or not self.base_asset:
            raise ConsistencyError("base_asset must be a non-empty string")
        _require_non_negative_int(self.base_maintenance_margin, name="base_maintenance_margin")
        _require_non_negative_int(self.im_factor_bps, name="im_factor_bps")
        _require_non_negative_int(self.version, name="version")
        if self.im_factor_bps < BPS_SCALE:
            raise ConsistencyError("im_factor_bps must be >= 10000 (initial margin >= maintenance)")

    def terms(self) -> tuple[AssetId, int, int]:
        return (self.base_asset, self.base_maintenance_margin, self.im_factor_bps)

    def same_terms(self, other: "RiskParams") -> bool:
        return self.terms() == other.terms()


@dataclass(frozen=True)
class LiquidationParams:
    margin_threshold_bps: int = 10_000  # liquidatable below this equity/MM ratio
    close_factor_bps: int = 5_000  # max share of aggregate short exposure per call
    min_improvement_bps: int = 0  # required margin-ratio gain when pre-equity > 0
    spread_bps: int = 0  # markup over intrinsic value on the liquidation price
    intrinsic_floor_bps: int = 0  # 0 = off, else > 10000: price >= intrinsic * floor / 10000
    penalty_bps: int = 1_000  # share of base MM per closed contract seized as penalty
    max_oracle_staleness: int = 3_600  # seconds

    def __post_init__(self) -> None:
        for name in (
            "margin_threshold_bps",
            "close_factor_bps",
            "min_improvement_bps",
            "spread_bps",
            "intrinsic_floor_bps",
            "penalty_bps",
            "max_oracle_staleness",
        ):
            _require_non_negative_int(getattr(self, name), name=name)
        if self.close_factor_bps > BPS_SCALE:
            raise ConsistencyError("close_factor_bps must be <= 10000")
        if 0 < self.intrinsic_floor_bps <= BPS_SCALE:
            # The spread price is never below intrinsic, so such a floor never binds.
            raise ConsistencyError("intrinsic_floor_bps must be 0 or above 10000")
        if self.max_oracle_staleness == 0:
            raise ConsistencyError("max_oracle_staleness must be positive")
