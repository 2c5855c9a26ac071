"""
Margin ledger integration layer: order intake, collaborators, snapshots
"""

from .memory import InMemoryCatalog, InMemoryCustodian, StaticOracle, StaticRiskParamSource
from .order_intake import (
    IntakeConfig,
    IntakeResult,
    OrderTerms,
    SignedOrder,
    SignedOrderIntake,
    intake_config_from_env,
    order_digest,
)
from .snapshot import snapshot_hash, snapshot_ledger

__all__ = [
    "InMemoryCatalog",
    "InMemoryCustodian",
    "StaticOracle",
    "StaticRiskParamSource",
    "IntakeConfig",
    "IntakeResult",
    "OrderTerms",
    "SignedOrder",
    "SignedOrderIntake",
    "intake_config_from_env",
    "order_digest",
    "snapshot_hash",
    "snapshot_ledger",
]
