"""
Core margin-ledger algorithms

The engines and the `MarginLedger` facade live in submodules
(`margin_ledger.core.ledger`, `.trading`, `.settlement`, `.liquidation`);
import them from there.
"""

from .errors import (
    ArithmeticOverflowError,
    AuthorizationError,
    ConsistencyError,
    ExternalDependencyError,
    InsufficientBalanceError,
    LedgerError,
    MarginError,
    ReentrancyError,
    SolvencyError,
    StaleOracleError,
    ValidationError,
)
from .params import LiquidationParams, RiskParams
from .safe_math import Rounding, convert_amount, mul_div, price_to_native
from .types import (
    AccountRisk,
    Event,
    Instrument,
    LiquidationResult,
    SettlementResult,
    Trade,
    TradeFill,
)

__all__ = [
    "ArithmeticOverflowError",
    "AuthorizationError",
    "ConsistencyError",
    "ExternalDependencyError",
    "InsufficientBalanceError",
    "LedgerError",
    "MarginError",
    "ReentrancyError",
    "SolvencyError",
    "StaleOracleError",
    "ValidationError",
    "LiquidationParams",
    "RiskParams",
    "Rounding",
    "convert_amount",
    "mul_div",
    "price_to_native",
    "AccountRisk",
    "Event",
    "Instrument",
    "LiquidationResult",
    "SettlementResult",
    "Trade",
    "TradeFill",
]
