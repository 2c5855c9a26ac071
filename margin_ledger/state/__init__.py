"""
State tables for the margin ledger
"""

from .balances import BalanceTable
from .nonces import NonceTable
from .positions import OpenInstrumentIndex, PositionLedger
from .settlements import SettlementBook, SettlementTotals

__all__ = [
    "BalanceTable",
    "NonceTable",
    "OpenInstrumentIndex",
    "PositionLedger",
    "SettlementBook",
    "SettlementTotals",
]
