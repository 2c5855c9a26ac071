"""Exception types for the margin ledger.

Core engines raise these; the ledger facade rolls back the transaction and
re-raises. The intake layer converts them into ``IntakeResult`` values for
callers that prefer result inspection over exceptions.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every rejection the ledger produces."""


class ValidationError(LedgerError):
    """Malformed or inapplicable input. Permanent: resubmit corrected input."""


class AuthorizationError(LedgerError):
    """Wrong caller or paused state. Permanent until an administrator acts."""


class ConsistencyError(LedgerError):
    """Cached configuration disagrees with its source of truth, or is invalid."""


class ExternalDependencyError(LedgerError):
    """A collaborator returned unusable data or refused an operation."""


class StaleOracleError(ExternalDependencyError):
    """Oracle price is zero, missing or older than the staleness limit."""


class SolvencyError(LedgerError):
    """An account cannot fund an operation."""


class InsufficientBalanceError(SolvencyError):
    """A custodian transfer would overdraw the source account."""


class MarginError(SolvencyError):
    """Post-operation equity is below the required margin."""

    def __init__(self, account: str, equity: int, required: int) -> None:
        self.account = account
        self.equity = equity
        self.required = required
        super().__init__(f"insufficient margin for {account}: equity {equity} < required {required}")


class ArithmeticOverflowError(LedgerError):
    """A value left the 256-bit word range or a decimal exponent is too large."""


class ReentrancyError(AuthorizationError):
    """A mutating entry point was entered while another one is in progress."""
