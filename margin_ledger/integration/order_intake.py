"""
Signed-order intake.

Every order carries two BLS12-381 signatures (buyer and seller) over the
same canonical digest:

    SHA-256( domain_sep("order_sig:{chain_id}", v1) || canonical_json_bytes(terms) )

where `terms` is {buyer, seller, instrument_id, quantity, price,
buyer_nonce, seller_nonce, deadline}. Each trader has one sequential nonce;
an order is valid only while both embedded nonces equal the stored values.
A successful order consumes both nonces and forwards a `Trade` to the ledger.

Batches are all-or-nothing: nonces are consumed on a copy of the nonce table
that replaces the live table only after the ledger has accepted every trade
of the batch.
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from ..core.config import _bool_env, _int_env
from ..core.context import require_account, require_instrument_id, require_positive_int
from ..core.errors import AuthorizationError, ConsistencyError, LedgerError, ReentrancyError, ValidationError
from ..core.ledger import MarginLedger
from ..core.types import Trade, TradeFill
from ..state.balances import AccountId
from ..state.canonical import canonical_json_bytes, domain_sep_bytes, hex_to_bytes_fixed
from ..state.nonces import MAX_NONCE, NonceTable

try:
    from py_ecc.bls import G2Basic

    _BLS_AVAILABLE = True
except Exception:  # pragma: no cover - optional dependency
    G2Basic = None  # type: ignore[assignment]
    _BLS_AVAILABLE = False

logger = logging.getLogger(__name__)

ORDER_SIG_VERSION = 1
DEFAULT_MAX_BATCH = 256


@dataclass(frozen=True)
class OrderTerms:
    buyer: AccountId
    seller: AccountId
    instrument_id: int
    quantity: int
    price: int
    buyer_nonce: int
    seller_nonce: int
    deadline: int = 0  # unix seconds; 0 = no deadline

    def signing_dict(self) -> Dict[str, Any]:
        return {
            "buyer": require_account(self.buyer, name="buyer"),
            "seller": require_account(self.seller, name="seller"),
            "instrument_id": require_instrument_id(self.instrument_id),
            "quantity": require_positive_int(self.quantity, name="quantity"),
            "price": require_positive_int(self.price, name="price"),
            "buyer_nonce": _require_nonce(self.buyer_nonce, name="buyer_nonce"),
            "seller_nonce": _require_nonce(self.seller_nonce, name="seller_nonce"),
            "deadline": _require_nonce(self.deadline, name="deadline"),
        }


@dataclass(frozen=True)
class SignedOrder:
    terms: OrderTerms
    buyer_signature: str  # 0x-prefixed 96-byte hex
    seller_signature: str


@dataclass(frozen=True)
class IntakeConfig:
    # If None, the ledger's chain id is used.
    chain_id: Optional[str] = None
    # If False, signatures are ignored and only nonces/deadlines are enforced.
    # Intended for trusted local runs and tests.
    require_signatures: bool = True
    max_batch: int = DEFAULT_MAX_BATCH

    def __post_init__(self) -> None:
        if self.chain_id is not None and (not isinstance(self.chain_id, str) or not self.chain_id.strip()):
            raise ConsistencyError("chain_id must be a non-empty string")
        if not isinstance(self.max_batch, int) or isinstance(self.max_batch, bool) or self.max_batch <= 0:
            raise ConsistencyError("max_batch must be a positive int")


def intake_config_from_env() -> IntakeConfig:
    return IntakeConfig(
        chain_id=os.environ.get("MARGIN_LEDGER_CHAIN_ID", "").strip() or None,
        require_signatures=_bool_env("MARGIN_LEDGER_REQUIRE_ORDER_SIGS", default=True),
        max_batch=_int_env("MARGIN_LEDGER_MAX_BATCH", default=DEFAULT_MAX_BATCH),
    )


@dataclass(frozen=True)
class IntakeResult:
    ok: bool
    fills: Optional[List[TradeFill]] = None
    error: Optional[str] = None


def _require_nonce(value: Any, *, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValidationError(f"{name} must be a non-negative int")
    if value > MAX_NONCE:
        raise ValidationError(f"{name} must fit in u64")
    return int(value)


def order_message(terms: OrderTerms, *, chain_id: str) -> bytes:
    return domain_sep_bytes(f"order_sig:{chain_id}", version=ORDER_SIG_VERSION) + canonical_json_bytes(
        terms.signing_dict()
    )


def order_digest(terms: OrderTerms, *, chain_id: str) -> bytes:
    """32-byte message hash both parties sign."""
    return hashlib.sha256(order_message(terms, chain_id=chain_id)).digest()


def verify_order_signature(
    *, signer: AccountId, signature_hex: str, digest: bytes
) -> Tuple[bool, Optional[str]]:
    if not _BLS_AVAILABLE:
        return False, "py_ecc (BLS) not available"
    try:
        pubkey_bytes = hex_to_bytes_fixed(signer, nbytes=48, name="signer")
        sig_bytes = hex_to_bytes_fixed(signature_hex, nbytes=96, name="signature")
        ok = bool(G2Basic.Verify(pubkey_bytes, digest, sig_bytes))  # type: ignore[attr-defined]
        if not ok:
            return False, "invalid order signature"
        return True, None
    except Exception as exc:
        return False, f"order signature verification error: {exc}"


class SignedOrderIntake:
    """Front door for matched, dual-signed orders. Owns the nonce table."""

    def __init__(self, ledger: MarginLedger, *, config: Optional[IntakeConfig] = None) -> None:
        self._ledger = ledger
        self._config = config if config is not None else IntakeConfig()
        self._chain_id = self._config.chain_id or ledger.config.chain_id
        self._nonces = NonceTable()
        self._mutex = threading.RLock()
        self._entered = False

    @property
    def chain_id(self) -> str:
        return self._chain_id

    @property
    def nonces(self) -> NonceTable:
        """Committed nonce table. Treat as read-only."""
        return self._nonces

    def nonce(self, trader: AccountId) -> int:
        return self._nonces.get(require_account(trader, name="trader"))

    # -- Submission -----------------------------------------------------------

    def submit_order(self, order: SignedOrder) -> IntakeResult:
        return self.submit_batch([order])

    def submit_batch(self, orders: Iterable[SignedOrder]) -> IntakeResult:
        try:
            with self._guard():
                fills = self._submit(list(orders))
        except LedgerError as exc:
            logger.warning("order batch rejected: %s", exc)
            return IntakeResult(ok=False, error=str(exc))
        return IntakeResult(ok=True, fills=fills)

    def _submit(self, orders: List[SignedOrder]) -> List[TradeFill]:
        if not orders:
            raise ValidationError("no orders to submit")
        if len(orders) > self._config.max_batch:
            raise ValidationError(f"batch of {len(orders)} exceeds max_batch {self._config.max_batch}")
        if self._ledger.paused:
            raise AuthorizationError("ledger is paused")

        now = self._ledger.now()
        nonces = self._nonces.copy()
        trades: List[Trade] = []
        for i, order in enumerate(orders):
            if not isinstance(order, SignedOrder):
                raise ValidationError(f"orders[{i}] must be a SignedOrder")
            trades.append(self._check_order(order, nonces, now=now, index=i))

        fills = self._ledger.apply_trades(trades, caller=self._ledger.config.trade_operator)
        self._nonces = nonces
        logger.info("accepted %d signed orders", len(fills))
        return fills

    def _check_order(self, order: SignedOrder, nonces: NonceTable, *, now: int, index: int) -> Trade:
        terms = order.terms
        signing = terms.signing_dict()
        buyer, seller = signing["buyer"], signing["seller"]
        if signing["deadline"] and now > signing["deadline"]:
            raise ValidationError(f"orders[{index}] expired at {signing['deadline']}")

        if self._config.require_signatures:
            digest = order_digest(terms, chain_id=self._chain_id)
            for role, signer, sig in (
                ("buyer", buyer, order.buyer_signature),
                ("seller", seller, order.seller_signature),
            ):
                ok, err = verify_order_signature(signer=signer, signature_hex=sig, digest=digest)
                if not ok:
                    raise AuthorizationError(f"orders[{index}] {role}: {err}")

        for trader, nonce in ((buyer, signing["buyer_nonce"]), (seller, signing["seller_nonce"])):
            try:
                nonces.consume(trader, nonce)
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"orders[{index}] {trader}: {exc}") from exc

        return Trade(
            buyer=buyer,
            seller=seller,
            instrument_id=signing["instrument_id"],
            quantity=signing["quantity"],
            price=signing["price"],
        )

    # -- Cancellation ---------------------------------------------------------

    def increment_nonce(self, trader: AccountId, *, caller: AccountId) -> int:
        """Invalidate every outstanding order carrying the current nonce."""
        trader = self._require_owner(trader, caller)
        with self._guard():
            try:
                new = self._nonces.advance_to(trader, self._nonces.get(trader) + 1)
            except (TypeError, ValueError) as exc:
                raise ValidationError(str(exc)) from exc
        logger.info("nonce cancelled: trader=%s nonce=%s", trader, new)
        return new

    def advance_nonce(self, trader: AccountId, new_nonce: int, *, caller: AccountId) -> int:
        """Jump the nonce forward, invalidating every order below `new_nonce`."""
        trader = self._require_owner(trader, caller)
        new_nonce = _require_nonce(new_nonce, name="new_nonce")
        with self._guard():
            try:
                new = self._nonces.advance_to(trader, new_nonce)
            except (TypeError, ValueError) as exc:
                raise ValidationError(str(exc)) from exc
        logger.info("nonce advanced: trader=%s nonce=%s", trader, new)
        return new

    @staticmethod
    def _require_owner(trader: AccountId, caller: AccountId) -> AccountId:
        trader = require_account(trader, name="trader")
        if require_account(caller, name="caller") != trader:
            raise AuthorizationError("only the trader may cancel their own nonce")
        return trader

    @contextmanager
    def _guard(self) -> Iterator[None]:
        with self._mutex:
            if self._entered:
                raise ReentrancyError("reentrant call into the order intake")
            self._entered = True
            try:
                yield
            finally:
                self._entered = False
