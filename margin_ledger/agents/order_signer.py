"""
Order construction and signing for trading clients.

Clients hold BLS12-381 secret keys; their account id is the 48-byte public
key. Both counterparties sign the same order digest (see
`margin_ledger.integration.order_intake.order_digest`).
"""

from __future__ import annotations

from typing import Optional

from ..integration.order_intake import OrderTerms, SignedOrder, order_digest
from ..state.balances import AccountId

try:
    from py_ecc.bls import G2Basic
except Exception:  # pragma: no cover - optional dependency
    G2Basic = None  # type: ignore[assignment]


def _require_bls() -> None:
    if G2Basic is None:
        raise ImportError("py_ecc not available. Install with: pip install py-ecc")


def account_from_secret_key(secret_key: int) -> AccountId:
    """Account id (0x-prefixed public key hex) for a BLS secret key."""
    _require_bls()
    return "0x" + G2Basic.SkToPk(secret_key).hex()  # type: ignore[union-attr]


def build_order_terms(
    *,
    buyer: AccountId,
    seller: AccountId,
    instrument_id: int,
    quantity: int,
    price: int,
    buyer_nonce: int,
    seller_nonce: int,
    deadline: Optional[int] = None,
) -> OrderTerms:
    """
    Create order terms, validating them eagerly.

    Args:
        buyer / seller: counterparty account ids
        instrument_id: option series id
        quantity: contracts, positive
        price: premium per contract in settlement-asset native units
        buyer_nonce / seller_nonce: each trader's current intake nonce
        deadline: unix seconds after which the order is void (None = never)

    Raises:
        ValidationError: if any field is malformed
    """
    terms = OrderTerms(
        buyer=buyer,
        seller=seller,
        instrument_id=instrument_id,
        quantity=quantity,
        price=price,
        buyer_nonce=buyer_nonce,
        seller_nonce=seller_nonce,
        deadline=0 if deadline is None else deadline,
    )
    terms.signing_dict()
    return terms


def sign_order_terms(terms: OrderTerms, secret_key: int, *, chain_id: str) -> str:
    """Sign `terms` for `chain_id`. Returns a 0x-prefixed 96-byte signature hex."""
    _require_bls()
    digest = order_digest(terms, chain_id=chain_id)
    return "0x" + G2Basic.Sign(secret_key, digest).hex()  # type: ignore[union-attr]


def make_signed_order(terms: OrderTerms, *, buyer_key: int, seller_key: int, chain_id: str) -> SignedOrder:
    return SignedOrder(
        terms=terms,
        buyer_signature=sign_order_terms(terms, buyer_key, chain_id=chain_id),
        seller_signature=sign_order_terms(terms, seller_key, chain_id=chain_id),
    )
