from __future__ import annotations

import hashlib
from dataclasses import replace

import pytest

from margin_ledger.agents.order_signer import (
    account_from_secret_key,
    build_order_terms,
    make_signed_order,
    sign_order_terms,
)
from margin_ledger.core.errors import ValidationError
from margin_ledger.integration.order_intake import (
    SignedOrderIntake,
    order_digest,
    verify_order_signature,
)
from margin_ledger.state.canonical import canonical_json_bytes, domain_sep_bytes


pytest.importorskip("py_ecc")
from py_ecc.bls import G2Basic  # noqa: E402

# Deterministic keypairs from fixed seeds.
BUYER_SK = G2Basic.KeyGen(b"\x01" * 32)
SELLER_SK = G2Basic.KeyGen(b"\x02" * 32)


@pytest.fixture
def parties(venue):
    buyer = account_from_secret_key(BUYER_SK)
    seller = account_from_secret_key(SELLER_SK)
    venue.fund(buyer, 2_000 * venue.usd)
    venue.fund(seller, 2_000 * venue.usd)
    return buyer, seller


def _terms(venue, buyer: str, seller: str, **overrides):
    fields = dict(
        buyer=buyer,
        seller=seller,
        instrument_id=venue.call,
        quantity=2,
        price=100 * venue.usd,
        buyer_nonce=0,
        seller_nonce=0,
    )
    fields.update(overrides)
    return build_order_terms(**fields)


def test_digest_matches_documented_construction(venue, parties) -> None:
    buyer, seller = parties
    terms = _terms(venue, buyer, seller, deadline=venue.now + 60)
    expected = hashlib.sha256(
        domain_sep_bytes("order_sig:margin-ledger-local", version=1) + canonical_json_bytes(terms.signing_dict())
    ).digest()
    assert order_digest(terms, chain_id="margin-ledger-local") == expected


def test_signed_order_roundtrip(venue, parties) -> None:
    buyer, seller = parties
    intake = SignedOrderIntake(venue.ledger)
    order = make_signed_order(
        _terms(venue, buyer, seller), buyer_key=BUYER_SK, seller_key=SELLER_SK, chain_id=intake.chain_id
    )

    result = intake.submit_order(order)

    assert result.ok, result.error
    assert venue.ledger.position(buyer, venue.call) == 2
    assert venue.ledger.position(seller, venue.call) == -2
    assert intake.nonce(buyer) == 1
    assert intake.nonce(seller) == 1


def test_swapped_signatures_are_rejected(venue, parties) -> None:
    buyer, seller = parties
    intake = SignedOrderIntake(venue.ledger)
    order = make_signed_order(
        _terms(venue, buyer, seller), buyer_key=BUYER_SK, seller_key=SELLER_SK, chain_id=intake.chain_id
    )
    swapped = replace(order, buyer_signature=order.seller_signature, seller_signature=order.buyer_signature)

    result = intake.submit_order(swapped)

    assert not result.ok
    assert "invalid order signature" in result.error
    assert intake.nonce(buyer) == 0


def test_signature_does_not_transfer_across_chains_or_terms(venue, parties) -> None:
    buyer, seller = parties
    terms = _terms(venue, buyer, seller)
    sig = sign_order_terms(terms, BUYER_SK, chain_id="other-chain")

    ok, err = verify_order_signature(
        signer=buyer, signature_hex=sig, digest=order_digest(terms, chain_id="margin-ledger-local")
    )
    assert not ok
    assert err is not None

    tampered = replace(terms, quantity=3)
    ok, _ = verify_order_signature(
        signer=buyer, signature_hex=sig, digest=order_digest(tampered, chain_id="other-chain")
    )
    assert not ok

    ok, err = verify_order_signature(signer=buyer, signature_hex=sig, digest=order_digest(terms, chain_id="other-chain"))
    assert ok, err


def test_build_order_terms_validates_eagerly(venue, parties) -> None:
    buyer, seller = parties
    with pytest.raises(ValidationError):
        _terms(venue, buyer, seller, quantity=0)
    assert _terms(venue, buyer, seller).deadline == 0
