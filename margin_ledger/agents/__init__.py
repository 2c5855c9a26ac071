"""
Client-side helpers for margin ledger traders
"""

from .order_signer import (
    account_from_secret_key,
    build_order_terms,
    make_signed_order,
    sign_order_terms,
)

__all__ = [
    "account_from_secret_key",
    "build_order_terms",
    "make_signed_order",
    "sign_order_terms",
]
