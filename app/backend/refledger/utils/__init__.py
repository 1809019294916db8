"""
Helpers for cell coercion and input validation.
"""

from .coercion import parse_id, to_float, to_int, to_str
from .validation import TON_WALLET_PATTERN, WalletValidator

__all__ = [
    "parse_id",
    "to_float",
    "to_int",
    "to_str",
    "TON_WALLET_PATTERN",
    "WalletValidator",
]
