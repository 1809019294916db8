"""
Data records of the referral ledger.
"""

from .referral import (
    LEDGER_DATE_FORMAT,
    Invited,
    LedgerEntry,
    Referrer,
    WithdrawalEvent,
    normalize_code,
)

__all__ = [
    "LEDGER_DATE_FORMAT",
    "Invited",
    "LedgerEntry",
    "Referrer",
    "WithdrawalEvent",
    "normalize_code",
]
