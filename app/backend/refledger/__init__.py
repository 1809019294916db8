"""
Referral-and-payout ledger kept in a spreadsheet.
"""

__version__ = "0.1.0"
