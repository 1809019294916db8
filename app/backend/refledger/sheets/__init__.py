"""
Tabular store adapter: the Sheets client and keyed tables over it.
"""

from .client import SheetsClient, TabularStore, ValueRender
from .tables import (
    InvitedTable,
    LedgerTable,
    LedgerTables,
    ReferrerTable,
    RowIndex,
    WithdrawalTable,
)

__all__ = [
    "SheetsClient",
    "TabularStore",
    "ValueRender",
    "InvitedTable",
    "LedgerTable",
    "LedgerTables",
    "ReferrerTable",
    "RowIndex",
    "WithdrawalTable",
]
