"""
Referral ledger services.
"""

from .balance_repair import BalanceRepairJob, RepairStats, compute_repair
from .code_generator import CodeGenerator
from .locks import KeyedLocks
from .reconciliation import (
    EventOutcome,
    ReconciliationPipeline,
    ReconciliationStats,
    compute_bonus,
    parse_withdrawal_row,
)
from .referral_service import ReferralService, referral_link
from .referrer_repository import ReferrerRepository

__all__ = [
    "BalanceRepairJob",
    "RepairStats",
    "compute_repair",
    "CodeGenerator",
    "KeyedLocks",
    "EventOutcome",
    "ReconciliationPipeline",
    "ReconciliationStats",
    "compute_bonus",
    "parse_withdrawal_row",
    "ReferralService",
    "referral_link",
    "ReferrerRepository",
]
