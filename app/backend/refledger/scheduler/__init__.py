"""
Periodic background jobs.
"""

from .referral_scheduler import BALANCE_REPAIR_TASK, RECONCILIATION_TASK, ReferralScheduler
from .task_scheduler import PeriodicTask, TaskScheduler

__all__ = [
    "BALANCE_REPAIR_TASK",
    "RECONCILIATION_TASK",
    "ReferralScheduler",
    "PeriodicTask",
    "TaskScheduler",
]
