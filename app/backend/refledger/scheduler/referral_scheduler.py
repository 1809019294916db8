"""
Background jobs of the referral ledger.

Two independent periodic tasks:
- reconciliation: reload the index cache, then sync new withdrawals
- balance_repair: subtract new payments from pending payouts
"""

from typing import Any, Dict, Optional

import structlog

from refledger.cache.index_cache import IndexCache
from refledger.core.config import Settings
from refledger.core.exceptions import ReferralLedgerError
from refledger.services.balance_repair import BalanceRepairJob
from refledger.services.reconciliation import ReconciliationPipeline, ReconciliationStats
from .task_scheduler import TaskScheduler

logger = structlog.get_logger(__name__)

RECONCILIATION_TASK = "reconciliation"
BALANCE_REPAIR_TASK = "balance_repair"


class ReferralScheduler:
    """Scheduler service coordinator."""

    def __init__(
        self,
        settings: Settings,
        cache: IndexCache,
        pipeline: ReconciliationPipeline,
        repair_job: BalanceRepairJob,
    ):
        self.settings = settings
        self.cache = cache
        self.pipeline = pipeline
        self.repair_job = repair_job
        self.scheduler = TaskScheduler()
        self._register_tasks()

    def _register_tasks(self) -> None:
        self.scheduler.register_task(
            RECONCILIATION_TASK,
            self.sync_withdrawals,
            interval_seconds=self.settings.sync_interval_seconds,
            initial_delay_seconds=self.settings.sync_initial_delay_seconds,
            restart_cooldown_seconds=self.settings.task_restart_cooldown_seconds,
        )
        self.scheduler.register_task(
            BALANCE_REPAIR_TASK,
            self.repair_balances,
            interval_seconds=self.settings.repair_interval_seconds,
            initial_delay_seconds=self.settings.repair_initial_delay_seconds,
            restart_cooldown_seconds=self.settings.task_restart_cooldown_seconds,
        )

    async def sync_withdrawals(self) -> Optional[ReconciliationStats]:
        """Reload the cache and run one reconciliation pass."""
        try:
            await self.cache.reload()
        except ReferralLedgerError as e:
            # The previous snapshot still filters known events
            logger.error("Cache refresh failed, syncing with previous snapshot", error=str(e))

        return await self.pipeline.run_pass()

    async def repair_balances(self) -> None:
        await self.repair_job.run()

    def start(self) -> None:
        logger.info("Starting scheduler service")
        self.scheduler.start()

    async def stop(self) -> None:
        logger.info("Stopping scheduler service")
        await self.scheduler.stop()

    def health_check(self) -> Dict[str, Any]:
        return self.scheduler.health_check()
