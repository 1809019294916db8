"""
Process entry point: wires the store, cache, services, scheduler and bot.
"""

import asyncio
import sys
from typing import Optional

import structlog
from pydantic import ValidationError as SettingsValidationError

from refledger.bot import TelegramBotService
from refledger.cache import IndexCache
from refledger.core.config import Settings, get_settings
from refledger.core.exceptions import ConfigurationError, ReferralLedgerError
from refledger.core.logging import setup_logging
from refledger.scheduler import ReferralScheduler
from refledger.services import (
    BalanceRepairJob,
    CodeGenerator,
    KeyedLocks,
    ReconciliationPipeline,
    ReferralService,
    ReferrerRepository,
)
from refledger.sheets import LedgerTables, SheetsClient

logger = structlog.get_logger(__name__)


class Application:
    """Owns every long-lived component and their shutdown order."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.client: Optional[SheetsClient] = None
        self.cache: Optional[IndexCache] = None
        self.scheduler: Optional[ReferralScheduler] = None
        self.bot: Optional[TelegramBotService] = None

    async def initialize(self) -> None:
        settings = self.settings

        self.client = SheetsClient(
            spreadsheet_id=settings.spreadsheet_id,
            credentials_path=settings.google_credentials_path,
            timeout_seconds=settings.store_timeout_seconds,
        )
        await self.client.open()

        tables = LedgerTables.from_settings(self.client, settings)
        self.cache = IndexCache(tables)
        try:
            await self.cache.reload()
        except ReferralLedgerError as e:
            # The first scheduled sync reloads again
            logger.error("Initial cache load failed, starting empty", error=str(e), error_code=e.code)

        locks = KeyedLocks()
        repository = ReferrerRepository(tables.referrers, self.cache, locks)
        referral_service = ReferralService(
            cache=self.cache,
            referrers=repository,
            invited=tables.invited,
            code_generator=CodeGenerator(tables.referrers),
        )
        pipeline = ReconciliationPipeline(
            tables=tables,
            cache=self.cache,
            referrers=repository,
            bonus_rate=settings.bonus_rate,
        )
        repair_job = BalanceRepairJob(
            tables.referrers, locks, mode=settings.balance_repair_mode, cache=self.cache
        )

        self.scheduler = ReferralScheduler(settings, self.cache, pipeline, repair_job)
        self.bot = TelegramBotService(referral_service, token=settings.telegram_bot_token)

        logger.info(
            "Application initialized",
            app=settings.app_name,
            version=settings.app_version,
            environment=settings.environment
        )

    async def run(self) -> None:
        """Start background jobs and poll Telegram until interrupted."""
        self.scheduler.start()
        await self.bot.run_polling()

    async def stop(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.stop()
        if self.bot is not None:
            await self.bot.close()
        if self.cache is not None and not self.cache.closed:
            await self.cache.close()
        if self.client is not None:
            await self.client.close()
        logger.info("Application stopped")


async def main() -> int:
    try:
        settings = get_settings()
    except SettingsValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(settings)

    try:
        settings.ensure_complete()
    except ConfigurationError as e:
        logger.critical("Configuration error", error=e.message, details=e.details)
        return 1

    app = Application(settings)
    try:
        await app.initialize()
        await app.run()
    except ReferralLedgerError as e:
        logger.critical("Application failed", error=str(e), error_code=e.code)
        return 1
    finally:
        await app.stop()
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
