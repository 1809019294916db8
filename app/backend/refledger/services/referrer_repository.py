"""
Repository for referrer rows.

The single write path for the Рефоводы sheet, shared by the bot-facing
service and the reconciliation pipeline. Every change is a live
read-modify-write under the referrer's row lock, followed by a cache
upsert.
"""

from typing import Callable, Optional

import structlog

from refledger.cache.index_cache import IndexCache
from refledger.models import Referrer
from refledger.sheets.tables import ReferrerTable
from .locks import KeyedLocks

logger = structlog.get_logger(__name__)


class ReferrerRepository:
    """Serialized writes to referrer rows."""

    def __init__(self, table: ReferrerTable, cache: IndexCache, locks: Optional[KeyedLocks] = None):
        self.table = table
        self.cache = cache
        self.locks = locks or KeyedLocks()
        self.logger = logger.bind(service="referrer_repository")

    async def create(self, referrer: Referrer) -> Referrer:
        """Append a new row and index it; an already indexed referrer wins."""
        async with self.locks.row(referrer.id):
            existing = await self.cache.lookup_by_id(referrer.id)
            if existing is not None:
                return existing
            await self.table.append(referrer)
            await self.cache.upsert_referrer(referrer)
        return referrer.copy()

    async def mutate(self, referrer_id: int, change: Callable[[Referrer], None]) -> Referrer:
        """
        Apply change to the current stored row and write it back.

        Raises:
            RowNotFoundError: if the referrer has no row
            StoreError: on any store failure; nothing is cached then
        """
        async with self.locks.row(referrer_id):
            row, current = await self.table.fetch(referrer_id)
            change(current)
            await self.table.update(current, row=row)
            await self.cache.upsert_referrer(current)
        return current.copy()
