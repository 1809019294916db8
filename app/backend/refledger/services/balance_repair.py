"""
Periodic correction of the pending-payout column.

Paid-out (column G) is a SUM formula maintained by whoever pays referrers.
The pipeline never sees those payments, so this job subtracts them from
pending (column F) and writes the changed cells in one batch.

Two modes:
  watermark  pending -= paid_out - applied, then applied (column H) = paid_out.
             A payment is subtracted once; re-running without new payments
             changes nothing. A paid-out value below the watermark means the
             formula was reset, and only the watermark moves.
  legacy     pending -= paid_out on every run. Correct only if the sheet
             zeroes paid-out after each run.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog

from refledger.cache.index_cache import IndexCache
from refledger.sheets.ranges import FIRST_DATA_ROW, ReferrerColumns, cell
from refledger.sheets.tables import ReferrerTable
from refledger.utils.coercion import parse_id, to_float, to_str
from .locks import KeyedLocks

logger = structlog.get_logger(__name__)

WATERMARK = "watermark"
LEGACY = "legacy"


@dataclass
class RepairStats:
    start_time: Optional[datetime] = None
    rows_read: int = 0
    rows_changed: int = 0
    cells_written: int = 0
    changes: List[str] = field(default_factory=list)


def compute_repair(
    pending: float,
    paid_out: float,
    applied: float,
    mode: str = WATERMARK,
) -> Tuple[float, float]:
    """
    Returns:
        (new pending, new watermark)
    """
    if mode == LEGACY:
        return pending - paid_out, applied

    if paid_out < applied:
        return pending, paid_out

    return pending - (paid_out - applied), paid_out


class BalanceRepairJob:
    """Recomputes pending payouts straight from the sheet, then refreshes cached copies."""

    def __init__(
        self,
        referrers: ReferrerTable,
        locks: KeyedLocks,
        mode: str = WATERMARK,
        cache: Optional[IndexCache] = None,
    ):
        if mode not in (WATERMARK, LEGACY):
            raise ValueError(f"Unknown balance repair mode: {mode}")
        self.referrers = referrers
        self.locks = locks
        self.cache = cache
        self.mode = mode
        self.logger = logger.bind(service="balance_repair", mode=mode)

    def _plan(
        self,
        rows: List[List[Any]],
        stats: RepairStats,
        corrected: Dict[int, float],
    ) -> List[Tuple[str, List[List[Any]]]]:
        sheet = self.referrers.sheet
        updates = []

        for offset, row in enumerate(rows):
            if not row or not to_str(row[0]):
                continue
            stats.rows_read += 1

            pending = to_float(row[5]) if len(row) > 5 else 0.0
            paid_out = to_float(row[6]) if len(row) > 6 else 0.0
            applied = to_float(row[7]) if len(row) > 7 else 0.0

            new_pending, new_applied = compute_repair(pending, paid_out, applied, self.mode)
            sheet_row = FIRST_DATA_ROW + offset

            changed = False
            if new_pending != pending:
                updates.append((cell(sheet, ReferrerColumns.PENDING, sheet_row), [[new_pending]]))
                referrer_id = parse_id(row[0])
                if referrer_id is not None:
                    corrected[referrer_id] = new_pending
                changed = True
            if self.mode == WATERMARK and new_applied != applied:
                updates.append((cell(sheet, ReferrerColumns.APPLIED, sheet_row), [[new_applied]]))
                changed = True

            if changed:
                stats.rows_changed += 1
                stats.changes.append(f"row {sheet_row}: {pending} -> {new_pending}")
                self.logger.info(
                    "Pending payout corrected",
                    row=sheet_row,
                    referrer_id=to_str(row[0]),
                    pending=pending,
                    new_pending=new_pending,
                    paid_out=paid_out,
                    applied=applied
                )

        return updates

    async def _refresh_cache(self, corrected: Dict[int, float]) -> None:
        """Bring cached pending payouts in line with the rows just written."""
        if self.cache is None:
            return
        for referrer_id, pending in corrected.items():
            referrer = await self.cache.lookup_by_id(referrer_id)
            if referrer is None:
                continue
            referrer.pending_payout = pending
            await self.cache.upsert_referrer(referrer)

    async def run(self) -> RepairStats:
        """
        Raises:
            StoreError: if the read or the batch write fails
        """
        stats = RepairStats(start_time=datetime.now(timezone.utc))
        self.logger.info("Starting pending payout update")

        # Row writers would otherwise overwrite F between our read and write
        async with self.locks.table():
            rows = await self.referrers.read_rows()
            corrected: Dict[int, float] = {}
            updates = self._plan(rows, stats, corrected)

            if not updates:
                self.logger.info("No pending payout changes", rows=stats.rows_read)
                return stats

            stats.cells_written = await self.referrers.store.batch_write(updates)
            await self._refresh_cache(corrected)

        self.logger.info(
            "Pending payout update finished",
            rows=stats.rows_read,
            rows_changed=stats.rows_changed,
            cells_written=stats.cells_written
        )
        return stats
