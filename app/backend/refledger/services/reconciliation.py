"""
Withdrawal-to-bonus reconciliation.

Turns withdrawal events the ledger has not seen yet into ledger entries and
pending-balance increments. The ledger's event id column is the
idempotency key: an event that is already known is never applied again.

Per event, in upstream row order:
1. skip if the event id is known
2. resolve the Invited binding of the withdrawing user (none: not a referral)
3. resolve the referrer by code (none: dangling binding, warn and skip)
4. bonus = profit x rate
5. append the ledger entry and mark the event known
6. add the bonus to the referrer's pending balance

Steps 5 and 6 are separate writes. A crash in between leaves a ledger entry
without the matching balance increment; the event is never retried.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional, Tuple

import structlog

from refledger.cache.index_cache import IndexCache
from refledger.core.exceptions import ReferralLedgerError
from refledger.models import LedgerEntry, Referrer, WithdrawalEvent
from refledger.sheets.tables import LedgerTables
from refledger.utils.coercion import parse_id, to_float, to_str
from .referrer_repository import ReferrerRepository

logger = structlog.get_logger(__name__)

DEFAULT_BONUS_RATE = 0.10

# Placeholder the upstream sheet uses for deals without a Telegram user ("без ника")
NO_USER_PREFIX = "без"


class EventOutcome(Enum):
    LEDGERED = "ledgered"
    ALREADY_KNOWN = "already_known"
    NOT_REFERRAL = "not_referral"
    DANGLING_REFERRER = "dangling_referrer"


@dataclass
class ReconciliationStats:
    """Statistics for one reconciliation pass."""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    rows_read: int = 0
    candidates: int = 0
    skipped_known: int = 0
    skipped_invalid: int = 0
    not_referral: int = 0
    dangling_referrer: int = 0
    ledgered: int = 0
    failed: int = 0
    total_bonus: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def duration(self) -> float:
        if not self.start_time or not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


def compute_bonus(profit: float, rate: float = DEFAULT_BONUS_RATE) -> float:
    """profit x rate in decimal arithmetic, so 100.0 gives exactly 10.0."""
    return float(Decimal(str(profit)) * Decimal(str(rate)))


def add_amounts(balance: float, amount: float) -> float:
    """balance + amount in decimal arithmetic, so 0.1 + 0.2 gives 0.3."""
    return float(Decimal(str(balance)) + Decimal(str(amount)))


def parse_withdrawal_row(row: List[Any]) -> Tuple[Optional[WithdrawalEvent], Optional[str]]:
    """
    Parse one Выводы row into an event.

    Profit normally sits in column D. IMPORTRANGE drops an empty column C,
    so a three-cell row carries profit at index 2.

    Returns:
        (event, None) or (None, reason)
    """
    if len(row) < 2:
        return None, "too few columns"

    event_id = to_str(row[0])
    if not event_id:
        return None, "empty event id"

    raw_user = row[1]
    user_text = to_str(raw_user)
    if not user_text or user_text.lower().startswith(NO_USER_PREFIX):
        return None, "user id is empty or text"

    user_id = parse_id(raw_user)
    if user_id is None:
        return None, f"unparseable user id {user_text!r}"

    if len(row) >= 4:
        profit = to_float(row[3])
    elif len(row) == 3:
        profit = to_float(row[2])
    else:
        return None, "no profit column"

    if profit <= 0:
        return None, f"non-positive profit {profit}"

    return WithdrawalEvent(event_id=event_id, user_id=user_id, profit=profit), None


class ReconciliationPipeline:
    """Idempotent conversion of withdrawal events into referral bonuses."""

    def __init__(
        self,
        tables: LedgerTables,
        cache: IndexCache,
        referrers: ReferrerRepository,
        bonus_rate: float = DEFAULT_BONUS_RATE,
    ):
        self.tables = tables
        self.cache = cache
        self.referrers = referrers
        self.bonus_rate = bonus_rate
        self.logger = logger.bind(service="reconciliation")
        self._pass_lock = asyncio.Lock()
        self.last_stats: Optional[ReconciliationStats] = None

    async def fetch_candidates(self, stats: Optional[ReconciliationStats] = None) -> List[WithdrawalEvent]:
        """Read the upstream range and keep parseable events with unknown ids."""
        stats = stats or ReconciliationStats()
        rows = await self.tables.withdrawals.read_rows()
        known = await self.cache.known_events()
        stats.rows_read = len(rows)

        candidates = []
        for row in rows:
            if row and to_str(row[0]) in known:
                stats.skipped_known += 1
                continue

            event, reason = parse_withdrawal_row(row)
            if event is None:
                stats.skipped_invalid += 1
                if row and to_str(row[0]):
                    self.logger.info("Skipping withdrawal row", event_id=to_str(row[0]), reason=reason)
                continue
            candidates.append(event)

        stats.candidates = len(candidates)
        return candidates

    async def process_event(self, event: WithdrawalEvent) -> Tuple[EventOutcome, float]:
        """
        Run one event through the pipeline.

        Returns:
            (outcome, bonus credited)

        Raises:
            StoreError: if the ledger or balance write fails
        """
        if await self.cache.is_event_known(event.event_id):
            return EventOutcome.ALREADY_KNOWN, 0.0

        invited = await self.cache.lookup_invited(event.user_id)
        if invited is None:
            self.logger.debug(
                "Withdrawing user is not a referral",
                event_id=event.event_id,
                user_id=event.user_id
            )
            return EventOutcome.NOT_REFERRAL, 0.0

        referrer = await self.cache.lookup_by_code(invited.ref_code)
        if referrer is None:
            self.logger.warning(
                "Referrer code of binding not found",
                event_id=event.event_id,
                user_id=event.user_id,
                ref_code=invited.ref_code
            )
            return EventOutcome.DANGLING_REFERRER, 0.0

        bonus = compute_bonus(event.profit, self.bonus_rate)
        entry = LedgerEntry.create(event, invited.ref_code, bonus)

        await self.tables.ledger.append(entry)
        await self.cache.mark_event_known(event.event_id)

        def accrue(current: Referrer) -> None:
            current.pending_payout = add_amounts(current.pending_payout, bonus)

        try:
            updated = await self.referrers.mutate(referrer.id, accrue)
        except ReferralLedgerError as e:
            self.logger.error(
                "Ledger entry written but bonus not accrued",
                event_id=event.event_id,
                referrer_id=referrer.id,
                bonus=bonus,
                error=str(e)
            )
            raise

        self.logger.info(
            "Withdrawal ledgered",
            event_id=event.event_id,
            user_id=event.user_id,
            referrer_id=referrer.id,
            profit=event.profit,
            bonus=bonus,
            pending_payout=updated.pending_payout
        )
        return EventOutcome.LEDGERED, bonus

    async def run_pass(self) -> ReconciliationStats:
        """
        One full pass over the upstream range. Passes never overlap.

        Raises:
            StoreError: if the upstream range cannot be read
        """
        async with self._pass_lock:
            stats = ReconciliationStats(start_time=datetime.now(timezone.utc))
            self.logger.info("Starting withdrawal sync")

            candidates = await self.fetch_candidates(stats)
            if not candidates:
                self.logger.info("No new withdrawals found")

            for event in candidates:
                try:
                    outcome, bonus = await self.process_event(event)
                except ReferralLedgerError as e:
                    stats.failed += 1
                    stats.errors.append(f"{event.event_id}: {e.message}")
                    self.logger.error(
                        "Failed to process withdrawal",
                        event_id=event.event_id,
                        error=str(e)
                    )
                    continue

                if outcome is EventOutcome.LEDGERED:
                    stats.ledgered += 1
                    stats.total_bonus += bonus
                elif outcome is EventOutcome.ALREADY_KNOWN:
                    stats.skipped_known += 1
                elif outcome is EventOutcome.NOT_REFERRAL:
                    stats.not_referral += 1
                else:
                    stats.dangling_referrer += 1

            stats.end_time = datetime.now(timezone.utc)
            self.last_stats = stats
            self.logger.info(
                "Withdrawal sync finished",
                rows=stats.rows_read,
                candidates=stats.candidates,
                ledgered=stats.ledgered,
                not_referral=stats.not_referral,
                dangling=stats.dangling_referrer,
                failed=stats.failed,
                total_bonus=stats.total_bonus,
                duration=stats.duration
            )
            return stats
