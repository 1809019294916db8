"""
Test withdrawal reconciliation: parsing, bonus accrual and idempotency.
"""

import pytest

from refledger.cache import IndexCache
from refledger.core.exceptions import StoreError
from refledger.models import WithdrawalEvent
from refledger.services import (
    EventOutcome,
    ReconciliationPipeline,
    ReferrerRepository,
    compute_bonus,
    parse_withdrawal_row,
)
from refledger.services.reconciliation import add_amounts

from conftest import LEDGER, REFERRERS, WITHDRAWALS, make_tables

WITHDRAWAL_ROWS = [
    ["ev-1", "2001", "", 100],        # referral of ALICE1
    ["ev-2", "9999", "", 50],         # not a referral
    ["ev-3", "2003", "", 20],         # bound to an unknown code
    ["ev-old", "2001", "", 50],       # already in the ledger
    ["ev-4", "без ника", "", 10],     # no Telegram user
]


@pytest.fixture
def withdrawals(store):
    store.sheets[WITHDRAWALS].extend([list(row) for row in WITHDRAWAL_ROWS])
    return store


@pytest.mark.parametrize("profit, rate, bonus", [
    (100.0, 0.10, 10.0),
    (0.3, 0.10, 0.03),
    (33.33, 0.10, 3.333),
    (100.0, 0.05, 5.0),
])
def test_compute_bonus(profit, rate, bonus):
    assert compute_bonus(profit, rate) == bonus


def test_add_amounts_is_exact():
    assert add_amounts(0.1, 0.2) == 0.3
    assert add_amounts(5.0, 3.333) == 8.333


def test_parse_full_row():
    event, reason = parse_withdrawal_row(["ev-1", "2001", "x", "12,5"])

    assert event == WithdrawalEvent(event_id="ev-1", user_id=2001, profit=12.5)
    assert reason is None


def test_parse_row_without_column_c():
    event, _ = parse_withdrawal_row(["ev-1", 2001.0, 40])

    assert event == WithdrawalEvent(event_id="ev-1", user_id=2001, profit=40.0)


@pytest.mark.parametrize("row", [
    [],
    ["ev-1"],
    ["", "2001", "", 10],
    ["ev-1", "", "", 10],
    ["ev-1", "без ника", "", 10],
    ["ev-1", "Без ника", "", 10],
    ["ev-1", "abc", "", 10],
    ["ev-1", "2001"],
    ["ev-1", "2001", "", 0],
    ["ev-1", "2001", "", "-5"],
    ["ev-1", "2001", "", "n/a"],
])
def test_parse_rejects_unusable_rows(row):
    event, reason = parse_withdrawal_row(row)

    assert event is None
    assert reason


@pytest.mark.asyncio
async def test_pass_ledgers_referral_withdrawals(withdrawals, cache, pipeline):
    store = withdrawals
    await cache.reload()

    stats = await pipeline.run_pass()

    assert stats.rows_read == 5
    assert stats.candidates == 3
    assert stats.ledgered == 1
    assert stats.not_referral == 1
    assert stats.dangling_referrer == 1
    assert stats.skipped_known == 1
    assert stats.skipped_invalid == 1
    assert stats.failed == 0
    assert stats.total_bonus == 10.0
    assert pipeline.last_stats is stats

    entry = store.data_rows(LEDGER)[-1]
    assert entry[:5] == ["2001", "ALICE1", 100.0, "ev-1", 10.0]
    assert store.value(REFERRERS, "F2") == 15.0
    assert (await cache.lookup_by_id(1001)).pending_payout == 15.0
    assert await cache.is_event_known("ev-1")


@pytest.mark.asyncio
async def test_second_pass_is_a_no_op(withdrawals, cache, pipeline):
    store = withdrawals
    await cache.reload()
    await pipeline.run_pass()
    ledger_rows = len(store.data_rows(LEDGER))

    stats = await pipeline.run_pass()

    assert stats.ledgered == 0
    assert len(store.data_rows(LEDGER)) == ledger_rows
    assert store.value(REFERRERS, "F2") == 15.0


@pytest.mark.asyncio
async def test_restart_does_not_reapply(withdrawals, cache, pipeline):
    store = withdrawals
    await cache.reload()
    await pipeline.run_pass()

    # Fresh process over the same spreadsheet
    tables = make_tables(store)
    fresh_cache = IndexCache(tables)
    await fresh_cache.reload()
    fresh = ReconciliationPipeline(tables, fresh_cache, ReferrerRepository(tables.referrers, fresh_cache))

    stats = await fresh.run_pass()

    assert stats.ledgered == 0
    assert store.value(REFERRERS, "F2") == 15.0


@pytest.mark.asyncio
async def test_three_column_rows(store, cache, pipeline):
    store.sheets[WITHDRAWALS].append(["ev-5", "2002", 40])
    await cache.reload()

    stats = await pipeline.run_pass()

    assert stats.ledgered == 1
    assert store.data_rows(LEDGER)[-1][:5] == ["2002", "alice1", 40.0, "ev-5", 4.0]
    assert store.value(REFERRERS, "F2") == 9.0


@pytest.mark.asyncio
async def test_accrual_has_no_float_drift(store, cache, pipeline):
    store.sheets[REFERRERS][1][5] = 0.1
    store.sheets[WITHDRAWALS].append(["ev-6", "2001", "", 2])
    await cache.reload()

    await pipeline.run_pass()

    assert store.value(REFERRERS, "F2") == 0.3
    assert (await cache.lookup_by_id(1001)).pending_payout == 0.3


@pytest.mark.asyncio
async def test_failed_ledger_write_is_retried(withdrawals, cache, pipeline):
    store = withdrawals
    await cache.reload()
    store.write_error = StoreError("quota exceeded")

    stats = await pipeline.run_pass()

    assert stats.failed == 1
    assert stats.errors and stats.errors[0].startswith("ev-1")
    assert not await cache.is_event_known("ev-1")

    store.write_error = None
    stats = await pipeline.run_pass()

    assert stats.ledgered == 1
    assert store.value(REFERRERS, "F2") == 15.0


@pytest.mark.asyncio
async def test_failed_accrual_is_not_retried(withdrawals, cache, pipeline, repository):
    store = withdrawals
    await cache.reload()
    mutate = repository.mutate

    async def broken_mutate(referrer_id, change):
        raise StoreError("timeout")

    repository.mutate = broken_mutate
    stats = await pipeline.run_pass()

    assert stats.failed == 1
    assert await cache.is_event_known("ev-1")
    assert store.value(REFERRERS, "F2") == 5.0

    repository.mutate = mutate
    stats = await pipeline.run_pass()

    assert stats.ledgered == 0
    assert store.value(REFERRERS, "F2") == 5.0


@pytest.mark.asyncio
async def test_unreadable_upstream_fails_the_pass(store, cache, pipeline):
    await cache.reload()
    store.read_error_sheets[WITHDRAWALS] = StoreError("timeout")

    with pytest.raises(StoreError):
        await pipeline.run_pass()


@pytest.mark.asyncio
async def test_process_event_rechecks_known_events(cache, pipeline):
    await cache.reload()

    outcome, bonus = await pipeline.process_event(WithdrawalEvent("ev-old", 2001, 50.0))

    assert outcome is EventOutcome.ALREADY_KNOWN
    assert bonus == 0.0


@pytest.mark.asyncio
async def test_repeated_event_ids_in_one_pass(store, cache, pipeline):
    store.sheets[WITHDRAWALS].extend([["ev-9", "2001", "", 100], ["ev-9", "2001", "", 100]])
    await cache.reload()

    stats = await pipeline.run_pass()

    assert stats.ledgered == 1
    assert stats.skipped_known == 1
    assert store.value(REFERRERS, "F2") == 15.0
