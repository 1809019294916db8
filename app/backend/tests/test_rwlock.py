"""
Test the asyncio reader/writer lock and per-key write locks.
"""

import asyncio

import pytest

from refledger.cache.rwlock import ReadWriteLock
from refledger.services.locks import KeyedLocks


async def _settle():
    await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_readers_share_the_lock():
    lock = ReadWriteLock()

    async with lock.read():
        async with lock.read():
            assert lock.readers == 2
        assert lock.readers == 1
    assert lock.readers == 0


@pytest.mark.asyncio
async def test_writer_waits_for_readers():
    lock = ReadWriteLock()
    order = []
    release = asyncio.Event()

    async def reader():
        async with lock.read():
            order.append("read")
            await release.wait()
            order.append("read-done")

    async def writer():
        async with lock.write():
            assert lock.writer_active
            order.append("write")

    r = asyncio.create_task(reader())
    await _settle()
    w = asyncio.create_task(writer())
    await _settle()
    assert order == ["read"]

    release.set()
    await asyncio.gather(r, w)
    assert order == ["read", "read-done", "write"]
    assert not lock.writer_active


@pytest.mark.asyncio
async def test_waiting_writer_blocks_new_readers():
    lock = ReadWriteLock()
    order = []
    release = asyncio.Event()

    async def first_reader():
        async with lock.read():
            order.append("r1")
            await release.wait()

    async def writer():
        async with lock.write():
            order.append("w")

    async def second_reader():
        async with lock.read():
            order.append("r2")

    tasks = [asyncio.create_task(first_reader())]
    await _settle()
    tasks.append(asyncio.create_task(writer()))
    await _settle()
    tasks.append(asyncio.create_task(second_reader()))
    await _settle()
    assert order == ["r1"]

    release.set()
    await asyncio.gather(*tasks)
    assert order == ["r1", "w", "r2"]


@pytest.mark.asyncio
async def test_cancelled_writer_releases_waiting_readers():
    lock = ReadWriteLock()
    release = asyncio.Event()
    entered = asyncio.Event()

    async def first_reader():
        async with lock.read():
            await release.wait()

    async def writer():
        async with lock.write():
            pass

    async def second_reader():
        async with lock.read():
            entered.set()

    r1 = asyncio.create_task(first_reader())
    await _settle()
    w = asyncio.create_task(writer())
    await _settle()
    r2 = asyncio.create_task(second_reader())
    await _settle()
    assert not entered.is_set()

    w.cancel()
    await asyncio.gather(w, return_exceptions=True)
    await asyncio.wait_for(entered.wait(), timeout=1)

    release.set()
    await asyncio.gather(r1, r2)


@pytest.mark.asyncio
async def test_keyed_locks_serialize_same_key():
    locks = KeyedLocks()
    active = {"count": 0, "max": 0}

    async def writer():
        async with locks.row(1001):
            active["count"] += 1
            active["max"] = max(active["max"], active["count"])
            await asyncio.sleep(0.01)
            active["count"] -= 1

    await asyncio.gather(*(writer() for _ in range(5)))

    assert active["max"] == 1
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_keyed_locks_allow_different_keys():
    locks = KeyedLocks()
    both_inside = asyncio.Event()
    inside = set()

    async def writer(key):
        async with locks.row(key):
            inside.add(key)
            if len(inside) == 2:
                both_inside.set()
            await asyncio.wait_for(both_inside.wait(), timeout=1)

    await asyncio.gather(writer(1), writer(2))
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_table_lock_excludes_row_writers():
    locks = KeyedLocks()
    order = []
    release = asyncio.Event()

    async def table_job():
        async with locks.table():
            order.append("table")
            await release.wait()
            order.append("table-done")

    async def row_writer():
        async with locks.row(1001):
            order.append("row")

    job = asyncio.create_task(table_job())
    await _settle()
    writer = asyncio.create_task(row_writer())
    await _settle()
    assert order == ["table"]

    release.set()
    await asyncio.gather(job, writer)
    assert order == ["table", "table-done", "row"]
