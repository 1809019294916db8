"""
Write serialization for spreadsheet rows.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from refledger.cache.rwlock import ReadWriteLock


class KeyedLocks:
    """
    One asyncio.Lock per row key plus a table-wide lock.

    Row writers share the table lock and exclude each other per key; a
    whole-table job (balance repair) takes the table lock exclusively.
    Unlike the cache lock these are held across store I/O.
    """

    def __init__(self):
        self._table = ReadWriteLock()
        self._locks: Dict[Any, asyncio.Lock] = {}
        self._holders: Dict[Any, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def row(self, key: Any) -> AsyncIterator[None]:
        async with self._table.read():
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = asyncio.Lock()
            self._holders[key] = self._holders.get(key, 0) + 1
            try:
                async with lock:
                    yield
            finally:
                self._holders[key] -= 1
                if self._holders[key] == 0:
                    del self._holders[key]
                    del self._locks[key]

    @asynccontextmanager
    async def table(self) -> AsyncIterator[None]:
        async with self._table.write():
            yield
