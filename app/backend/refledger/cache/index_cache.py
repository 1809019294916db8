"""
In-process index over the ledger spreadsheet.

The spreadsheet stays the source of truth. The cache holds lookup maps
built by a full reload and kept current by upserts from writes made by
this process. It can be dropped and rebuilt at any time.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Set

import structlog

from refledger.core.exceptions import CacheClosedError
from refledger.models import Invited, Referrer, normalize_code
from refledger.sheets.tables import LedgerTables
from .rwlock import ReadWriteLock

logger = structlog.get_logger(__name__)


@dataclass
class CacheStats:
    referrers: int = 0
    codes: int = 0
    invited: int = 0
    known_events: int = 0
    last_reload: Optional[datetime] = None
    reload_count: int = 0
    failed_reloads: int = 0


class IndexCache:
    """
    Lookup maps: id -> Referrer, code -> Referrer, user id -> Invited and the
    set of event ids already in the ledger.

    All public methods copy in and copy out. The lock is only held for map
    manipulation, never across store I/O.
    """

    def __init__(self, tables: LedgerTables):
        self.tables = tables
        self.logger = logger.bind(service="index_cache")

        self._lock = ReadWriteLock()
        self._reload_lock = asyncio.Lock()

        self._by_id: Dict[int, Referrer] = {}
        self._by_code: Dict[str, Referrer] = {}
        self._invited: Dict[int, Invited] = {}
        self._events: Set[str] = set()

        # Upserts that land while a reload is reading the store
        self._tracking = False
        self._overlay_referrers: Dict[int, Referrer] = {}
        self._overlay_invited: Dict[int, Invited] = {}

        self._closed = False
        self._stats = CacheStats()

    def _check_open(self) -> None:
        if self._closed:
            raise CacheClosedError()

    @property
    def closed(self) -> bool:
        return self._closed

    async def reload(self) -> None:
        """
        Rebuild the maps from three full reads.

        If any read fails nothing is swapped and the error propagates; the
        previous snapshot stays in place.
        """
        self._check_open()

        async with self._reload_lock:
            async with self._lock.write():
                self._tracking = True
                self._overlay_referrers = {}
                self._overlay_invited = {}

            self.logger.info("Loading cache")
            try:
                referrers, invited, event_ids = await asyncio.gather(
                    self.tables.referrers.load_all(),
                    self.tables.invited.load_all(),
                    self.tables.ledger.load_event_ids(),
                )
            except Exception as e:
                async with self._lock.write():
                    self._tracking = False
                    self._overlay_referrers = {}
                    self._overlay_invited = {}
                self._stats.failed_reloads += 1
                self.logger.error("Cache reload failed, keeping previous snapshot", error=str(e))
                raise

            by_id: Dict[int, Referrer] = {}
            by_code: Dict[str, Referrer] = {}
            for referrer in referrers:
                if referrer.id in by_id:
                    self.logger.warning("Duplicate referrer id in sheet", referrer_id=referrer.id)
                by_id[referrer.id] = referrer
            for referrer in by_id.values():
                code = referrer.normalized_code
                if not code:
                    continue
                if code in by_code and by_code[code].id != referrer.id:
                    self.logger.warning(
                        "Duplicate referral code in sheet",
                        code=code,
                        referrer_id=referrer.id,
                        other_id=by_code[code].id
                    )
                by_code[code] = referrer

            invited_map = {record.user_id: record for record in invited}

            async with self._lock.write():
                if self._closed:
                    return
                self._by_id = by_id
                self._by_code = by_code
                self._invited = invited_map
                for referrer in self._overlay_referrers.values():
                    self._put_referrer(referrer)
                for record in self._overlay_invited.values():
                    self._invited[record.user_id] = record
                self._events = self._events | event_ids

                self._tracking = False
                self._overlay_referrers = {}
                self._overlay_invited = {}

                self._stats.last_reload = datetime.utcnow()
                self._stats.reload_count += 1
                stats = self._snapshot_stats()

        self.logger.info(
            "Cache loaded",
            referrers=stats.referrers,
            invited=stats.invited,
            known_events=stats.known_events
        )

    def _put_referrer(self, referrer: Referrer) -> None:
        """Insert into both maps; caller holds the write lock."""
        previous = self._by_id.get(referrer.id)
        if previous is not None:
            old_code = previous.normalized_code
            if old_code and old_code != referrer.normalized_code and self._by_code.get(old_code) is previous:
                del self._by_code[old_code]

        self._by_id[referrer.id] = referrer
        if referrer.normalized_code:
            self._by_code[referrer.normalized_code] = referrer

    def _snapshot_stats(self) -> CacheStats:
        return CacheStats(
            referrers=len(self._by_id),
            codes=len(self._by_code),
            invited=len(self._invited),
            known_events=len(self._events),
            last_reload=self._stats.last_reload,
            reload_count=self._stats.reload_count,
            failed_reloads=self._stats.failed_reloads,
        )

    async def lookup_by_id(self, referrer_id: int) -> Optional[Referrer]:
        self._check_open()
        async with self._lock.read():
            referrer = self._by_id.get(referrer_id)
            return referrer.copy() if referrer else None

    async def lookup_by_code(self, code: str) -> Optional[Referrer]:
        self._check_open()
        normalized = normalize_code(code)
        if not normalized:
            return None
        async with self._lock.read():
            referrer = self._by_code.get(normalized)
            return referrer.copy() if referrer else None

    async def lookup_invited(self, user_id: int) -> Optional[Invited]:
        self._check_open()
        async with self._lock.read():
            record = self._invited.get(user_id)
            return record.copy() if record else None

    async def is_event_known(self, event_id: str) -> bool:
        self._check_open()
        async with self._lock.read():
            return event_id in self._events

    async def known_events(self) -> Set[str]:
        """Copy of the known event ids, for filtering a whole batch."""
        self._check_open()
        async with self._lock.read():
            return set(self._events)

    async def upsert_referrer(self, referrer: Referrer) -> None:
        self._check_open()
        stored = referrer.copy()
        async with self._lock.write():
            self._put_referrer(stored)
            if self._tracking:
                self._overlay_referrers[stored.id] = stored

    async def upsert_invited(self, invited: Invited) -> None:
        self._check_open()
        stored = invited.copy()
        async with self._lock.write():
            self._invited[stored.user_id] = stored
            if self._tracking:
                self._overlay_invited[stored.user_id] = stored

    async def mark_event_known(self, event_id: str) -> None:
        self._check_open()
        async with self._lock.write():
            self._events.add(event_id)

    async def stats(self) -> CacheStats:
        self._check_open()
        async with self._lock.read():
            return self._snapshot_stats()

    async def close(self) -> None:
        """Drop all maps; further use raises CacheClosedError."""
        if self._closed:
            return
        async with self._lock.write():
            self._closed = True
            self._by_id = {}
            self._by_code = {}
            self._invited = {}
            self._events = set()
        self.logger.info("Cache closed")
