"""
Keyed access to the ledger sheets.

Each table maps records to rows. Row numbers are looked up through a
RowIndex built from a live read of the key column; nothing above this
module does row arithmetic.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import structlog

from refledger.core.exceptions import RowNotFoundError
from refledger.models import Invited, LedgerEntry, Referrer
from refledger.utils.coercion import parse_id, to_float, to_int, to_str
from .client import Rows, TabularStore, ValueRender
from .ranges import (
    FIRST_DATA_ROW,
    InvitedColumns,
    LedgerColumns,
    ReferrerColumns,
    WithdrawalColumns,
    block_range,
    column_range,
    row_range,
)

logger = structlog.get_logger(__name__)


def _cell(row: List[Any], index: int) -> Any:
    """Missing trailing cells read as None."""
    return row[index] if len(row) > index else None


def parse_referrer_row(row: List[Any]) -> Optional[Referrer]:
    """Build a Referrer from cells A..H, or None if the id is unusable."""
    if not row:
        return None
    ref_id = parse_id(row[0])
    if ref_id is None:
        return None
    return Referrer(
        id=ref_id,
        username=to_str(_cell(row, 1)),
        code=to_str(_cell(row, 2)),
        wallet=to_str(_cell(row, 3)),
        ref_count=to_int(_cell(row, 4)),
        pending_payout=to_float(_cell(row, 5)),
        paid_out=to_float(_cell(row, 6)),
        paid_out_applied=to_float(_cell(row, 7)),
    )


def parse_invited_row(row: List[Any]) -> Optional[Invited]:
    if not row:
        return None
    user_id = parse_id(row[0])
    if user_id is None:
        return None
    return Invited(user_id=user_id, ref_code=to_str(_cell(row, 1)))


class RowIndex:
    """
    Key -> sheet row mapping for one sheet.

    The mapping is a memo of the last key-column read; callers that are
    about to overwrite a row either verify it or ask for a fresh read.
    Appends are serialized so two writers never pick the same free row.
    """

    def __init__(
        self,
        store: TabularStore,
        sheet: str,
        key_col: str,
        key_func: Optional[Callable[[Any], Any]] = None,
    ):
        self.store = store
        self.sheet = sheet
        self.key_col = key_col
        self.key_func = key_func
        self._rows: Dict[Any, int] = {}
        self._append_lock = asyncio.Lock()

    async def _scan(self) -> int:
        """Re-read the key column; returns the first free row."""
        values = await self.store.read_range(column_range(self.sheet, self.key_col))
        rows: Dict[Any, int] = {}
        first_free: Optional[int] = None

        for offset, cells in enumerate(values):
            sheet_row = FIRST_DATA_ROW + offset
            raw = cells[0] if cells else None
            if to_str(raw) == "":
                if first_free is None:
                    first_free = sheet_row
                continue
            if self.key_func is not None:
                key = self.key_func(raw)
                if key is not None and key not in rows:
                    rows[key] = sheet_row

        self._rows = rows
        if first_free is None:
            first_free = FIRST_DATA_ROW + len(values)
        return first_free

    async def locate(self, key: Any, refresh: bool = False) -> Optional[int]:
        if refresh or key not in self._rows:
            await self._scan()
        return self._rows.get(key)

    def forget(self, key: Any) -> None:
        self._rows.pop(key, None)

    async def append(self, values: List[Any], key: Any = None) -> int:
        """Write values into the first free row. Returns the row number."""
        async with self._append_lock:
            row = await self._scan()
            await self.store.write_row(self.sheet, row, values)
            if key is not None:
                self._rows[key] = row
            return row


class ReferrerTable:
    """Рефоводы sheet."""

    def __init__(self, store: TabularStore, sheet: str):
        self.store = store
        self.sheet = sheet
        self.index = RowIndex(store, sheet, ReferrerColumns.ID, key_func=parse_id)

    async def read_rows(self) -> Rows:
        """All rows A..H with computed values (paid-out is a formula)."""
        return await self.store.read_range(
            block_range(self.sheet, ReferrerColumns.ID, ReferrerColumns.LAST),
            render=ValueRender.UNFORMATTED,
        )

    async def load_all(self) -> List[Referrer]:
        referrers = []
        for offset, row in enumerate(await self.read_rows()):
            referrer = parse_referrer_row(row)
            if referrer is None:
                if row and to_str(row[0]):
                    logger.warning(
                        "Skipping referrer row with unparseable id",
                        sheet=self.sheet,
                        row=FIRST_DATA_ROW + offset,
                        value=row[0]
                    )
                continue
            referrers.append(referrer)
        return referrers

    async def read_codes(self) -> Set[str]:
        """Live read of the code column, normalized."""
        values = await self.store.read_range(column_range(self.sheet, ReferrerColumns.CODE))
        return {to_str(cells[0]).upper() for cells in values if cells and to_str(cells[0])}

    async def fetch(self, referrer_id: int) -> Tuple[int, Referrer]:
        """
        Read the current row of a referrer straight from the store.

        Returns:
            (sheet row, referrer)

        Raises:
            RowNotFoundError: if no row carries this id
        """
        for refresh in (False, True):
            row = await self.index.locate(referrer_id, refresh=refresh)
            if row is None:
                continue
            cells = await self.store.read_range(
                row_range(self.sheet, row, ReferrerColumns.ID, ReferrerColumns.LAST),
                render=ValueRender.UNFORMATTED,
            )
            referrer = parse_referrer_row(cells[0]) if cells else None
            if referrer is not None and referrer.id == referrer_id:
                return row, referrer
            # Rows moved since the last scan
            self.index.forget(referrer_id)

        raise RowNotFoundError(self.sheet, referrer_id)

    async def append(self, referrer: Referrer) -> int:
        row = await self.index.append(referrer.to_row(), key=referrer.id)
        logger.info(
            "Referrer row written",
            sheet=self.sheet,
            row=row,
            referrer_id=referrer.id,
            code=referrer.code
        )
        return row

    async def update(self, referrer: Referrer, row: Optional[int] = None) -> int:
        """
        Overwrite columns A..G of a referrer row.

        Without a row number the key column is re-read first.
        """
        if row is None:
            row = await self.index.locate(referrer.id, refresh=True)
            if row is None:
                raise RowNotFoundError(self.sheet, referrer.id)
        await self.store.write_row(self.sheet, row, referrer.to_row())
        logger.info(
            "Referrer row updated",
            sheet=self.sheet,
            row=row,
            referrer_id=referrer.id,
            ref_count=referrer.ref_count,
            pending_payout=referrer.pending_payout
        )
        return row


class InvitedTable:
    """Приглашенные sheet."""

    def __init__(self, store: TabularStore, sheet: str):
        self.store = store
        self.sheet = sheet
        self.index = RowIndex(store, sheet, InvitedColumns.USER_ID, key_func=parse_id)

    async def load_all(self) -> List[Invited]:
        values = await self.store.read_range(
            block_range(self.sheet, InvitedColumns.USER_ID, InvitedColumns.LAST)
        )
        invited = []
        for offset, row in enumerate(values):
            record = parse_invited_row(row)
            if record is None:
                if row and to_str(row[0]):
                    logger.warning(
                        "Skipping invited row with unparseable user id",
                        sheet=self.sheet,
                        row=FIRST_DATA_ROW + offset,
                        value=row[0]
                    )
                continue
            invited.append(record)
        return invited

    async def append(self, invited: Invited) -> int:
        row = await self.index.append(invited.to_row(), key=invited.user_id)
        logger.info(
            "Invited row written",
            sheet=self.sheet,
            row=row,
            user_id=invited.user_id,
            ref_code=invited.ref_code
        )
        return row


class LedgerTable:
    """Рефералы sheet, append-only."""

    def __init__(self, store: TabularStore, sheet: str):
        self.store = store
        self.sheet = sheet
        self.index = RowIndex(store, sheet, LedgerColumns.REF_ID)

    async def load_event_ids(self) -> Set[str]:
        values = await self.store.read_range(column_range(self.sheet, LedgerColumns.EVENT_ID))
        return {to_str(cells[0]) for cells in values if cells and to_str(cells[0])}

    async def append(self, entry: LedgerEntry) -> int:
        row = await self.index.append(entry.to_row())
        logger.info(
            "Ledger entry written",
            sheet=self.sheet,
            row=row,
            event_id=entry.event_id,
            ref_id=entry.ref_id,
            ref_code=entry.ref_code,
            bonus=entry.bonus
        )
        return row


class WithdrawalTable:
    """Выводы sheet, filled by IMPORTRANGE from the upstream system."""

    def __init__(self, store: TabularStore, sheet: str):
        self.store = store
        self.sheet = sheet

    async def read_rows(self) -> Rows:
        # UNFORMATTED_VALUE returns the evaluated IMPORTRANGE values
        return await self.store.read_range(
            block_range(self.sheet, WithdrawalColumns.EVENT_ID, WithdrawalColumns.LAST),
            render=ValueRender.UNFORMATTED,
        )


class LedgerTables:
    """The four sheets of one spreadsheet."""

    def __init__(
        self,
        store: TabularStore,
        referrers_sheet: str,
        invited_sheet: str,
        ledger_sheet: str,
        withdrawals_sheet: str,
    ):
        self.store = store
        self.referrers = ReferrerTable(store, referrers_sheet)
        self.invited = InvitedTable(store, invited_sheet)
        self.ledger = LedgerTable(store, ledger_sheet)
        self.withdrawals = WithdrawalTable(store, withdrawals_sheet)

    @classmethod
    def from_settings(cls, store: TabularStore, settings) -> "LedgerTables":
        return cls(
            store,
            referrers_sheet=settings.referrers_sheet,
            invited_sheet=settings.invited_sheet,
            ledger_sheet=settings.ledger_sheet,
            withdrawals_sheet=settings.withdrawals_sheet,
        )
