"""
Shared fixtures: an in-memory spreadsheet and the components built on it.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from refledger.cache import IndexCache
from refledger.services import (
    CodeGenerator,
    KeyedLocks,
    ReconciliationPipeline,
    ReferralService,
    ReferrerRepository,
)
from refledger.sheets import LedgerTables, ValueRender
from refledger.sheets.ranges import parse_a1

REFERRERS = "Рефоводы"
INVITED = "Приглашенные"
LEDGER = "Рефералы"
WITHDRAWALS = "Выводы"

HEADERS = {
    REFERRERS: ["ID", "Username", "Код", "Кошелек", "Рефералы", "К выплате", "Выплачено", "Учтено"],
    INVITED: ["ID", "Код"],
    LEDGER: ["ID реферала", "Код", "Профит", "ID сделки", "Бонус", "Дата"],
    WITHDRAWALS: ["ID сделки", "ID пользователя", "", "Профит"],
}

WALLET = "UQ" + "A" * 46
OTHER_WALLET = "EQ" + "b" * 44 + "-_"


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


class FakeSheetStore:
    """
    TabularStore over nested lists, one list per sheet, header included.

    Reads trim trailing blank cells and rows the way the Sheets API does.
    Failures can be injected per operation; every call is recorded.
    """

    def __init__(self, sheets: Optional[Dict[str, List[List[Any]]]] = None):
        self.sheets: Dict[str, List[List[Any]]] = {}
        for name, rows in (sheets or {}).items():
            self.sheets[name] = [list(row) for row in rows]
        self.calls: List[Tuple[Any, ...]] = []
        self.read_error: Optional[Exception] = None
        self.write_error: Optional[Exception] = None
        self.read_error_sheets: Dict[str, Exception] = {}

    # Store protocol

    async def read_range(self, range_spec: str, render: ValueRender = ValueRender.FORMATTED):
        self.calls.append(("read", range_spec))
        target = parse_a1(range_spec)
        if self.read_error is not None:
            raise self.read_error
        if target.sheet in self.read_error_sheets:
            raise self.read_error_sheets[target.sheet]

        rows = self.sheets.get(target.sheet, [])
        last_row = target.last_row if target.last_row is not None else len(rows)
        result = []
        for row in rows[target.first_row - 1:last_row]:
            cells = list(row[target.first_col:target.last_col + 1])
            while cells and _is_blank(cells[-1]):
                cells.pop()
            result.append(cells)
        while result and not result[-1]:
            result.pop()
        return result

    async def write_row(self, sheet: str, row: int, values: Sequence[Any], first_col: str = "A") -> int:
        self.calls.append(("write_row", sheet, row, list(values)))
        if self.write_error is not None:
            raise self.write_error
        target = parse_a1(f"{sheet}!{first_col}{row}")
        for offset, value in enumerate(values):
            self._set(sheet, row, target.first_col + offset, value)
        return len(values)

    async def batch_write(self, updates: Sequence[Tuple[str, List[List[Any]]]]) -> int:
        self.calls.append(("batch_write", [range_spec for range_spec, _ in updates]))
        if self.write_error is not None:
            raise self.write_error
        written = 0
        for range_spec, values in updates:
            target = parse_a1(range_spec)
            for row_offset, cells in enumerate(values):
                for col_offset, value in enumerate(cells):
                    self._set(target.sheet, target.first_row + row_offset, target.first_col + col_offset, value)
                    written += 1
        return written

    # Helpers

    def _set(self, sheet: str, row: int, col: int, value: Any) -> None:
        rows = self.sheets.setdefault(sheet, [])
        while len(rows) < row:
            rows.append([])
        cells = rows[row - 1]
        while len(cells) <= col:
            cells.append("")
        cells[col] = value

    def data_rows(self, sheet: str) -> List[List[Any]]:
        """Rows below the header."""
        return self.sheets.get(sheet, [])[1:]

    def value(self, sheet: str, a1: str) -> Any:
        target = parse_a1(f"{sheet}!{a1}")
        rows = self.sheets.get(sheet, [])
        if len(rows) < target.first_row:
            return None
        cells = rows[target.first_row - 1]
        return cells[target.first_col] if len(cells) > target.first_col else None

    def writes(self, kind: str = "write_row") -> List[Tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == kind]


def make_store(
    referrers: Sequence[Sequence[Any]] = (),
    invited: Sequence[Sequence[Any]] = (),
    ledger: Sequence[Sequence[Any]] = (),
    withdrawals: Sequence[Sequence[Any]] = (),
) -> FakeSheetStore:
    return FakeSheetStore({
        REFERRERS: [HEADERS[REFERRERS]] + [list(row) for row in referrers],
        INVITED: [HEADERS[INVITED]] + [list(row) for row in invited],
        LEDGER: [HEADERS[LEDGER]] + [list(row) for row in ledger],
        WITHDRAWALS: [HEADERS[WITHDRAWALS]] + [list(row) for row in withdrawals],
    })


def make_tables(store: FakeSheetStore) -> LedgerTables:
    return LedgerTables(
        store,
        referrers_sheet=REFERRERS,
        invited_sheet=INVITED,
        ledger_sheet=LEDGER,
        withdrawals_sheet=WITHDRAWALS,
    )


@pytest.fixture
def store() -> FakeSheetStore:
    return make_store(
        referrers=[
            ["1001", "@alice", "ALICE1", "", 2, 5.0, 0, ""],
            ["1002", "@bob", "BOB002", WALLET, 0, 0, 0, ""],
        ],
        invited=[
            ["2001", "ALICE1"],
            ["2002", "alice1"],
            ["2003", "GHOST9"],
        ],
        ledger=[
            ["2001", "ALICE1", 50, "ev-old", 5.0, "01.01.2025 10:00"],
        ],
    )


@pytest.fixture
def tables(store) -> LedgerTables:
    return make_tables(store)


@pytest.fixture
def cache(tables) -> IndexCache:
    return IndexCache(tables)


@pytest.fixture
def locks() -> KeyedLocks:
    return KeyedLocks()


@pytest.fixture
def repository(tables, cache, locks) -> ReferrerRepository:
    return ReferrerRepository(tables.referrers, cache, locks)


@pytest.fixture
def code_generator(tables) -> CodeGenerator:
    return CodeGenerator(tables.referrers, retry_delay=0)


@pytest.fixture
def service(cache, repository, tables, code_generator) -> ReferralService:
    return ReferralService(
        cache=cache,
        referrers=repository,
        invited=tables.invited,
        code_generator=code_generator,
    )


@pytest.fixture
def pipeline(tables, cache, repository) -> ReconciliationPipeline:
    return ReconciliationPipeline(tables, cache, repository, bonus_rate=0.10)
