"""
Referral ledger records as stored in the spreadsheet.

Referrer and Invited rows are created by the bot, LedgerEntry rows by the
reconciliation pipeline. WithdrawalEvent rows are produced upstream and
only read here.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, List, Optional

LEDGER_DATE_FORMAT = "%d.%m.%Y %H:%M"


def normalize_code(code: Optional[str]) -> str:
    """Referral codes are compared trimmed and upper-cased."""
    if not code:
        return ""
    return code.strip().upper()


@dataclass
class Referrer:
    """A user who owns a referral code and accrues bonuses."""
    id: int
    username: str = ""
    code: str = ""
    wallet: str = ""
    ref_count: int = 0
    pending_payout: float = 0.0
    paid_out: float = 0.0  # sum of payments, maintained outside the bot
    paid_out_applied: float = 0.0  # balance repair watermark

    @property
    def normalized_code(self) -> str:
        return normalize_code(self.code)

    def copy(self) -> "Referrer":
        return replace(self)

    def to_row(self) -> List[Any]:
        """Cells A..G; the watermark column is owned by the repair job."""
        return [
            str(self.id),
            self.username,
            self.code,
            self.wallet or "",
            self.ref_count,
            self.pending_payout,
            self.paid_out,
        ]


@dataclass
class Invited:
    """Permanent binding of a user to the code that brought them in."""
    user_id: int
    ref_code: str = ""

    def copy(self) -> "Invited":
        return replace(self)

    def to_row(self) -> List[Any]:
        return [str(self.user_id), self.ref_code]


@dataclass
class LedgerEntry:
    """One bonus accrual, unique per upstream event id."""
    ref_id: int
    ref_code: str
    profit: float
    event_id: str
    bonus: float
    date: str = ""

    @classmethod
    def create(
        cls,
        event: "WithdrawalEvent",
        ref_code: str,
        bonus: float,
        now: Optional[datetime] = None
    ) -> "LedgerEntry":
        return cls(
            ref_id=event.user_id,
            ref_code=ref_code,
            profit=event.profit,
            event_id=event.event_id,
            bonus=bonus,
            date=(now or datetime.now()).strftime(LEDGER_DATE_FORMAT),
        )

    def to_row(self) -> List[Any]:
        return [
            str(self.ref_id),
            self.ref_code,
            self.profit,
            self.event_id,
            self.bonus,
            self.date,
        ]


@dataclass(frozen=True)
class WithdrawalEvent:
    """Upstream financial event that may trigger a bonus."""
    event_id: str
    user_id: int
    profit: float
