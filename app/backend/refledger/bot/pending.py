"""
Per-user "waiting for input" flags.
"""

from contextlib import contextmanager
from typing import Iterator, Set


class PendingInput:
    """Handle for one consumed flag; keep() re-arms it for another try."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        self.kept = False

    def keep(self) -> None:
        self.kept = True


class PendingInputs:
    """
    Users the bot expects a free-text answer from (a wallet address).

    consume() takes the flag for the duration of a handler and removes it on
    every exit path, exceptions included, unless the handler calls keep().
    """

    def __init__(self):
        self._waiting: Set[int] = set()

    def __contains__(self, user_id: int) -> bool:
        return user_id in self._waiting

    def __len__(self) -> int:
        return len(self._waiting)

    def mark(self, user_id: int) -> None:
        self._waiting.add(user_id)

    def clear(self, user_id: int) -> None:
        self._waiting.discard(user_id)

    @contextmanager
    def consume(self, user_id: int) -> Iterator[PendingInput]:
        handle = PendingInput(user_id)
        try:
            yield handle
        finally:
            if handle.kept:
                self._waiting.add(user_id)
            else:
                self._waiting.discard(user_id)
