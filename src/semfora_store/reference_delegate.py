"""Sequence-number bookkeeping tied to transaction brackets."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .errors import hard_assert

if TYPE_CHECKING:
    from .persistence import SQLitePersistence

INVALID_SEQUENCE_NUMBER = -1


class ListenSequenceDelegate:
    """Hands out one listen sequence number per transaction.

    The current number is only available between ``on_transaction_started``
    and ``on_transaction_committed``.
    """

    def __init__(self, persistence: "SQLitePersistence"):
        self._persistence = persistence
        self._highest: Optional[int] = None
        self._current = INVALID_SEQUENCE_NUMBER

    def start(self, highest_listen_sequence_number: int) -> None:
        hard_assert(self._highest is None, "ListenSequenceDelegate double-started!")
        self._highest = highest_listen_sequence_number

    def on_transaction_started(self) -> None:
        hard_assert(self._highest is not None, "Transaction started before the reference delegate")
        hard_assert(
            self._current == INVALID_SEQUENCE_NUMBER,
            "Starting a transaction without committing the previous one",
        )
        self._highest += 1
        self._current = self._highest

    def on_transaction_committed(self) -> None:
        self._current = INVALID_SEQUENCE_NUMBER

    @property
    def current_sequence_number(self) -> int:
        hard_assert(
            self._current != INVALID_SEQUENCE_NUMBER,
            "Attempting to get a sequence number outside of a transaction",
        )
        return self._current
