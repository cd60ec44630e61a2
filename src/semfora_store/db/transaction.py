"""Transaction bracket around a unit of work.

Protocol for every transaction:

1. Notify the observer that a transaction is starting.
2. ``BEGIN``.
3. Run the operation; its exceptions propagate untouched.
4. Mark the transaction for commit only if the operation returned.
5. ``COMMIT`` if marked, ``ROLLBACK`` otherwise.
6. Notify the observer that the bracket closed.

Step 6 always runs. It means "no transaction is active", not "the changes
were persisted".
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Callable, Generator, Optional, Protocol, TypeVar

from ..errors import fail, hard_assert

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionObserver(Protocol):
    def on_transaction_started(self) -> None: ...

    def on_transaction_committed(self) -> None: ...


class TransactionRunner:
    """Runs operations inside non-nested transactions on one connection.

    Usage:
        runner = TransactionRunner(conn, delegate)

        with runner.transaction("Write mutations"):
            conn.execute("INSERT INTO mutations ...")

        count = runner.run_transaction("Count targets", count_targets)
    """

    def __init__(self, connection: sqlite3.Connection, observer: TransactionObserver):
        self._connection = connection
        self._observer = observer
        self._lock = threading.Lock()
        self._active_action: Optional[str] = None

    @property
    def active_action(self) -> Optional[str]:
        """Label of the transaction currently open, if any."""
        return self._active_action

    @contextmanager
    def transaction(self, action: str) -> Generator[sqlite3.Connection, None, None]:
        """Open a transaction for the duration of the ``with`` block.

        Commits if the block exits normally, rolls back if it raises.

        Yields:
            The underlying connection
        """
        self._enter(action)
        successful = False
        try:
            logger.debug("Starting transaction: %s", action)
            self._observer.on_transaction_started()
            self._connection.execute("BEGIN")
            yield self._connection
            successful = True
        finally:
            try:
                self._end(successful)
            finally:
                self._observer.on_transaction_committed()
                self._exit()

    def run_transaction(self, action: str, operation: Callable[[], T]) -> T:
        """Run ``operation`` in a transaction and return its result."""
        with self.transaction(action):
            return operation()

    def _enter(self, action: str) -> None:
        acquired = self._lock.acquire(blocking=False)
        hard_assert(
            acquired,
            "Cannot start transaction %r while %r is active",
            action,
            self._active_action,
        )
        if self._connection.in_transaction:
            self._lock.release()
            raise fail("Cannot start transaction %r inside an open transaction", action)
        self._active_action = action

    def _exit(self) -> None:
        self._active_action = None
        self._lock.release()

    def _end(self, successful: bool) -> None:
        if not self._connection.in_transaction:
            # SQLite already rolled back (e.g. after SQLITE_FULL)
            return
        if successful:
            try:
                self._connection.execute("COMMIT")
            except BaseException:
                if self._connection.in_transaction:
                    self._connection.execute("ROLLBACK")
                raise
        else:
            self._connection.execute("ROLLBACK")
