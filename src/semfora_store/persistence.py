"""SQLite-backed persistence for semfora-store.

``SQLitePersistence`` owns the single database connection. Caches built on
top of it reach SQLite only through this object: its transaction bracket and
its statement/query helpers.

Usage:
    persistence = SQLitePersistence(resolve_settings())
    persistence.start()

    persistence.run_transaction(
        "Acknowledge batch",
        lambda: persistence.execute(
            "UPDATE mutation_queues SET last_acknowledged_batch_id = ? WHERE uid = ?",
            batch_id,
            uid,
        ),
    )

    persistence.shutdown()
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Generator, Optional, Protocol, Sequence, TypeVar

from .config import StoreSettings
from .db.connection import ConnectionOpener
from .db.query import Query, Statement
from .db.schema import MIGRATIONS, SCHEMA_VERSION, MigrationStep, get_schema_version
from .db.transaction import TransactionRunner
from .db.values import to_parameters
from .errors import hard_assert
from .model import User
from .query_cache import SQLiteQueryCache
from .reference_delegate import ListenSequenceDelegate

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReferenceDelegate(Protocol):
    """Garbage-collection bookkeeping that must follow transaction brackets."""

    def start(self, highest_listen_sequence_number: int) -> None: ...

    def on_transaction_started(self) -> None: ...

    def on_transaction_committed(self) -> None: ...


class QueryCache(Protocol):
    highest_listen_sequence_number: int

    def start(self) -> None: ...


class PersistenceState(Enum):
    UNSTARTED = "unstarted"
    STARTED = "started"
    SHUTDOWN = "shutdown"


class SQLitePersistence:
    """Owner of the database connection and entry point for all SQL.

    An instance can be started once and shut down once. Start a new instance
    to reopen the database.
    """

    def __init__(
        self,
        settings: StoreSettings,
        serializer: Any = None,
        *,
        query_cache_factory: Callable[["SQLitePersistence", Any], QueryCache] = SQLiteQueryCache,
        reference_delegate_factory: Callable[["SQLitePersistence"], ReferenceDelegate] = ListenSequenceDelegate,
        remote_document_cache_factory: Optional[Callable[["SQLitePersistence", Any], Any]] = None,
        mutation_queue_factory: Optional[Callable[["SQLitePersistence", Any, User], Any]] = None,
        migrations: Sequence[MigrationStep] = MIGRATIONS,
        schema_version: int = SCHEMA_VERSION,
    ):
        """Initialize persistence. Nothing touches disk until ``start()``.

        Args:
            settings: Resolved store settings (identity, location, lock timeout)
            serializer: Opaque serializer handed to every cache
            query_cache_factory: Builds the query cache from (persistence, serializer)
            reference_delegate_factory: Builds the reference delegate from persistence
            remote_document_cache_factory: Builds the document cache, if any
            mutation_queue_factory: Builds a mutation queue for a user, if any
            migrations: Schema migration steps
            schema_version: Version the database is brought to on open
        """
        self.settings = settings
        self.database_name = settings.database_name
        self.path = settings.get_db_path()
        self.serializer = serializer
        self._opener = ConnectionOpener(
            self.path,
            steps=migrations,
            schema_version=schema_version,
            lock_timeout=settings.lock_timeout,
        )
        self._query_cache = query_cache_factory(self, serializer)
        self._remote_document_cache = (
            remote_document_cache_factory(self, serializer) if remote_document_cache_factory else None
        )
        self._mutation_queue_factory = mutation_queue_factory
        self._reference_delegate = reference_delegate_factory(self)

        self._state = PersistenceState.UNSTARTED
        self._db: Optional[sqlite3.Connection] = None
        self._runner: Optional[TransactionRunner] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> PersistenceState:
        return self._state

    @property
    def is_started(self) -> bool:
        return self._state is PersistenceState.STARTED

    def start(self) -> None:
        """Open the database, then start the query cache and reference delegate.

        Raises:
            PersistenceLockedError: Another process already owns the database
        """
        hard_assert(self._state is not PersistenceState.STARTED, "SQLitePersistence double-started!")
        hard_assert(
            self._state is PersistenceState.UNSTARTED,
            "SQLitePersistence cannot be restarted after shutdown",
        )
        self._state = PersistenceState.STARTED
        try:
            self._db = self._opener.open()
            self._runner = TransactionRunner(self._db, self._reference_delegate)
            self._query_cache.start()
            self._reference_delegate.start(self._query_cache.highest_listen_sequence_number)
        except BaseException:
            self._close()
            raise

    def shutdown(self) -> None:
        """Close the connection. The instance cannot be started again."""
        hard_assert(self._state is PersistenceState.STARTED, "SQLitePersistence shutdown without start!")
        self._close()

    def _close(self) -> None:
        self._state = PersistenceState.SHUTDOWN
        self._runner = None
        if self._db is not None:
            self._db.close()
            self._db = None
            logger.info("Closed database %s", self.path)

    def _connection(self) -> sqlite3.Connection:
        hard_assert(
            self._state is PersistenceState.STARTED and self._db is not None,
            "SQLitePersistence used while %s",
            self._state.value,
        )
        return self._db

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    @property
    def reference_delegate(self) -> ReferenceDelegate:
        return self._reference_delegate

    @property
    def query_cache(self) -> QueryCache:
        return self._query_cache

    @property
    def remote_document_cache(self) -> Any:
        hard_assert(self._remote_document_cache is not None, "No remote document cache configured")
        return self._remote_document_cache

    def get_mutation_queue(self, user: User) -> Any:
        """Build the mutation queue holding ``user``'s pending writes."""
        hard_assert(self._mutation_queue_factory is not None, "No mutation queue configured")
        return self._mutation_queue_factory(self, self.serializer, user)

    @property
    def schema_version(self) -> int:
        """Schema version recorded in the open database."""
        return get_schema_version(self._connection())

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def run_transaction(self, action: str, operation: Callable[[], T]) -> T:
        """Run ``operation`` in a transaction and return its result.

        Commits if ``operation`` returns, rolls back and re-raises if it fails.
        The reference delegate sees start and committed notifications either way.
        """
        self._connection()
        return self._runner.run_transaction(action, operation)

    @contextmanager
    def transaction(self, action: str) -> Generator[sqlite3.Connection, None, None]:
        """Context-manager form of ``run_transaction``.

        Example:
            with persistence.transaction("Remove target"):
                persistence.execute("DELETE FROM targets WHERE target_id = ?", target_id)
        """
        self._connection()
        with self._runner.transaction(action) as conn:
            yield conn

    # ------------------------------------------------------------------
    # Statements and queries
    # ------------------------------------------------------------------

    def execute(self, sql: str, *args: Any) -> None:
        """Execute a non-query statement with typed positional arguments."""
        cursor = self._connection().execute(sql, to_parameters(args))
        cursor.close()

    def prepare(self, sql: str) -> Statement:
        """Prepare a reusable non-query statement."""
        return Statement(self._connection(), sql)

    def execute_statement(self, statement: Statement, *args: Any) -> int:
        """Execute a prepared statement.

        Returns:
            Number of rows affected
        """
        self._connection()
        return statement.execute(*args)

    def query(self, sql: str) -> Query:
        """Create a query; chain ``binding(...)`` and an access pattern off it."""
        return Query(self._connection(), sql)
