"""Schema definitions and the migration runner for semfora-store.

The schema version lives in ``PRAGMA user_version``. Each migration step is
keyed by the version it upgrades *to* and runs inside its own transaction
together with the version bump, so a failed step is never recorded.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Optional, Sequence

from ..errors import hard_assert

logger = logging.getLogger(__name__)

# Only ever increases across releases.
SCHEMA_VERSION = 3


@dataclass(frozen=True)
class MigrationStep:
    """One versioned schema transformation."""

    version: int
    name: str
    statements: tuple[str, ...]

    def apply(self, connection: sqlite3.Connection) -> None:
        for statement in self.statements:
            connection.execute(statement)


# V1: Mutation queue
# Per-user queues of locally written, not yet acknowledged mutation batches
SCHEMA_V1 = MigrationStep(
    version=1,
    name="mutation_queue",
    statements=(
        """
        CREATE TABLE mutation_queues (
            uid TEXT PRIMARY KEY,
            last_acknowledged_batch_id INTEGER,
            last_stream_token BLOB
        )
        """,
        """
        CREATE TABLE mutations (
            uid TEXT,
            batch_id INTEGER,
            mutations BLOB,
            PRIMARY KEY (uid, batch_id)
        )
        """,
        """
        CREATE TABLE document_mutations (
            uid TEXT,
            path TEXT,
            batch_id INTEGER,
            PRIMARY KEY (uid, path, batch_id)
        )
        """,
    ),
)

# V2: Query cache
# Listen targets, the documents matching them, and a single globals row
SCHEMA_V2 = MigrationStep(
    version=2,
    name="query_cache",
    statements=(
        """
        CREATE TABLE targets (
            target_id INTEGER PRIMARY KEY,
            canonical_id TEXT,
            snapshot_version_seconds INTEGER,
            snapshot_version_nanos INTEGER,
            resume_token BLOB,
            last_listen_sequence_number INTEGER,
            target_proto BLOB
        )
        """,
        "CREATE INDEX query_targets ON targets (canonical_id, target_id)",
        """
        CREATE TABLE target_globals (
            highest_target_id INTEGER,
            highest_listen_sequence_number INTEGER,
            last_remote_snapshot_version_seconds INTEGER,
            last_remote_snapshot_version_nanos INTEGER
        )
        """,
        """
        CREATE TABLE target_documents (
            target_id INTEGER,
            path TEXT,
            PRIMARY KEY (target_id, path)
        )
        """,
        "CREATE INDEX document_targets ON target_documents (path, target_id)",
        """
        INSERT INTO target_globals (
            highest_target_id,
            highest_listen_sequence_number,
            last_remote_snapshot_version_seconds,
            last_remote_snapshot_version_nanos
        ) VALUES (0, 0, 0, 0)
        """,
    ),
)

# V3: Remote documents and reference sequence numbers
SCHEMA_V3 = MigrationStep(
    version=3,
    name="remote_documents",
    statements=(
        """
        CREATE TABLE remote_documents (
            path TEXT PRIMARY KEY,
            contents BLOB
        )
        """,
        "ALTER TABLE target_documents ADD COLUMN sequence_number INTEGER",
        "ALTER TABLE target_globals ADD COLUMN target_count INTEGER",
        "UPDATE target_globals SET target_count = (SELECT COUNT(*) FROM targets)",
    ),
)

MIGRATIONS: tuple[MigrationStep, ...] = (SCHEMA_V1, SCHEMA_V2, SCHEMA_V3)


def get_schema_version(connection: sqlite3.Connection) -> int:
    """Read the recorded schema version (0 for a fresh database)."""
    return connection.execute("PRAGMA user_version").fetchone()[0]


def _set_schema_version(connection: sqlite3.Connection, version: int) -> None:
    # PRAGMA does not accept bound parameters
    connection.execute(f"PRAGMA user_version = {int(version)}")


class SchemaMigrator:
    """Brings a database from its recorded version up to a target version.

    Usage:
        migrator = SchemaMigrator(conn)
        migrator.run_migrations(get_schema_version(conn))
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        steps: Sequence[MigrationStep] = MIGRATIONS,
        schema_version: int = SCHEMA_VERSION,
    ):
        """Initialize the migrator.

        Args:
            connection: Open connection in autocommit mode
            steps: Migration steps in strictly increasing version order
            schema_version: Highest version this build understands
        """
        previous = 0
        for step in steps:
            hard_assert(
                step.version > previous,
                "Migration %d (%s) is out of order after version %d",
                step.version,
                step.name,
                previous,
            )
            previous = step.version
        hard_assert(
            previous <= schema_version,
            "Migration %d exceeds schema version %d",
            previous,
            schema_version,
        )
        self._connection = connection
        self._steps = tuple(steps)
        self.schema_version = schema_version

    def run_migrations(self, from_version: int, to_version: Optional[int] = None) -> list[int]:
        """Apply every step with ``from_version < step.version <= to_version``.

        A downgrade (``from_version > to_version``) runs nothing and leaves the
        recorded version alone. Keeping the data is only safe while no
        migration makes a destructive forward-only change.

        Args:
            from_version: Currently recorded version (0 for a new database)
            to_version: Target version (default: ``schema_version``)

        Returns:
            Versions of the steps that were applied, in order
        """
        if to_version is None:
            to_version = self.schema_version
        hard_assert(from_version >= 0, "Negative schema version %d", from_version)
        hard_assert(
            to_version <= self.schema_version,
            "Target version %d exceeds schema version %d",
            to_version,
            self.schema_version,
        )

        if from_version > to_version:
            logger.warning(
                "Database schema version %d is newer than %d; leaving it untouched",
                from_version,
                to_version,
            )
            return []
        if from_version == to_version:
            return []

        applied = []
        for step in self._steps:
            if from_version < step.version <= to_version:
                self._apply(step)
                applied.append(step.version)

        if get_schema_version(self._connection) != to_version:
            _set_schema_version(self._connection, to_version)
        return applied

    def _apply(self, step: MigrationStep) -> None:
        recorded = get_schema_version(self._connection)
        hard_assert(
            recorded < step.version,
            "Migration %d (%s) applied over recorded version %d",
            step.version,
            step.name,
            recorded,
        )
        logger.debug("Applying migration %d: %s", step.version, step.name)
        self._connection.execute("BEGIN IMMEDIATE")
        try:
            step.apply(self._connection)
            _set_schema_version(self._connection, step.version)
            self._connection.execute("COMMIT")
        except BaseException:
            if self._connection.in_transaction:
                self._connection.execute("ROLLBACK")
            raise
