"""Opening the single exclusive connection to a semfora-store database.

The open sequence is linear:

1. Connect in autocommit mode (transactions are issued explicitly).
2. Configure: switch to exclusive locking and take the lock right away, so
   nothing else touches the file before we own it.
3. Dispatch on the recorded schema version: create, upgrade, downgrade or
   plain open.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Sequence
from urllib.parse import quote_plus

from ..errors import PersistenceLockedError
from ..model import DatabaseId
from .schema import MIGRATIONS, SCHEMA_VERSION, MigrationStep, SchemaMigrator, get_schema_version

logger = logging.getLogger(__name__)

DATABASE_NAME_PREFIX = "storage"
DEFAULT_LOCK_TIMEOUT = 5.0


def database_name(persistence_key: str, database_id: DatabaseId) -> str:
    """Build the file name identifying a client's database.

    Format is ``storage.{persistence-key}.{project-id}.{database-id}`` with each
    part form-encoded. This must stay stable across releases or existing
    installations lose track of their data.
    """
    parts = (persistence_key, database_id.project_id, database_id.database_id)
    return ".".join([DATABASE_NAME_PREFIX] + [_form_encode(part) for part in parts])


def _form_encode(part: str) -> str:
    # Form encoding leaves only letters, digits and ".-*_" unescaped
    return quote_plus(part, safe="*").replace("~", "%7E")


def _is_lock_error(error: sqlite3.OperationalError) -> bool:
    code = getattr(error, "sqlite_errorcode", None)
    if code is not None and code in (sqlite3.SQLITE_BUSY, sqlite3.SQLITE_LOCKED):
        return True
    return "locked" in str(error).lower()


class ConnectionOpener:
    """Opens, configures and migrates the database at ``path``.

    Usage:
        opener = ConnectionOpener(Path("storage.app.proj.%28default%29"))
        conn = opener.open()
    """

    def __init__(
        self,
        path: Path,
        steps: Sequence[MigrationStep] = MIGRATIONS,
        schema_version: int = SCHEMA_VERSION,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ):
        """Initialize the opener.

        Args:
            path: Database file path
            steps: Migration steps to run on create/upgrade
            schema_version: Version the database is brought to
            lock_timeout: Seconds to wait for the exclusive lock
        """
        self.path = Path(path)
        self.steps = steps
        self.schema_version = schema_version
        self.lock_timeout = lock_timeout

    def open(self) -> sqlite3.Connection:
        """Return a configured connection at ``schema_version``.

        Raises:
            PersistenceLockedError: Another process or connection owns the file
            sqlite3.Error: Any other failure while opening or migrating
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        connection = sqlite3.connect(
            str(self.path),
            timeout=self.lock_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        try:
            self._configure(connection)
            self._dispatch(connection)
        except BaseException:
            connection.close()
            raise

        logger.info("Opened database %s", self.path)
        return connection

    def _configure(self, connection: sqlite3.Connection) -> None:
        try:
            connection.execute("PRAGMA locking_mode = EXCLUSIVE")
            # In exclusive mode the lock is kept after COMMIT
            connection.execute("BEGIN EXCLUSIVE")
            connection.execute("COMMIT")
        except sqlite3.OperationalError as e:
            if _is_lock_error(e):
                raise PersistenceLockedError(str(self.path)) from e
            raise
        connection.execute("PRAGMA foreign_keys = ON")

    def _dispatch(self, connection: sqlite3.Connection) -> None:
        migrator = SchemaMigrator(connection, self.steps, self.schema_version)
        version = get_schema_version(connection)

        if version == 0:
            self._on_create(migrator)
        elif version < self.schema_version:
            self._on_upgrade(migrator, version)
        elif version > self.schema_version:
            self._on_downgrade(version)

    def _on_create(self, migrator: SchemaMigrator) -> None:
        logger.info("Creating database schema version %d", self.schema_version)
        migrator.run_migrations(0, self.schema_version)

    def _on_upgrade(self, migrator: SchemaMigrator, old_version: int) -> None:
        logger.info("Upgrading database schema %d -> %d", old_version, self.schema_version)
        migrator.run_migrations(old_version, self.schema_version)

    def _on_downgrade(self, old_version: int) -> None:
        # Keep the data in the hope of a later upgrade. Revisit once a
        # migration makes a change older releases cannot read.
        logger.warning(
            "Database schema version %d is newer than supported %d; opening without changes",
            old_version,
            self.schema_version,
        )
