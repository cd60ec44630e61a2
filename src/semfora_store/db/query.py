"""Statement and query wrappers over a ``sqlite3`` connection.

``Query`` files down the rough edges of cursor handling:

- Strongly-typed bind parameters (see ``Query.binding``).
- Exception-proof resource management: every access pattern closes its
  cursor on every exit path.
- Callback-friendly result processing instead of manual fetch loops.

Usage:
    batches = []
    persistence.query(
        "SELECT mutations FROM mutations WHERE uid = ? AND batch_id <= ?"
    ).binding(uid, batch_id).for_each(
        lambda row: batches.append(decode(row.get_blob(0)))
    )

Every access pattern executes the query again; nothing is cached between
calls and rows are fetched one at a time.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Any, Callable, Generator, Iterator, Optional, TypeVar, Union

from ..errors import hard_assert
from .values import ParameterList, bind

T = TypeVar("T")


class _Absent:
    """Marker returned by ``Query.first_value`` when there are no rows."""

    _instance: Optional["_Absent"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


class RowView:
    """Read-only, column-indexed view of the current result row.

    Only valid inside the callback that received it. Once the cursor moves on
    or closes, any access raises ``HardAssertionError``.
    """

    __slots__ = ("_values", "_columns")

    def __init__(self, values: tuple, columns: tuple[str, ...]):
        self._values: Optional[tuple] = values
        self._columns = columns

    def _current(self) -> tuple:
        hard_assert(
            self._values is not None,
            "Row accessed after its cursor advanced or closed",
        )
        return self._values

    def _invalidate(self) -> None:
        self._values = None

    @property
    def columns(self) -> tuple[str, ...]:
        return self._columns

    def __len__(self) -> int:
        return len(self._current())

    def __getitem__(self, key: Union[int, str]) -> Any:
        values = self._current()
        if isinstance(key, str):
            return values[self._columns.index(key)]
        return values[key]

    def is_null(self, index: int) -> bool:
        return self._current()[index] is None

    def get_string(self, index: int) -> Optional[str]:
        value = self._current()[index]
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    def get_long(self, index: int) -> Optional[int]:
        value = self._current()[index]
        return None if value is None else int(value)

    def get_double(self, index: int) -> Optional[float]:
        value = self._current()[index]
        return None if value is None else float(value)

    def get_blob(self, index: int) -> Optional[bytes]:
        value = self._current()[index]
        return None if value is None else bytes(value)

    def __repr__(self) -> str:
        if self._values is None:
            return "RowView(<invalid>)"
        return f"RowView({self._values!r})"


class Statement:
    """A reusable non-query statement.

    Bindings are cleared and re-applied on every execution.
    """

    def __init__(self, connection: sqlite3.Connection, sql: str):
        self._connection = connection
        self.sql = sql
        self.bindings = ParameterList()

    def execute(self, *args: Any) -> int:
        """Execute with ``args`` bound positionally.

        Returns:
            Number of rows affected
        """
        bind(self.bindings, args)
        cursor = self._connection.execute(self.sql, self.bindings.values())
        try:
            return cursor.rowcount
        finally:
            cursor.close()

    def __repr__(self) -> str:
        return f"Statement({self.sql!r})"


class Query:
    """A SQL query plus its bind arguments. Build with ``SQLitePersistence.query``."""

    def __init__(self, connection: sqlite3.Connection, sql: str):
        self._connection = connection
        self._sql = sql
        self._parameters: tuple = ()

    def binding(self, *args: Any) -> "Query":
        """Use ``args`` as positional parameters for the query.

        Returns:
            This query, for chaining
        """
        params = ParameterList()
        bind(params, args)
        self._parameters = params.values()
        return self

    @contextmanager
    def rows(self) -> Generator[Iterator[RowView], None, None]:
        """Run the query and yield a lazy iterator over its rows.

        The cursor is closed when the block exits, even if iteration stopped
        early.

        Example:
            with persistence.query("SELECT path FROM remote_documents").rows() as rows:
                for row in rows:
                    if row.get_string(0).startswith(prefix):
                        break
        """
        cursor = self._start_query()
        iterator = self._iterate(cursor)
        try:
            yield iterator
        finally:
            iterator.close()
            cursor.close()

    def for_each(self, visit: Callable[[RowView], Any]) -> None:
        """Run the query, calling ``visit`` once per row in result order."""
        with self.rows() as rows:
            for row in rows:
                visit(row)

    def first(self, visit: Callable[[RowView], Any]) -> int:
        """Run the query, calling ``visit`` on the first row if one exists.

        Returns:
            Number of rows processed (0 or 1)
        """
        with self.rows() as rows:
            row = next(rows, None)
            if row is None:
                return 0
            visit(row)
            return 1

    def first_value(self, function: Callable[[RowView], T]) -> Union[T, _Absent]:
        """Run the query and apply ``function`` to the first row.

        Returns:
            ``function(row)`` or ``ABSENT`` if the query produced no rows
        """
        with self.rows() as rows:
            row = next(rows, None)
            if row is None:
                return ABSENT
            return function(row)

    def is_empty(self) -> bool:
        """Run the query and return True if it produced no rows."""
        cursor = self._start_query()
        try:
            return cursor.fetchone() is None
        finally:
            cursor.close()

    def _start_query(self) -> sqlite3.Cursor:
        return self._connection.execute(self._sql, self._parameters)

    @staticmethod
    def _iterate(cursor: sqlite3.Cursor) -> Generator[RowView, None, None]:
        columns = tuple(column[0] for column in cursor.description or ())
        while True:
            values = cursor.fetchone()
            if values is None:
                return
            row = RowView(values, columns)
            try:
                yield row
            finally:
                row._invalidate()

    def __repr__(self) -> str:
        return f"Query({self._sql!r}, {self._parameters!r})"
