"""Minimal SQLite query cache: target metadata from ``target_globals``."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .db.query import RowView
from .errors import hard_assert

if TYPE_CHECKING:
    from .persistence import SQLitePersistence


class SQLiteQueryCache:
    """Loads the global target metadata when persistence starts."""

    def __init__(self, persistence: "SQLitePersistence", serializer: Any = None):
        self._persistence = persistence
        self._serializer = serializer
        self.highest_target_id = 0
        self.highest_listen_sequence_number = 0
        self.target_count = 0

    def start(self) -> None:
        found = self._persistence.query(
            "SELECT highest_target_id, highest_listen_sequence_number, target_count "
            "FROM target_globals LIMIT 1"
        ).first(self._load_globals)
        hard_assert(found == 1, "Missing target_globals entry")

    def _load_globals(self, row: RowView) -> None:
        self.highest_target_id = row.get_long(0)
        self.highest_listen_sequence_number = row.get_long(1)
        self.target_count = row.get_long(2) or 0
