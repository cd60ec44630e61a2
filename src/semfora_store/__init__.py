"""Semfora Store - transactional local persistence for offline-capable clients."""

__version__ = "0.1.0"

from .config import StoreSettings, resolve_settings
from .errors import HardAssertionError, PersistenceError, PersistenceLockedError
from .model import DatabaseId, User
from .persistence import PersistenceState, SQLitePersistence

__all__ = [
    "DatabaseId",
    "HardAssertionError",
    "PersistenceError",
    "PersistenceLockedError",
    "PersistenceState",
    "SQLitePersistence",
    "StoreSettings",
    "User",
    "resolve_settings",
]
