"""Error types for semfora-store.

Two families of failures exist:

- Contract violations (double start, nested transactions, unknown bind
  values, out-of-order migrations). These raise ``HardAssertionError`` and
  indicate a bug in the caller or in this package. Nothing here catches them.
- Runtime persistence failures, rooted at ``PersistenceError``.
"""


class HardAssertionError(AssertionError):
    """Raised when an internal invariant or calling contract is broken."""


def fail(message: str, *args) -> HardAssertionError:
    """Build a ``HardAssertionError`` for the caller to raise.

    Usage:
        raise fail("Unknown argument %r of type %s", value, type(value).__name__)
    """
    if args:
        message = message % args
    return HardAssertionError(f"INTERNAL ASSERTION FAILED: {message}")


def hard_assert(condition: bool, message: str, *args) -> None:
    """Raise ``HardAssertionError`` unless ``condition`` holds.

    Unlike the ``assert`` statement this is never stripped by ``python -O``.
    """
    if not condition:
        raise fail(message, *args)


class PersistenceError(Exception):
    """Base class for persistence failures surfaced to callers."""


class PersistenceLockedError(PersistenceError):
    """Another process or connection holds the exclusive database lock."""

    MESSAGE = (
        "Failed to gain exclusive lock to the client's offline persistence. "
        "This generally means the database is being used from multiple processes. "
        "Only one process may enable offline persistence for a given database; "
        "if you are intentionally running several processes, enable persistence "
        "in exactly one of them."
    )

    def __init__(self, path: str):
        super().__init__(f"{self.MESSAGE} (database: {path})")
        self.path = path
