"""Identity models shared across semfora-store."""

from dataclasses import dataclass
from typing import Optional

DEFAULT_DATABASE_ID = "(default)"


@dataclass(frozen=True)
class DatabaseId:
    """A project plus database within that project."""

    project_id: str
    database_id: str = DEFAULT_DATABASE_ID


@dataclass(frozen=True)
class User:
    """The user whose mutations a queue holds. ``uid`` is None when signed out."""

    uid: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.uid is not None


UNAUTHENTICATED = User()
