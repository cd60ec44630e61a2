"""Store configuration with directory-based detection.

## .store/ Folder Specification

```
.store/
└── config.json          # Main config file
```

### config.json Structure

```json
{
  "persistence_key": "[DEFAULT]",
  "project_id": "my-project",
  "database_id": "(default)",
  "local": {
    "data_dir": "/var/lib/my-app",
    "lock_timeout": 5.0
  }
}
```

### Resolution Order

1. .store/config.json in the start directory or its parents
2. Built-in defaults
3. ``SEMFORA_STORE_DATA_DIR`` overrides the data directory either way
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from platformdirs import user_data_dir

from .db.connection import DEFAULT_LOCK_TIMEOUT, database_name
from .model import DEFAULT_DATABASE_ID, DatabaseId

STORE_CONFIG_DIR = ".store"
STORE_CONFIG_FILE = "config.json"
DATA_DIR_ENV = "SEMFORA_STORE_DATA_DIR"
DEFAULT_PERSISTENCE_KEY = "[DEFAULT]"


@dataclass
class StoreSettings:
    """Resolved settings for one local database."""

    persistence_key: str = DEFAULT_PERSISTENCE_KEY
    project_id: str = "default"
    database_id: str = DEFAULT_DATABASE_ID

    # Local storage
    data_dir: Optional[str] = None  # Override database location
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT  # Seconds to wait for the exclusive lock

    # Source of config
    config_path: Optional[Path] = None
    config_source: str = "none"  # "directory", "parent", "none"

    @property
    def database(self) -> DatabaseId:
        return DatabaseId(self.project_id, self.database_id)

    @property
    def database_name(self) -> str:
        return database_name(self.persistence_key, self.database)

    def get_db_path(self) -> Path:
        """Get the database file path.

        Resolution order:
        1. ``data_dir`` (from config or environment)
        2. User data directory fallback

        Returns:
            Path to the SQLite database file
        """
        if self.data_dir:
            return Path(self.data_dir) / self.database_name
        return Path(user_data_dir("semfora-store", "Semfora")) / self.database_name


def find_store_config(start_path: Optional[Path] = None) -> Optional[Path]:
    """Find the nearest .store/config.json by walking up the directory tree.

    Args:
        start_path: Directory to start searching from (default: cwd)

    Returns:
        Path to config.json if found, None otherwise
    """
    if start_path is None:
        start_path = Path.cwd()

    current = Path(start_path).resolve()
    while True:
        config_path = current / STORE_CONFIG_DIR / STORE_CONFIG_FILE
        if config_path.exists():
            return config_path
        if current == current.parent:
            return None
        current = current.parent


def load_store_config(config_path: Path) -> dict:
    """Load and parse a .store/config.json file."""
    with open(config_path) as f:
        return json.load(f) or {}


def resolve_settings(path: Optional[Path] = None) -> StoreSettings:
    """Resolve store settings for a path.

    Args:
        path: Directory to resolve settings for (default: cwd)

    Returns:
        StoreSettings with resolved configuration
    """
    settings = StoreSettings()

    config_path = find_store_config(path)
    if config_path:
        data = load_store_config(config_path)
        settings.config_path = config_path

        target_dir = Path(path).resolve() if path else Path.cwd().resolve()
        config_dir = config_path.parent.parent  # .store/config.json -> .store -> parent
        settings.config_source = "directory" if config_dir == target_dir else "parent"

        settings.persistence_key = data.get("persistence_key", DEFAULT_PERSISTENCE_KEY)
        settings.project_id = data.get("project_id", settings.project_id)
        settings.database_id = data.get("database_id", DEFAULT_DATABASE_ID)

        local_config = data.get("local", {})
        data_dir = local_config.get("data_dir")
        if data_dir:
            # Relative paths are relative to the folder holding .store/
            settings.data_dir = str((config_dir / data_dir).resolve())
        settings.lock_timeout = float(local_config.get("lock_timeout", DEFAULT_LOCK_TIMEOUT))

    env_data_dir = os.environ.get(DATA_DIR_ENV)
    if env_data_dir:
        settings.data_dir = env_data_dir

    return settings


def create_store_config(
    path: Path,
    project_id: str,
    database_id: str = DEFAULT_DATABASE_ID,
    persistence_key: str = DEFAULT_PERSISTENCE_KEY,
    data_dir: Optional[str] = None,
) -> Path:
    """Create a .store/config.json file in the specified directory.

    Returns:
        Path to created config file
    """
    store_dir = Path(path) / STORE_CONFIG_DIR
    store_dir.mkdir(exist_ok=True)

    config = {
        "persistence_key": persistence_key,
        "project_id": project_id,
        "database_id": database_id,
    }
    if data_dir:
        config["local"] = {"data_dir": data_dir}

    config_path = store_dir / STORE_CONFIG_FILE
    with open(config_path, "w") as f:
        json.dump(config, f, indent=2)

    return config_path
