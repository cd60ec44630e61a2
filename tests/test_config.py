"""Tests for store configuration."""

import json
from pathlib import Path

import pytest

from semfora_store.config import (
    DATA_DIR_ENV,
    StoreSettings,
    create_store_config,
    find_store_config,
    resolve_settings,
)
from semfora_store.model import DatabaseId


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    monkeypatch.delenv(DATA_DIR_ENV, raising=False)


class TestStoreSettings:
    """Tests for StoreSettings."""

    def test_defaults(self):
        settings = StoreSettings()
        assert settings.persistence_key == "[DEFAULT]"
        assert settings.database == DatabaseId("default", "(default)")
        assert settings.lock_timeout == 5.0

    def test_db_path_uses_data_dir(self, tmp_path):
        settings = StoreSettings(project_id="proj", data_dir=str(tmp_path))
        assert settings.get_db_path() == tmp_path / "storage.%5BDEFAULT%5D.proj.%28default%29"

    def test_db_path_falls_back_to_user_data_dir(self):
        path = StoreSettings(project_id="proj").get_db_path()
        assert path.name == "storage.%5BDEFAULT%5D.proj.%28default%29"
        assert "semfora-store" in str(path)


class TestResolveSettings:
    """Tests for config discovery."""

    def test_no_config(self, tmp_path):
        settings = resolve_settings(tmp_path)
        assert settings.config_source == "none"
        assert settings.config_path is None

    def test_directory_config(self, tmp_path):
        config_path = create_store_config(tmp_path, project_id="proj", database_id="db", persistence_key="app")
        settings = resolve_settings(tmp_path)

        assert settings.config_path == config_path.resolve()
        assert settings.config_source == "directory"
        assert settings.database_name == "storage.app.proj.db"

    def test_parent_config(self, tmp_path):
        create_store_config(tmp_path, project_id="proj")
        child = tmp_path / "a" / "b"
        child.mkdir(parents=True)

        settings = resolve_settings(child)
        assert settings.config_source == "parent"
        assert settings.project_id == "proj"
        assert find_store_config(child) == (tmp_path / ".store" / "config.json").resolve()

    def test_local_section(self, tmp_path):
        store_dir = tmp_path / ".store"
        store_dir.mkdir()
        (store_dir / "config.json").write_text(
            json.dumps({"project_id": "proj", "local": {"data_dir": "data", "lock_timeout": 0.5}})
        )

        settings = resolve_settings(tmp_path)
        assert settings.data_dir == str((tmp_path / "data").resolve())
        assert settings.lock_timeout == 0.5

    def test_env_overrides_data_dir(self, tmp_path, monkeypatch):
        create_store_config(tmp_path, project_id="proj", data_dir="ignored")
        monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path / "env"))

        settings = resolve_settings(tmp_path)
        assert settings.data_dir == str(tmp_path / "env")
        assert settings.get_db_path().parent == Path(tmp_path / "env")


class TestCreateStoreConfig:
    """Tests for create_store_config."""

    def test_writes_json(self, tmp_path):
        config_path = create_store_config(tmp_path, project_id="proj", data_dir="/srv/data")
        data = json.loads(config_path.read_text())

        assert data == {
            "persistence_key": "[DEFAULT]",
            "project_id": "proj",
            "database_id": "(default)",
            "local": {"data_dir": "/srv/data"},
        }
