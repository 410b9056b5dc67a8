"""Unit tests for container configuration entities."""

from __future__ import annotations

from pathlib import Path

import pytest

from db_provisioner.domain.entities.container import (
    ContainerConfig,
    ContainerStatus,
    FileEngineRegistry,
    FileRegistryEntry,
    RemoteConnection,
)


def _legacy_document(**overrides: object) -> dict:
    data = {
        "name": "pg1",
        "engine": "postgresql",
        "version": "17.7.0",
        "port": 5432,
        "database": "app",
        "created": "2025-01-01T00:00:00.000Z",
        "status": "created",
    }
    data.update(overrides)
    return data


@pytest.mark.unit
class TestContainerConfig:
    """Tests for ContainerConfig parsing and migration."""

    def test_missing_databases_migrated(self) -> None:
        config = ContainerConfig.from_dict(_legacy_document())

        assert config.databases == []
        assert config.normalize() is True
        assert config.databases == ["app"]

    def test_primary_moved_to_front(self) -> None:
        config = ContainerConfig.from_dict(_legacy_document(databases=["other", "app", "third"]))

        assert config.normalize() is True
        assert config.databases == ["app", "other", "third"]

    def test_primary_missing_from_list_prepended(self) -> None:
        config = ContainerConfig.from_dict(_legacy_document(databases=["other"]))

        config.normalize()

        assert config.databases == ["app", "other"]

    def test_normalized_config_unchanged(self) -> None:
        config = ContainerConfig.from_dict(_legacy_document(databases=["app", "other"]))

        assert config.normalize() is False

    def test_wire_names(self) -> None:
        config = ContainerConfig(
            name="pg2",
            engine="postgresql",
            version="17.7.0",
            port=5433,
            database="app",
            databases=["app"],
            cloned_from="pg1",
            binary_path="/opt/pg/bin",
        )

        data = config.to_dict()

        assert data["clonedFrom"] == "pg1"
        assert data["binaryPath"] == "/opt/pg/bin"
        assert data["status"] == "created"
        assert "remote" not in data
        assert "filePath" not in data

    def test_unknown_keys_preserved(self) -> None:
        config = ContainerConfig.from_dict(_legacy_document(databases=["app"], backupSchedule="daily"))

        assert config.extra == {"backupSchedule": "daily"}
        assert config.to_dict()["backupSchedule"] == "daily"

    def test_linked_container(self) -> None:
        remote = {"host": "db.example.com", "port": 5432, "database": "prod", "user": "ro"}
        config = ContainerConfig.from_dict(_legacy_document(status="linked", remote=remote))

        assert config.is_linked()
        assert isinstance(config.remote, RemoteConnection)
        assert config.remote.host == "db.example.com"
        assert config.to_dict()["remote"]["user"] == "ro"

    def test_status_values(self) -> None:
        assert ContainerStatus("running") is ContainerStatus.RUNNING
        with pytest.raises(ValueError):
            ContainerStatus("paused")


@pytest.mark.unit
class TestFileEngineRegistry:
    """Tests for the file-based engine registry document."""

    def test_empty_document(self) -> None:
        registry = FileEngineRegistry.from_dict(None)

        assert registry.version == 1
        assert registry.entries == []
        assert registry.ignore_folders == {}

    def test_find_by_name_and_path(self, temp_dir: Path) -> None:
        entry = FileRegistryEntry(name="app", file_path=temp_dir / "app.sqlite")
        registry = FileEngineRegistry(entries=[entry])

        assert registry.find("app") is entry
        assert registry.find_by_path(temp_dir / "app.sqlite") is entry
        assert registry.find("other") is None

    def test_document_shape(self, temp_dir: Path) -> None:
        entry = FileRegistryEntry(name="app", file_path=temp_dir / "app.sqlite", last_verified="2025-01-02T00:00:00.000Z")
        registry = FileEngineRegistry(entries=[entry], ignore_folders={str(temp_dir): True})

        data = registry.to_dict()

        assert data["entries"][0]["filePath"] == str(temp_dir / "app.sqlite")
        assert data["entries"][0]["lastVerified"] == "2025-01-02T00:00:00.000Z"
        assert data["ignoreFolders"] == {str(temp_dir): True}
        assert FileEngineRegistry.from_dict(data).entries[0].name == "app"
