"""Unit tests for the file-based engine registry store."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from db_provisioner.adapters.outbound.file_registry_store import FileRegistryStore
from db_provisioner.adapters.outbound.registry_lock import RegistryLock
from db_provisioner.domain.entities.container import FileRegistryEntry
from db_provisioner.domain.errors import ContainerExistsError, PathAlreadyRegisteredError
from db_provisioner.infrastructure.config import LockConfig
from db_provisioner.infrastructure.metrics import MetricsRegistry

LOCK_CONFIG = LockConfig(retry_interval_ms=2, timeout_ms=5000, stale_after_ms=10000)


def _store(config_path: Path, metrics: MetricsRegistry, engine: str = "sqlite") -> FileRegistryStore:
    lock = RegistryLock(config_path.with_suffix(".lock"), LOCK_CONFIG, metrics)
    return FileRegistryStore(config_path, engine, lock)


@pytest.fixture
def config_path(temp_dir: Path) -> Path:
    return temp_dir / "config.json"


@pytest.fixture
def store(config_path: Path, metrics_registry: MetricsRegistry) -> FileRegistryStore:
    return _store(config_path, metrics_registry)


@pytest.mark.unit
class TestFileRegistryStore:
    """Tests for FileRegistryStore."""

    async def test_add_and_get(self, store: FileRegistryStore, temp_dir: Path) -> None:
        await store.add(FileRegistryEntry(name="app", file_path=temp_dir / "app.sqlite"))

        entry = await store.get("app")
        assert entry is not None
        assert entry.file_path == temp_dir / "app.sqlite"
        assert await store.exists("app")
        assert await store.is_path_registered(temp_dir / "app.sqlite")
        assert (await store.get_by_path(temp_dir / "app.sqlite")).name == "app"

    async def test_duplicate_name_rejected(self, store: FileRegistryStore, temp_dir: Path) -> None:
        await store.add(FileRegistryEntry(name="app", file_path=temp_dir / "app.sqlite"))

        with pytest.raises(ContainerExistsError):
            await store.add(FileRegistryEntry(name="app", file_path=temp_dir / "other.sqlite"))

    async def test_duplicate_path_rejected(self, store: FileRegistryStore, temp_dir: Path) -> None:
        await store.add(FileRegistryEntry(name="app", file_path=temp_dir / "app.sqlite"))

        with pytest.raises(PathAlreadyRegisteredError):
            await store.add(FileRegistryEntry(name="app2", file_path=temp_dir / "app.sqlite"))
        assert [e.name for e in await store.list()] == ["app"]

    async def test_remove(self, store: FileRegistryStore, temp_dir: Path) -> None:
        await store.add(FileRegistryEntry(name="app", file_path=temp_dir / "app.sqlite"))

        assert await store.remove("app") is True
        assert await store.remove("app") is False
        assert await store.list() == []

    async def test_update_rename(self, store: FileRegistryStore, temp_dir: Path) -> None:
        await store.add(FileRegistryEntry(name="app", file_path=temp_dir / "app.sqlite"))

        assert await store.update("app", new_name="renamed", file_path=temp_dir / "renamed.sqlite")

        assert await store.get("app") is None
        assert (await store.get("renamed")).file_path == temp_dir / "renamed.sqlite"

    async def test_update_rename_conflict_writes_nothing(self, store: FileRegistryStore, temp_dir: Path) -> None:
        await store.add(FileRegistryEntry(name="a", file_path=temp_dir / "a.sqlite"))
        await store.add(FileRegistryEntry(name="b", file_path=temp_dir / "b.sqlite"))

        with pytest.raises(ContainerExistsError):
            await store.update("a", new_name="b", file_path=temp_dir / "moved.sqlite")

        assert (await store.get("a")).file_path == temp_dir / "a.sqlite"

    async def test_mark_verified(self, store: FileRegistryStore, temp_dir: Path) -> None:
        await store.add(FileRegistryEntry(name="app", file_path=temp_dir / "app.sqlite"))

        await store.mark_verified("app")

        assert (await store.get("app")).last_verified is not None

    async def test_preserves_other_document_keys(
        self,
        config_path: Path,
        metrics_registry: MetricsRegistry,
        temp_dir: Path,
    ) -> None:
        config_path.write_text(json.dumps({"defaults": {"engine": "postgresql"}}), encoding="utf-8")
        sqlite = _store(config_path, metrics_registry, "sqlite")
        duckdb = _store(config_path, metrics_registry, "duckdb")

        await sqlite.add(FileRegistryEntry(name="app", file_path=temp_dir / "app.sqlite"))
        await duckdb.add(FileRegistryEntry(name="warehouse", file_path=temp_dir / "w.duckdb"))

        document = json.loads(config_path.read_text(encoding="utf-8"))
        assert document["defaults"] == {"engine": "postgresql"}
        assert [e["name"] for e in document["registry"]["sqlite"]["entries"]] == ["app"]
        assert [e["name"] for e in document["registry"]["duckdb"]["entries"]] == ["warehouse"]

    async def test_corrupt_document_treated_as_empty(self, store: FileRegistryStore, config_path: Path) -> None:
        config_path.write_text("{truncated", encoding="utf-8")

        assert await store.list() == []

    async def test_orphans(self, store: FileRegistryStore, temp_dir: Path) -> None:
        present = temp_dir / "present.sqlite"
        present.write_bytes(b"SQLite")
        await store.add(FileRegistryEntry(name="present", file_path=present))
        await store.add(FileRegistryEntry(name="gone", file_path=temp_dir / "gone.sqlite"))

        assert [e.name for e in await store.find_orphans()] == ["gone"]
        assert await store.remove_orphans() == 1
        assert [e.name for e in await store.list()] == ["present"]

    async def test_ignore_folders(self, store: FileRegistryStore, temp_dir: Path) -> None:
        folder = temp_dir / "scratch"
        folder.mkdir()

        await store.add_ignore_folder(folder)

        assert await store.is_folder_ignored(folder)
        assert await store.list_ignored_folders() == [str(folder.resolve())]
        assert await store.remove_ignore_folder(folder) is True
        assert not await store.is_folder_ignored(folder)

    async def test_concurrent_writers_lose_nothing(
        self,
        config_path: Path,
        metrics_registry: MetricsRegistry,
        temp_dir: Path,
    ) -> None:
        """Independent lock instances (as separate processes would have) serialize their updates."""
        count = 20

        async def register(i: int) -> None:
            store = _store(config_path, metrics_registry)
            await store.add(FileRegistryEntry(name=f"db{i}", file_path=temp_dir / f"db{i}.sqlite"))

        await asyncio.gather(*(register(i) for i in range(count)))

        names = {entry.name for entry in await _store(config_path, metrics_registry).list()}
        assert names == {f"db{i}" for i in range(count)}
        assert not config_path.with_suffix(".lock").exists()
