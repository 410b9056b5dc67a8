"""Registry of file-based engine databases.

File-based engines (SQLite, DuckDB) keep the database in the user's own
project directory, so there is no container directory to enumerate.
Instead each engine owns a registry inside the shared config document
({root}/config.json, key "registry.{engine}") mapping container names to
absolute file paths, plus a set of folders the user asked not to scan.

Every mutation is acquire lock -> read -> mutate -> atomic write ->
release, so concurrent CLI processes never lose each other's updates.
Other keys of the shared document are preserved.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from db_provisioner.adapters.outbound.json_document import read_json_document, write_json_atomic
from db_provisioner.adapters.outbound.registry_lock import RegistryLock
from db_provisioner.domain.entities.container import FileEngineRegistry, FileRegistryEntry, utc_now_iso
from db_provisioner.domain.errors import ContainerExistsError, PathAlreadyRegisteredError
from db_provisioner.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _load_document(config_path: Path) -> dict[str, Any]:
    try:
        document = read_json_document(config_path)
    except FileNotFoundError:
        return {}
    except ValueError as exc:
        logger.warning("shared config document corrupted, starting empty", path=str(config_path), error=str(exc))
        return {}
    return document if isinstance(document, dict) else {}


class FileRegistryStore:
    """Lock-protected registry of one file-based engine."""

    def __init__(self, config_path: Path, engine: str, lock: RegistryLock) -> None:
        """Initialize the store.

        Args:
            config_path: Shared config document.
            engine: File-based engine id, the registry key.
            lock: Lock guarding the shared document.
        """
        self._config_path = config_path
        self._engine = engine
        self._lock = lock

    @property
    def engine(self) -> str:
        return self._engine

    async def load(self) -> FileEngineRegistry:
        """Read the registry without locking (writes are atomic replaces)."""
        document = await asyncio.to_thread(_load_document, self._config_path)
        return FileEngineRegistry.from_dict(document.get("registry", {}).get(self._engine))

    @asynccontextmanager
    async def mutate(self) -> AsyncIterator[FileEngineRegistry]:
        """Lock the document and yield the registry for in-place mutation.

        The registry is written back only if the block exits cleanly.
        """
        async with self._lock:
            document = await asyncio.to_thread(_load_document, self._config_path)
            registry = FileEngineRegistry.from_dict(document.get("registry", {}).get(self._engine))
            yield registry
            document.setdefault("registry", {})[self._engine] = registry.to_dict()
            await asyncio.to_thread(write_json_atomic, self._config_path, document)

    async def add(self, entry: FileRegistryEntry) -> None:
        """Register a file.

        Raises:
            ContainerExistsError: If the name is taken.
            PathAlreadyRegisteredError: If the file is already tracked.
        """
        async with self.mutate() as registry:
            if registry.find(entry.name) is not None:
                raise ContainerExistsError(entry.name, self._engine)
            owner = registry.find_by_path(entry.file_path)
            if owner is not None:
                raise PathAlreadyRegisteredError(entry.file_path, owner.name)
            registry.entries.append(entry)

    async def get(self, name: str) -> FileRegistryEntry | None:
        return (await self.load()).find(name)

    async def get_by_path(self, file_path: Path) -> FileRegistryEntry | None:
        return (await self.load()).find_by_path(file_path)

    async def exists(self, name: str) -> bool:
        return await self.get(name) is not None

    async def is_path_registered(self, file_path: Path) -> bool:
        return await self.get_by_path(file_path) is not None

    async def list(self) -> list[FileRegistryEntry]:
        return (await self.load()).entries

    async def remove(self, name: str) -> bool:
        """Remove an entry.

        Returns:
            True if the entry existed.
        """
        async with self.mutate() as registry:
            entry = registry.find(name)
            if entry is None:
                return False
            registry.entries.remove(entry)
            return True

    async def update(
        self,
        name: str,
        *,
        new_name: str | None = None,
        file_path: Path | None = None,
        last_verified: str | None = None,
    ) -> bool:
        """Update an entry in place.

        Returns:
            True if the entry existed.

        Raises:
            ContainerExistsError: If new_name is taken by another entry.
        """
        async with self.mutate() as registry:
            entry = registry.find(name)
            if entry is None:
                return False
            if new_name is not None and new_name != name:
                if registry.find(new_name) is not None:
                    raise ContainerExistsError(new_name, self._engine)
                entry.name = new_name
            if file_path is not None:
                entry.file_path = file_path
            if last_verified is not None:
                entry.last_verified = last_verified
            return True

    async def mark_verified(self, name: str) -> None:
        await self.update(name, last_verified=utc_now_iso())

    async def find_orphans(self) -> list[FileRegistryEntry]:
        """Entries whose file no longer exists."""
        entries = await self.list()
        return [entry for entry in entries if not entry.file_path.exists()]

    async def remove_orphans(self) -> int:
        """Drop entries whose file no longer exists.

        Returns:
            Number of entries removed.
        """
        async with self.mutate() as registry:
            before = len(registry.entries)
            registry.entries = [entry for entry in registry.entries if entry.file_path.exists()]
            removed = before - len(registry.entries)
        if removed:
            logger.info("removed orphaned registry entries", engine=self._engine, count=removed)
        return removed

    async def is_folder_ignored(self, folder: Path) -> bool:
        return str(folder.resolve()) in (await self.load()).ignore_folders

    async def add_ignore_folder(self, folder: Path) -> None:
        async with self.mutate() as registry:
            registry.ignore_folders[str(folder.resolve())] = True

    async def remove_ignore_folder(self, folder: Path) -> bool:
        async with self.mutate() as registry:
            return registry.ignore_folders.pop(str(folder.resolve()), None) is not None

    async def list_ignored_folders(self) -> list[str]:
        return sorted((await self.load()).ignore_folders)
