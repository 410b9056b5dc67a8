"""Container registry and state manager service."""

from __future__ import annotations

import asyncio
import dataclasses
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Mapping

from db_provisioner.adapters.outbound.container_store import ContainerStore
from db_provisioner.adapters.outbound.file_registry_store import FileRegistryStore
from db_provisioner.adapters.outbound.port_allocator import PortAllocator
from db_provisioner.adapters.outbound.resilient_fs import (
    ResilientPolicy,
    copy_directory,
    copy_file,
    default_busy_policy,
    move_directory,
    move_file,
    remove_directory_recursively,
)
from db_provisioner.domain.entities.container import (
    ContainerConfig,
    ContainerStatus,
    FileRegistryEntry,
    utc_now_iso,
)
from db_provisioner.domain.errors import (
    ContainerExistsError,
    ContainerNotFoundError,
    ContainerRunningError,
    DestinationExistsError,
    InvalidContainerNameError,
    PrimaryDatabaseError,
    ProvisionerError,
    UnknownEngineError,
)
from db_provisioner.domain.value_objects.identifiers import is_valid_container_name
from db_provisioner.infrastructure.config import PathsConfig
from db_provisioner.infrastructure.logging import get_logger
from db_provisioner.infrastructure.metrics import MetricsRegistry, get_metrics
from db_provisioner.infrastructure.tracing import trace_span
from db_provisioner.ports.outbound import EngineDescriptor, LivenessOracle

logger = get_logger(__name__)


class ContainerRegistry:
    """Owns persisted container state and the container state machine.

    Server-engine containers live in {root}/containers/{engine}/{name}/ and
    move between CREATED, RUNNING and STOPPED; RUNNING/STOPPED is derived
    from the liveness oracle when listing, never trusted from disk.
    File-based containers are entries in the shared registry and are
    AVAILABLE or MISSING depending on their file. LINKED containers point
    at a remote server and keep their persisted status.

    Validation and precondition checks run before any mutation; multi-step
    mutations undo their partial work before re-raising.
    """

    def __init__(
        self,
        paths: PathsConfig,
        engines: Mapping[str, EngineDescriptor],
        liveness: LivenessOracle,
        port_allocator: PortAllocator,
        file_registries: Mapping[str, FileRegistryStore],
        store: ContainerStore | None = None,
        fs_policy: ResilientPolicy | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            paths: On-disk layout.
            engines: Engine descriptors by engine id.
            liveness: Oracle reporting whether a server is running.
            port_allocator: Port allocator used by clone.
            file_registries: Registry store per file-based engine.
            store: Container config store.
            fs_policy: Retry policy for moves and removals.
            metrics: Metrics registry (default: global).
        """
        self._paths = paths
        self._engines = dict(engines)
        self._liveness = liveness
        self._ports = port_allocator
        self._file_registries = dict(file_registries)
        self._store = store or ContainerStore(paths)
        self._fs_policy = fs_policy or default_busy_policy()
        self._metrics = metrics or get_metrics()

    # =========================================================================
    # Helpers
    # =========================================================================

    @property
    def engines(self) -> list[str]:
        return list(self._engines)

    def is_valid_name(self, name: str) -> bool:
        """Check a container name against ^[A-Za-z][A-Za-z0-9_-]*$."""
        return is_valid_container_name(name)

    def _validate_name(self, name: str) -> None:
        if not self.is_valid_name(name):
            raise InvalidContainerNameError(name)

    def _descriptor(self, engine: str) -> EngineDescriptor:
        try:
            return self._engines[engine]
        except KeyError:
            raise UnknownEngineError(engine) from None

    def _file_registry(self, engine: str) -> FileRegistryStore:
        try:
            return self._file_registries[engine]
        except KeyError:
            raise UnknownEngineError(engine) from None

    def _is_file_based(self, engine: str) -> bool:
        return self._descriptor(engine).file_based

    def _server_engines(self) -> list[str]:
        return [engine for engine, descriptor in self._engines.items() if not descriptor.file_based]

    def _file_engines(self) -> list[str]:
        return [engine for engine, descriptor in self._engines.items() if descriptor.file_based]

    @contextmanager
    def _operation(self, operation: str, **attributes: Any) -> Generator[None, None, None]:
        with trace_span(f"container.{operation}", attributes):
            try:
                yield
            except Exception:
                self._metrics.container_operations_total.labels(operation=operation, status="error").inc()
                raise
            self._metrics.container_operations_total.labels(operation=operation, status="success").inc()

    @staticmethod
    def _file_config(engine: str, entry: FileRegistryEntry, present: bool) -> ContainerConfig:
        return ContainerConfig(
            name=entry.name,
            engine=engine,
            version="",
            port=0,
            database=entry.name,
            databases=[entry.name],
            created=entry.created,
            status=ContainerStatus.AVAILABLE if present else ContainerStatus.MISSING,
            file_path=entry.file_path,
        )

    async def _load_file_config(self, name: str, engine: str) -> ContainerConfig | None:
        entry = await self._file_registry(engine).get(name)
        if entry is None:
            return None
        present = await asyncio.to_thread(entry.file_path.exists)
        return self._file_config(engine, entry, present)

    async def _require(self, name: str, engine: str | None) -> ContainerConfig:
        config = await self.get(name, engine)
        if config is None:
            raise ContainerNotFoundError(name, engine)
        return config

    async def _ensure_name_free(self, name: str, engine: str) -> None:
        if await self.exists(name, engine):
            raise ContainerExistsError(name, engine)
        if self._is_file_based(engine):
            return
        # Leftover directory with a missing or unreadable config
        if await asyncio.to_thread(self._paths.container_dir(name, engine).exists):
            logger.warning("container directory exists without a readable config", container=name, engine=engine)
            raise ContainerExistsError(name, engine)

    async def _ensure_stopped(self, config: ContainerConfig, operation: str, allow_force: bool = False) -> None:
        if config.is_linked() or self._is_file_based(config.engine):
            return
        if await self._liveness.is_running(config.name, config.engine):
            raise ContainerRunningError(config.name, operation, allow_force=allow_force)

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create(
        self,
        name: str,
        engine: str,
        version: str,
        port: int,
        database: str,
    ) -> ContainerConfig:
        """Create a server-engine container.

        Args:
            name: Container name.
            engine: Engine id.
            version: Engine version.
            port: Port the server will listen on.
            database: Primary database name.

        Returns:
            The persisted config.

        Raises:
            InvalidContainerNameError: If the name is invalid.
            ContainerExistsError: If the engine already has a container of that name.
        """
        with self._operation("create", engine=engine, container=name):
            self._validate_name(name)
            if self._is_file_based(engine):
                raise ProvisionerError(
                    f"{engine} is a file-based engine",
                    hint="register the database file with create_file_container()",
                )
            await self._ensure_name_free(name, engine)

            data_dir = self._paths.container_data_dir(name, engine)
            await asyncio.to_thread(data_dir.mkdir, parents=True, exist_ok=True)

            config = ContainerConfig(
                name=name,
                engine=engine,
                version=version,
                port=port,
                database=database,
                databases=[database],
                status=ContainerStatus.CREATED,
            )
            await self._store.save(config)
            logger.info("container created", container=name, engine=engine, version=version, port=port)
            return config

    async def create_file_container(self, name: str, engine: str, file_path: Path) -> ContainerConfig:
        """Register an existing or future database file as a container.

        Raises:
            InvalidContainerNameError: If the name is invalid.
            ContainerExistsError: If the name is taken.
            PathAlreadyRegisteredError: If the file is already registered.
        """
        with self._operation("create", engine=engine, container=name):
            self._validate_name(name)
            if not self._is_file_based(engine):
                raise ProvisionerError(f"{engine} is not a file-based engine")
            absolute = Path(file_path).expanduser().resolve()
            entry = FileRegistryEntry(name=name, file_path=absolute)
            await self._file_registry(engine).add(entry)
            logger.info("file container registered", container=name, engine=engine, path=str(absolute))
            present = await asyncio.to_thread(absolute.exists)
            return self._file_config(engine, entry, present)

    async def get(self, name: str, engine: str | None = None) -> ContainerConfig | None:
        """Look up a container, in one engine or across all of them.

        Server-engine configs are returned as persisted (migrated if
        needed); list() is where running state gets derived.
        """
        engines = [engine] if engine else [*self._server_engines(), *self._file_engines()]
        for candidate in engines:
            if self._is_file_based(candidate):
                config = await self._load_file_config(name, candidate)
            else:
                config = await self._store.load(name, candidate)
            if config is not None:
                return config
        return None

    async def exists(self, name: str, engine: str | None = None) -> bool:
        return await self.get(name, engine) is not None

    async def save(self, config: ContainerConfig) -> None:
        """Persist a config (file-based engines persist only the file path)."""
        if self._is_file_based(config.engine):
            if config.file_path is None:
                raise ProvisionerError(f'File container "{config.name}" has no file path')
            if not await self._file_registry(config.engine).update(config.name, file_path=config.file_path):
                raise ContainerNotFoundError(config.name, config.engine)
            return
        config.normalize()
        await self._store.save(config)

    async def update(self, name: str, engine: str | None = None, **changes: Any) -> ContainerConfig:
        """Apply field changes to a container config and persist it.

        Raises:
            ContainerNotFoundError: If the container does not exist.
            ValueError: If asked to change the name (use rename()).
        """
        if "name" in changes or "engine" in changes:
            raise ValueError("name and engine cannot be updated; use rename()")
        config = await self._require(name, engine)
        updated = dataclasses.replace(config, **changes)
        await self.save(updated)
        return updated

    async def list(self) -> list[ContainerConfig]:
        """List every container with its current status.

        Liveness probes run concurrently, one per server container.
        """
        with self._operation("list"):
            server_configs: list[ContainerConfig] = []
            for engine in self._server_engines():
                names = await self._store.list_names(engine)
                loaded = await asyncio.gather(*(self._store.load(name, engine) for name in names))
                server_configs.extend(config for config in loaded if config is not None)

            probes = await asyncio.gather(
                *(self._probe(config) for config in server_configs)
            )
            for config, status in zip(server_configs, probes):
                config.status = status

            file_configs: list[ContainerConfig] = []
            for engine in self._file_engines():
                entries = await self._file_registry(engine).list()
                for entry in entries:
                    present = await asyncio.to_thread(entry.file_path.exists)
                    file_configs.append(self._file_config(engine, entry, present))

            containers = [*server_configs, *file_configs]
            self._record_counts(containers)
            return containers

    async def _probe(self, config: ContainerConfig) -> ContainerStatus:
        if config.is_linked():
            return ContainerStatus.LINKED
        running = await self._liveness.is_running(config.name, config.engine)
        return ContainerStatus.RUNNING if running else ContainerStatus.STOPPED

    def _record_counts(self, containers: list[ContainerConfig]) -> None:
        counts: dict[tuple[str, str], int] = {}
        for config in containers:
            key = (config.engine, config.status.value)
            counts[key] = counts.get(key, 0) + 1
        for engine in self._engines:
            for status in ContainerStatus:
                self._metrics.container_count.labels(engine=engine, status=status.value).set(
                    counts.get((engine, status.value), 0)
                )

    # =========================================================================
    # Clone / rename / delete
    # =========================================================================

    async def clone(self, source: str, target: str, engine: str | None = None) -> ContainerConfig:
        """Clone a stopped container under a new name.

        The copy gets a fresh port (never one claimed by another container)
        and clonedFrom set to the source. Any failure after copying starts
        removes the target.

        Raises:
            InvalidContainerNameError: If the target name is invalid.
            ContainerNotFoundError: If the source does not exist.
            ContainerExistsError: If the target name is taken.
            ContainerRunningError: If the source server is running.
        """
        with self._operation("clone", engine=engine, container=source, target=target):
            self._validate_name(target)
            config = await self._require(source, engine)
            await self._ensure_name_free(target, config.engine)
            if self._is_file_based(config.engine):
                return await self._clone_file(config, target)
            await self._ensure_stopped(config, "clone")

            source_dir = self._paths.container_dir(source, config.engine)
            target_dir = self._paths.container_dir(target, config.engine)
            try:
                await copy_directory(source_dir, target_dir)
            except (DestinationExistsError, FileExistsError):
                raise ContainerExistsError(target, config.engine) from None
            except BaseException:
                await self._discard(target_dir)
                raise

            try:
                cloned = await self._store.load(target, config.engine)
                if cloned is None:
                    raise ProvisionerError(f'Failed to read cloned container config for "{target}"')

                cloned.name = target
                cloned.created = utc_now_iso()
                cloned.cloned_from = source
                descriptor = self._descriptor(config.engine)
                if descriptor.port_range is not None:
                    result = await self._ports.find_available_port_excluding_containers(descriptor.port_range)
                    cloned.port = result.port
                await self._store.save(cloned)
                await descriptor.regenerate_config(target, cloned.port)
            except BaseException:
                await self._discard(target_dir)
                raise

            logger.info("container cloned", container=target, engine=config.engine, source=source, port=cloned.port)
            return cloned

    async def _clone_file(self, config: ContainerConfig, target: str) -> ContainerConfig:
        source_path = config.file_path
        if source_path is None or config.status == ContainerStatus.MISSING:
            raise ProvisionerError(f'Database file for "{config.name}" is missing: {source_path}')
        target_path = source_path.with_name(f"{target}{source_path.suffix}")

        await copy_file(source_path, target_path)
        entry = FileRegistryEntry(name=target, file_path=target_path)
        try:
            await self._file_registry(config.engine).add(entry)
        except BaseException:
            await self._discard(target_path)
            raise
        logger.info("file container cloned", container=target, engine=config.engine, source=config.name)
        return self._file_config(config.engine, entry, True)

    async def rename(self, old: str, new: str, engine: str | None = None) -> ContainerConfig:
        """Rename a stopped container.

        The directory (or database file) is moved first and the persisted
        state rewritten afterwards; if the rewrite fails the move is undone,
        so the container stays readable under its old name.

        Raises:
            InvalidContainerNameError: If the new name is invalid.
            ContainerNotFoundError: If the container does not exist.
            ContainerExistsError: If the new name is taken.
            ContainerRunningError: If the server is running.
        """
        with self._operation("rename", engine=engine, container=old, target=new):
            self._validate_name(new)
            config = await self._require(old, engine)
            await self._ensure_name_free(new, config.engine)
            if self._is_file_based(config.engine):
                return await self._rename_file(config, new)
            await self._ensure_stopped(config, "rename")

            original = dataclasses.replace(config, databases=list(config.databases))
            old_dir = self._paths.container_dir(old, config.engine)
            new_dir = self._paths.container_dir(new, config.engine)
            await move_directory(old_dir, new_dir, self._fs_policy)
            try:
                config.name = new
                await self._store.save(config)
                await self._descriptor(config.engine).regenerate_config(new, config.port)
            except BaseException:
                await self._undo_rename(new_dir, old_dir, original)
                raise

            logger.info("container renamed", container=new, engine=config.engine, previous=old)
            return config

    async def _undo_rename(self, new_dir: Path, old_dir: Path, original: ContainerConfig) -> None:
        try:
            await move_directory(new_dir, old_dir, self._fs_policy)
            await self._store.save(original)
        except (OSError, ProvisionerError) as exc:
            logger.error(
                "rename rollback failed",
                container=original.name,
                engine=original.engine,
                path=str(new_dir),
                error=str(exc),
            )

    async def _rename_file(self, config: ContainerConfig, new: str) -> ContainerConfig:
        old_path = config.file_path
        if old_path is None:
            raise ProvisionerError(f'File container "{config.name}" has no file path')
        new_path = old_path.with_name(f"{new}{old_path.suffix}")
        registry = self._file_registry(config.engine)

        present = config.status != ContainerStatus.MISSING
        if present:
            await move_file(old_path, new_path, self._fs_policy)
        try:
            await registry.update(config.name, new_name=new, file_path=new_path)
        except BaseException:
            if present:
                try:
                    await move_file(new_path, old_path, self._fs_policy)
                except (OSError, ProvisionerError) as exc:
                    logger.error("file rename rollback failed", path=str(new_path), error=str(exc))
            raise

        logger.info("file container renamed", container=new, engine=config.engine, previous=config.name)
        entry = FileRegistryEntry(name=new, file_path=new_path, created=config.created)
        return self._file_config(config.engine, entry, present)

    async def delete(self, name: str, force: bool = False, engine: str | None = None) -> None:
        """Delete a container.

        Server containers must be stopped unless force is set. File-based
        containers lose both their file and their registry entry.

        Raises:
            ContainerNotFoundError: If the container does not exist.
            ContainerRunningError: If the server is running and force is not set.
        """
        with self._operation("delete", engine=engine, container=name):
            config = await self._require(name, engine)
            if self._is_file_based(config.engine):
                if config.file_path is not None:
                    await remove_directory_recursively(config.file_path, self._fs_policy)
                await self._file_registry(config.engine).remove(name)
                logger.info("file container deleted", container=name, engine=config.engine)
                return

            if not force:
                await self._ensure_stopped(config, "delete", allow_force=True)
            await remove_directory_recursively(self._paths.container_dir(name, config.engine), self._fs_policy)
            logger.info("container deleted", container=name, engine=config.engine, force=force)

    async def _discard(self, path: Path) -> None:
        try:
            await remove_directory_recursively(path, self._fs_policy)
        except OSError as exc:
            logger.error("cleanup of partial copy failed", path=str(path), error=str(exc))

    # =========================================================================
    # Databases
    # =========================================================================

    async def _require_server(self, name: str, engine: str | None) -> ContainerConfig:
        config = await self._require(name, engine)
        if self._is_file_based(config.engine):
            raise ProvisionerError(
                f'"{name}" is a file-based container',
                hint="file-based containers hold exactly one database",
            )
        return config

    async def add_database(self, name: str, database: str, engine: str | None = None) -> ContainerConfig:
        """Track an additional database in a container."""
        config = await self._require_server(name, engine)
        if database not in config.databases:
            config.databases.append(database)
            await self._store.save(config)
        return config

    async def remove_database(self, name: str, database: str, engine: str | None = None) -> ContainerConfig:
        """Stop tracking a database.

        Raises:
            PrimaryDatabaseError: If asked to remove the primary database.
        """
        config = await self._require_server(name, engine)
        if database == config.database:
            raise PrimaryDatabaseError(database)
        if database in config.databases:
            config.databases = [db for db in config.databases if db != database]
            await self._store.save(config)
        return config

    async def sync_databases(self, name: str, engine: str | None = None) -> ContainerConfig:
        """Merge the databases the engine reports into the tracked list."""
        config = await self._require_server(name, engine)
        reported = await self._descriptor(config.engine).list_databases(config)
        merged: list[str] = []
        for database in [config.database, *config.databases, *reported]:
            if database not in merged:
                merged.append(database)
        if merged != config.databases:
            config.databases = merged
            await self._store.save(config)
            logger.info("databases synced", container=name, engine=config.engine, count=len(merged))
        return config

    # =========================================================================
    # File discovery
    # =========================================================================

    async def scan_unregistered_files(self, engine: str, directory: Path) -> list[Path]:
        """Find database files of a file-based engine that are not yet registered.

        Ignored folders yield nothing.
        """
        descriptor = self._descriptor(engine)
        if not descriptor.file_based:
            raise ProvisionerError(f"{engine} is not a file-based engine")
        registry = self._file_registry(engine)
        folder = Path(directory).expanduser().resolve()
        if await registry.is_folder_ignored(folder):
            return []

        def _candidates() -> list[Path]:
            if not folder.is_dir():
                return []
            return sorted(
                entry.resolve()
                for entry in folder.iterdir()
                if entry.is_file() and entry.suffix.lower() in descriptor.file_extensions
            )

        registered = {entry.file_path for entry in await registry.list()}
        return [path for path in await asyncio.to_thread(_candidates) if path not in registered]
