"""On-disk store for server-engine container configs.

Each container owns {root}/containers/{engine}/{name}/container.json.
Reads migrate older documents (missing or out-of-order `databases`) and
persist the migrated form; writes are atomic replaces.
"""

from __future__ import annotations

import asyncio

from db_provisioner.adapters.outbound.json_document import read_json_document, write_json_atomic
from db_provisioner.domain.entities.container import ContainerConfig
from db_provisioner.infrastructure.config import PathsConfig
from db_provisioner.infrastructure.logging import get_logger

logger = get_logger(__name__)


class ContainerStore:
    """Reads and writes container.json documents."""

    def __init__(self, paths: PathsConfig) -> None:
        self._paths = paths

    @property
    def paths(self) -> PathsConfig:
        return self._paths

    async def load(self, name: str, engine: str) -> ContainerConfig | None:
        """Load a container config, migrating it if needed.

        Returns:
            The config, or None if the container has no readable config.
        """
        path = self._paths.container_config_file(name, engine)
        try:
            data = await asyncio.to_thread(read_json_document, path)
            config = ContainerConfig.from_dict(data)
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("unreadable container config", container=name, engine=engine, error=str(exc))
            return None

        if config.normalize():
            logger.info("migrated container config", container=name, engine=engine)
            await self.save(config)
        return config

    async def save(self, config: ContainerConfig) -> None:
        path = self._paths.container_config_file(config.name, config.engine)
        await asyncio.to_thread(write_json_atomic, path, config.to_dict())

    async def list_names(self, engine: str) -> list[str]:
        """Names of every container directory of an engine that holds a config."""
        return await asyncio.to_thread(self._scan, engine)

    def _scan(self, engine: str) -> list[str]:
        engine_dir = self._paths.engine_containers_dir(engine)
        if not engine_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in engine_dir.iterdir()
            if entry.is_dir() and (entry / "container.json").is_file()
        )
