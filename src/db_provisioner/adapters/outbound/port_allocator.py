"""TCP port allocator.

Finds free ports with a bind-and-release probe. Clone uses the
container-aware variant, which never hands out a port already claimed by
a known container config, running or not.
"""

from __future__ import annotations

import asyncio
import errno
import json
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from db_provisioner.domain.errors import NoPortAvailableError
from db_provisioner.infrastructure.config import PathsConfig, PortsConfig
from db_provisioner.infrastructure.logging import get_logger
from db_provisioner.ports.outbound import PortRange

logger = get_logger(__name__)


@dataclass(frozen=True)
class PortResult:
    """Outcome of a port search."""
    port: int
    is_default: bool  # True when the preferred port was free


def _probe(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError as exc:
            # Only "in use" means taken; other bind errors are not conclusive
            return exc.errno != errno.EADDRINUSE
    return True


class PortAllocator:
    """Allocates TCP ports for server-engine containers."""

    def __init__(self, paths: PathsConfig, config: PortsConfig | None = None) -> None:
        """Initialize the allocator.

        Args:
            paths: On-disk layout, used to discover container-claimed ports.
            config: Probe configuration.
        """
        self._paths = paths
        self._host = (config or PortsConfig()).host

    async def is_port_available(self, port: int) -> bool:
        """Check whether a port can be bound right now."""
        return await asyncio.to_thread(_probe, self._host, port)

    async def find_available_port(
        self,
        port_range: PortRange,
        preferred: int | None = None,
        excluding: Iterable[int] = (),
    ) -> PortResult:
        """Find a free port.

        Tries the preferred port first, then scans the range in ascending
        order, skipping excluded ports.

        Raises:
            NoPortAvailableError: If every port in the range is taken.
        """
        excluded = set(excluding)
        if preferred is not None and preferred not in excluded and await self.is_port_available(preferred):
            return PortResult(port=preferred, is_default=True)

        for port in port_range:
            if port in excluded or port == preferred:
                continue
            if await self.is_port_available(port):
                return PortResult(port=port, is_default=False)

        raise NoPortAvailableError(port_range.start, port_range.end)

    async def find_available_port_excluding_containers(
        self,
        port_range: PortRange,
        preferred: int | None = None,
    ) -> PortResult:
        """Find a free port that no known container has claimed."""
        claimed = await self.get_container_ports()
        return await self.find_available_port(port_range, preferred=preferred, excluding=claimed)

    async def get_container_ports(self) -> set[int]:
        """Collect the ports of every container config on disk."""
        return await asyncio.to_thread(self._scan_container_ports)

    def _scan_container_ports(self) -> set[int]:
        ports: set[int] = set()
        containers_dir = self._paths.containers_dir
        if not containers_dir.is_dir():
            return ports
        for config_path in containers_dir.glob("*/*/container.json"):
            port = _read_port(config_path)
            if port:
                ports.add(port)
        return ports


def _read_port(config_path: Path) -> int | None:
    try:
        return int(json.loads(config_path.read_text(encoding="utf-8")).get("port") or 0)
    except (OSError, ValueError, AttributeError) as exc:
        logger.debug("skipping unreadable container config", path=str(config_path), error=str(exc))
        return None
