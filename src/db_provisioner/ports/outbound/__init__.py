"""Outbound ports - External collaborator interfaces for the provisioner.

Outbound ports define the contracts the core consumes: the liveness
oracle that says whether a container's server is up, per-engine
descriptors and binary capabilities, and the release index that lists
upstream versions.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Protocol

from db_provisioner.domain.entities.binary import Arch, Platform
from db_provisioner.domain.entities.container import ContainerConfig


# =============================================================================
# Process Liveness Oracle Port
# =============================================================================


class LivenessOracle(Protocol):
    """Protocol for checking whether a container's server process is up.

    Probes must be independent: list() issues one per container
    concurrently.
    """

    @abstractmethod
    async def is_running(self, name: str, engine: str) -> bool:
        """Report whether the named container's server is running.

        Args:
            name: Container name.
            engine: Engine id.

        Returns:
            True if a live server process owns the container.
        """
        ...


# =============================================================================
# Binary Capability Port
# =============================================================================


class BinaryCapability(Protocol):
    """Per-engine strategy consumed by the provisioning pipeline.

    The pipeline is written once against this interface; engines differ
    only in binary names, version tables, URL layout and how the binary
    reports its version.
    """

    @property
    @abstractmethod
    def engine(self) -> str:
        """Engine id used in paths and archive names."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    @abstractmethod
    def server_binary(self) -> str:
        """Executable whose presence marks an install as complete (no extension)."""
        ...

    @property
    @abstractmethod
    def can_probe_version(self) -> bool:
        """False when invoking the binary for a version check would start a server."""
        ...

    @property
    @abstractmethod
    def version_args(self) -> tuple[str, ...]:
        """Arguments that make the server binary print its version."""
        ...

    @property
    @abstractmethod
    def supported_platforms(self) -> list[str]:
        """Published targets as "{platform}-{arch}" strings."""
        ...

    @abstractmethod
    def supports(self, platform: Platform, arch: Arch) -> bool:
        """Whether binaries are published for this platform/arch."""
        ...

    @abstractmethod
    def resolve_version(self, requested: str) -> str:
        """Map a major, major.minor or exact token to a full version.

        Unknown tokens pass through unchanged.
        """
        ...

    @abstractmethod
    def build_download_url(self, version: str, platform: Platform, arch: Arch, base_url: str) -> str:
        """Archive URL for a full version under a registry base URL."""
        ...

    @abstractmethod
    def parse_version_output(self, output: str) -> str | None:
        """Extract the version from the binary's version output."""
        ...


# =============================================================================
# Engine Descriptor Port
# =============================================================================


@dataclass(frozen=True)
class PortRange:
    """Inclusive TCP port range."""
    start: int
    end: int

    def __iter__(self):
        return iter(range(self.start, self.end + 1))


class EngineDescriptor(Protocol):
    """Protocol for the engine plugin surface the registry relies on."""

    @property
    @abstractmethod
    def engine(self) -> str:
        ...

    @property
    @abstractmethod
    def file_based(self) -> bool:
        """True when the user's own file is the database (no server process)."""
        ...

    @property
    @abstractmethod
    def default_port(self) -> int:
        """Preferred port; 0 for file-based engines."""
        ...

    @property
    @abstractmethod
    def port_range(self) -> PortRange | None:
        ...

    @property
    @abstractmethod
    def file_extensions(self) -> tuple[str, ...]:
        """Recognised database file extensions, lower-case with leading dot."""
        ...

    @abstractmethod
    async def list_databases(self, config: ContainerConfig) -> list[str]:
        """List databases that actually exist inside a running container."""
        ...

    @abstractmethod
    async def regenerate_config(self, name: str, port: int) -> None:
        """Rewrite engine config files that embed absolute paths or the port.

        Called after clone and rename. Engines without such files do nothing.
        """
        ...


# =============================================================================
# Release Index Port
# =============================================================================


class ReleaseIndexSource(Protocol):
    """Protocol for the upstream list of published versions."""

    @abstractmethod
    async def versions_for(self, engine: str) -> list[str]:
        """Return every published full version of an engine.

        Raises:
            ReleaseIndexError: If no source could be reached.
        """
        ...


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Liveness
    "LivenessOracle",
    # Provisioning
    "BinaryCapability",
    # Engines
    "EngineDescriptor",
    "PortRange",
    # Versions
    "ReleaseIndexSource",
]
