"""Domain entities for the database provisioner."""

from db_provisioner.domain.entities.binary import (
    Arch,
    InstallStage,
    InstalledBinary,
    Platform,
    ProgressCallback,
    ProgressEvent,
)
from db_provisioner.domain.entities.container import (
    ContainerConfig,
    ContainerStatus,
    FileEngineRegistry,
    FileRegistryEntry,
    RemoteConnection,
)
from db_provisioner.domain.entities.lock import LockMarker
from db_provisioner.domain.entities.versions import VersionCacheEntry

__all__ = [
    # Binaries
    "Arch",
    "InstallStage",
    "InstalledBinary",
    "Platform",
    "ProgressCallback",
    "ProgressEvent",
    # Containers
    "ContainerConfig",
    "ContainerStatus",
    "FileEngineRegistry",
    "FileRegistryEntry",
    "RemoteConnection",
    # Locks and caches
    "LockMarker",
    "VersionCacheEntry",
]
