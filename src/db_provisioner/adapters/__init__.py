"""Adapters layer - concrete implementations of port interfaces.

Outbound adapters implement external dependencies: the filesystem,
the release registry over HTTP, archive tools and the process table.
"""

from db_provisioner.adapters.outbound import (
    ContainerStore,
    FileRegistryStore,
    PidFileLivenessOracle,
    PortAllocator,
    RegistryLock,
    ReleaseIndexClient,
)

__all__ = [
    # Outbound adapters
    "ContainerStore",
    "FileRegistryStore",
    "PidFileLivenessOracle",
    "PortAllocator",
    "RegistryLock",
    "ReleaseIndexClient",
]
