"""Outbound adapters - implementations of outbound ports.

These adapters persist container state, guard the shared registry
document, allocate ports, fetch release metadata and describe the
built-in engines.
"""

from db_provisioner.adapters.outbound.container_store import ContainerStore
from db_provisioner.adapters.outbound.engine_capabilities import (
    BUILTIN_ENGINES,
    EngineCapability,
    EngineDefaults,
    EngineEntry,
    get_engine,
)
from db_provisioner.adapters.outbound.file_registry_store import FileRegistryStore
from db_provisioner.adapters.outbound.pid_liveness import PidFileLivenessOracle
from db_provisioner.adapters.outbound.port_allocator import PortAllocator, PortResult
from db_provisioner.adapters.outbound.registry_lock import RegistryLock
from db_provisioner.adapters.outbound.release_index import ReleaseIndexClient
from db_provisioner.adapters.outbound.resilient_fs import ResilientPolicy, default_busy_policy

__all__ = [
    "BUILTIN_ENGINES",
    "ContainerStore",
    "EngineCapability",
    "EngineDefaults",
    "EngineEntry",
    "FileRegistryStore",
    "PidFileLivenessOracle",
    "PortAllocator",
    "PortResult",
    "RegistryLock",
    "ReleaseIndexClient",
    "ResilientPolicy",
    "default_busy_policy",
    "get_engine",
]
