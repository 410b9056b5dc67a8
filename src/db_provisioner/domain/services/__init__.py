"""Domain services.

Exports:
    - ContainerRegistry: container state machine and persisted config CRUD
    - BinaryProvisioner: download/extract/verify pipeline for one engine
    - VersionResolver: cached, coalesced upstream version metadata
"""

from db_provisioner.domain.services.binary_provisioner import BinaryProvisioner
from db_provisioner.domain.services.container_registry import ContainerRegistry
from db_provisioner.domain.services.version_resolver import VersionResolver

__all__ = [
    "BinaryProvisioner",
    "ContainerRegistry",
    "VersionResolver",
]
