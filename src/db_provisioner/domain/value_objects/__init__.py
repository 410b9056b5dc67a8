"""Value objects for the provisioner domain.

Exports:
    Identifiers:
        - EngineId, ContainerName: type-safe identifiers
        - is_valid_container_name, create_container_name, derive_container_name

    Versions:
        - GroupingStrategy: major-version grouping schemes
        - compare_versions, sort_descending, group_by_major, major_version,
          major_minor, placeholder_version
"""

from db_provisioner.domain.value_objects.identifiers import (
    ContainerName,
    EngineId,
    create_container_name,
    derive_container_name,
    is_valid_container_name,
)
from db_provisioner.domain.value_objects.versions import (
    GroupingStrategy,
    MajorVersionFn,
    compare_versions,
    group_by_major,
    major_minor,
    major_version,
    placeholder_version,
    sort_descending,
)

__all__ = [
    # Identifiers
    "ContainerName",
    "EngineId",
    "create_container_name",
    "derive_container_name",
    "is_valid_container_name",
    # Versions
    "GroupingStrategy",
    "MajorVersionFn",
    "compare_versions",
    "group_by_major",
    "major_minor",
    "major_version",
    "placeholder_version",
    "sort_descending",
]
