"""Provisioner value objects."""

import re
from typing import NewType

# Type-safe identifiers
EngineId = NewType('EngineId', str)
ContainerName = NewType('ContainerName', str)

_CONTAINER_NAME_RE = re.compile(r"[A-Za-z][A-Za-z0-9_-]*")


def is_valid_container_name(name: str) -> bool:
    """Check a container name.

    Names start with a letter and contain only letters, digits,
    hyphens and underscores.
    """
    return _CONTAINER_NAME_RE.fullmatch(name) is not None


def create_container_name(name: str) -> ContainerName:
    """Create a validated container name.

    Raises:
        InvalidContainerNameError: If the name is not valid.
    """
    from db_provisioner.domain.errors import InvalidContainerNameError

    if not is_valid_container_name(name):
        raise InvalidContainerNameError(name)
    return ContainerName(name)


def derive_container_name(file_name: str, fallback: str) -> ContainerName:
    """Derive a valid container name from a database file name.

    Args:
        file_name: File name, extension included.
        fallback: Name used when nothing usable remains.

    Returns:
        Container name.
    """
    stem = file_name.rsplit(".", 1)[0] if "." in file_name else file_name
    name = re.sub(r"[^A-Za-z0-9_-]", "-", stem)
    if not name.strip("-"):
        return ContainerName(fallback)
    if not name[0].isalpha():
        name = "db-" + name
    name = re.sub(r"-+", "-", name).strip("-")
    return ContainerName(name or fallback)
