"""Error taxonomy for the database provisioner.

Validation and precondition errors are raised before any on-disk mutation.
Transient OS errors are absorbed by the filesystem layer and only surface
once its retry budget is exhausted. Network and verification errors carry a
remediation hint where one exists.
"""

from __future__ import annotations

from pathlib import Path


class ProvisionerError(Exception):
    """Base class for all provisioner errors."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        self.message = message
        self.hint = hint
        super().__init__(message if hint is None else f"{message} ({hint})")


# =============================================================================
# Validation
# =============================================================================


class InvalidContainerNameError(ProvisionerError):
    """Raised when a container name fails validation."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f'Invalid container name "{name}"',
            hint="names must start with a letter and contain only letters, digits, hyphens and underscores",
        )


class ContainerExistsError(ProvisionerError):
    """Raised when a name is already taken within an engine namespace."""

    def __init__(self, name: str, engine: str) -> None:
        self.name = name
        self.engine = engine
        super().__init__(f'Container "{name}" already exists for engine {engine}')


class ContainerNotFoundError(ProvisionerError):
    """Raised when a container cannot be found."""

    def __init__(self, name: str, engine: str | None = None) -> None:
        self.name = name
        self.engine = engine
        scope = f" for engine {engine}" if engine else ""
        super().__init__(f'Container "{name}" not found{scope}')


class UnknownEngineError(ProvisionerError):
    """Raised when an engine id has no registered descriptor."""

    def __init__(self, engine: str) -> None:
        self.engine = engine
        super().__init__(f'Unknown engine "{engine}"')


class PathAlreadyRegisteredError(ProvisionerError):
    """Raised when a database file is already tracked by another container."""

    def __init__(self, file_path: Path, owner: str) -> None:
        self.file_path = file_path
        self.owner = owner
        super().__init__(f'File {file_path} is already registered as container "{owner}"')


class PrimaryDatabaseError(ProvisionerError):
    """Raised when removing the primary database from tracking."""

    def __init__(self, database: str) -> None:
        self.database = database
        super().__init__(f'Cannot remove primary database "{database}" from tracking')


# =============================================================================
# Preconditions
# =============================================================================


class ContainerRunningError(ProvisionerError):
    """Raised when an operation requires a stopped container."""

    def __init__(self, name: str, operation: str, allow_force: bool = False) -> None:
        self.name = name
        self.operation = operation
        hint = "stop it first or pass force=True" if allow_force else "stop it first"
        super().__init__(f'Container "{name}" is running; cannot {operation}', hint=hint)


# =============================================================================
# Filesystem
# =============================================================================


class DestinationExistsError(ProvisionerError):
    """Raised when a move or copy target already exists."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Destination already exists: {path}")


class AmbiguousMoveError(ProvisionerError):
    """Raised when a cross-volume move copied but could not remove the source.

    The destination copy has been rolled back; the source may be partially
    deleted, so both paths should be inspected.
    """

    def __init__(self, source: Path, destination: Path, cause: BaseException) -> None:
        self.source = source
        self.destination = destination
        self.cause = cause
        super().__init__(
            f"Ambiguous move from {source} to {destination}: both paths may exist",
            hint=f"source removal failed with {type(cause).__name__}: {cause}",
        )


# =============================================================================
# Ports and locks
# =============================================================================


class NoPortAvailableError(ProvisionerError):
    """Raised when a port range is exhausted."""

    def __init__(self, start: int, end: int) -> None:
        self.start = start
        self.end = end
        super().__init__(f"No available ports found in range {start}-{end}")


class LockTimeoutError(ProvisionerError):
    """Raised when the registry lock cannot be acquired in time."""

    def __init__(self, lock_path: Path, timeout_ms: int) -> None:
        self.lock_path = lock_path
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Timed out after {timeout_ms}ms waiting for registry lock {lock_path}",
            hint="another process is mutating the registry; retry shortly",
        )


# =============================================================================
# Provisioning
# =============================================================================


class UnsupportedPlatformError(ProvisionerError):
    """Raised when an engine publishes no binaries for a platform/arch."""

    def __init__(self, engine: str, platform: str, arch: str, supported: list[str]) -> None:
        self.engine = engine
        self.platform = platform
        self.arch = arch
        super().__init__(
            f"Unsupported platform for {engine}: {platform}-{arch}",
            hint=f"binaries are published for: {', '.join(supported)}",
        )


class DownloadError(ProvisionerError):
    """Raised when an archive download fails."""

    def __init__(self, message: str, url: str | None = None, status: int | None = None, hint: str | None = None) -> None:
        self.url = url
        self.status = status
        super().__init__(message, hint=hint)


class VersionRetiredError(DownloadError):
    """Raised when the registry answers 404 for a version archive."""

    def __init__(self, engine: str, version: str, url: str) -> None:
        self.engine = engine
        self.version = version
        super().__init__(
            f"{engine} {version} binaries not found (404); the version was likely retired upstream",
            url=url,
            status=404,
            hint="try a different version or refresh the available versions list",
        )


class ExtractionError(ProvisionerError):
    """Raised when an archive cannot be extracted."""


class BinaryNotInstalledError(ProvisionerError):
    """Raised when the expected executable is absent."""

    def __init__(self, engine: str, version: str, path: Path) -> None:
        self.engine = engine
        self.version = version
        self.path = path
        super().__init__(f"{engine} {version} binary not found at {path}")


class VerificationError(ProvisionerError):
    """Raised when an installed binary cannot be verified."""


class VersionMismatchError(VerificationError):
    """Raised when a binary reports a version other than the one requested."""

    def __init__(self, engine: str, expected: str, reported: str) -> None:
        self.engine = engine
        self.expected = expected
        self.reported = reported
        super().__init__(f"{engine} version mismatch: expected {expected}, got {reported}")


# =============================================================================
# Version metadata
# =============================================================================


class ReleaseIndexError(ProvisionerError):
    """Raised when every release index source fails."""


__all__ = [
    "ProvisionerError",
    "InvalidContainerNameError",
    "ContainerExistsError",
    "ContainerNotFoundError",
    "UnknownEngineError",
    "PathAlreadyRegisteredError",
    "PrimaryDatabaseError",
    "ContainerRunningError",
    "DestinationExistsError",
    "AmbiguousMoveError",
    "NoPortAvailableError",
    "LockTimeoutError",
    "UnsupportedPlatformError",
    "DownloadError",
    "VersionRetiredError",
    "ExtractionError",
    "BinaryNotInstalledError",
    "VerificationError",
    "VersionMismatchError",
    "ReleaseIndexError",
]
