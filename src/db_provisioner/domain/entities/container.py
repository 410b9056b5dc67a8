"""Container configuration and file-engine registry entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


class ContainerStatus(Enum):
    """Container lifecycle status.

    Server engines move between RUNNING and STOPPED as reported by the
    liveness oracle; CREATED is only what gets persisted. File-based
    engines are AVAILABLE or MISSING depending on their file. LINKED is
    terminal and persisted for remote containers.
    """
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"
    LINKED = "linked"
    AVAILABLE = "available"
    MISSING = "missing"


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class RemoteConnection:
    """Remote server a linked container points at (no secrets stored)."""
    host: str
    port: int
    database: str
    user: str | None = None
    connection_string: str | None = None  # Redacted display form
    linked_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "linkedAt": self.linked_at,
        }
        if self.user is not None:
            data["user"] = self.user
        if self.connection_string is not None:
            data["connectionString"] = self.connection_string
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteConnection:
        return cls(
            host=data["host"],
            port=int(data["port"]),
            database=data["database"],
            user=data.get("user"),
            connection_string=data.get("connectionString"),
            linked_at=data.get("linkedAt", utc_now_iso()),
        )


# Keys written by ContainerConfig.to_dict(); anything else is carried in `extra`.
_KNOWN_KEYS = frozenset(
    {
        "name",
        "engine",
        "version",
        "port",
        "database",
        "databases",
        "created",
        "status",
        "clonedFrom",
        "binaryPath",
        "remote",
        "filePath",
    }
)


@dataclass
class ContainerConfig:
    """Persisted configuration of one container.

    Invariant (after normalize()): databases[0] == database.
    """
    name: str
    engine: str
    version: str
    port: int
    database: str
    databases: list[str] = field(default_factory=list)
    created: str = field(default_factory=utc_now_iso)
    status: ContainerStatus = ContainerStatus.CREATED
    cloned_from: str | None = None
    binary_path: str | None = None
    remote: RemoteConnection | None = None
    file_path: Path | None = None  # File-based engines only
    extra: dict[str, Any] = field(default_factory=dict)

    def normalize(self) -> bool:
        """Repair the databases list so the primary is present and first.

        Returns:
            True if anything changed.
        """
        if not self.databases:
            self.databases = [self.database]
            return True
        if self.databases[0] == self.database:
            return False
        self.databases = [self.database, *(db for db in self.databases if db != self.database)]
        return True

    def is_linked(self) -> bool:
        return self.status == ContainerStatus.LINKED

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the container.json wire names."""
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "name": self.name,
                "engine": self.engine,
                "version": self.version,
                "port": self.port,
                "database": self.database,
                "databases": list(self.databases),
                "created": self.created,
                "status": self.status.value,
            }
        )
        if self.cloned_from is not None:
            data["clonedFrom"] = self.cloned_from
        if self.binary_path is not None:
            data["binaryPath"] = self.binary_path
        if self.remote is not None:
            data["remote"] = self.remote.to_dict()
        if self.file_path is not None:
            data["filePath"] = str(self.file_path)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContainerConfig:
        """Parse a container.json document.

        Older documents may lack `databases`; call normalize() afterwards.
        """
        remote = data.get("remote")
        file_path = data.get("filePath")
        return cls(
            name=data["name"],
            engine=data["engine"],
            version=str(data.get("version", "")),
            port=int(data.get("port", 0)),
            database=data["database"],
            databases=list(data.get("databases") or []),
            created=data.get("created") or utc_now_iso(),
            status=ContainerStatus(data.get("status", ContainerStatus.CREATED.value)),
            cloned_from=data.get("clonedFrom"),
            binary_path=data.get("binaryPath"),
            remote=RemoteConnection.from_dict(remote) if remote else None,
            file_path=Path(file_path) if file_path else None,
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )


@dataclass
class FileRegistryEntry:
    """One tracked database file of a file-based engine."""
    name: str
    file_path: Path  # Absolute
    created: str = field(default_factory=utc_now_iso)
    last_verified: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "filePath": str(self.file_path),
            "created": self.created,
        }
        if self.last_verified is not None:
            data["lastVerified"] = self.last_verified
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileRegistryEntry:
        return cls(
            name=data["name"],
            file_path=Path(data["filePath"]),
            created=data.get("created") or utc_now_iso(),
            last_verified=data.get("lastVerified"),
        )


@dataclass
class FileEngineRegistry:
    """Registry document of one file-based engine."""
    version: int = 1
    entries: list[FileRegistryEntry] = field(default_factory=list)
    ignore_folders: dict[str, bool] = field(default_factory=dict)  # A set, as a JSON object

    def find(self, name: str) -> FileRegistryEntry | None:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def find_by_path(self, file_path: Path) -> FileRegistryEntry | None:
        for entry in self.entries:
            if entry.file_path == file_path:
                return entry
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "entries": [entry.to_dict() for entry in self.entries],
            "ignoreFolders": dict(self.ignore_folders),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> FileEngineRegistry:
        if not data:
            return cls()
        return cls(
            version=int(data.get("version", 1)),
            entries=[FileRegistryEntry.from_dict(e) for e in data.get("entries", [])],
            ignore_folders=dict(data.get("ignoreFolders") or {}),
        )
