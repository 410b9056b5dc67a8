"""Built-in engine catalog.

Each engine is described by two small objects: an EngineCapability (the
strategy the provisioning pipeline and version resolver run against) and
an EngineDefaults descriptor (what the container registry needs: port
range, file-based or not, database listing and config regeneration
hooks). Adding an engine means adding one catalog entry.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping

from db_provisioner.domain.entities.binary import (
    SUPPORTED_TARGETS,
    Arch,
    Platform,
    archive_extension,
)
from db_provisioner.domain.entities.container import ContainerConfig
from db_provisioner.domain.errors import UnknownEngineError
from db_provisioner.domain.value_objects.versions import GroupingStrategy, MajorVersionFn, major_version
from db_provisioner.ports.outbound import PortRange

_GENERIC_VERSION_RE = re.compile(r"(\d+\.\d+\.\d+(?:\.\d+)?)")


@dataclass(frozen=True)
class EngineCapability:
    """Binary capability of one engine (implements BinaryCapability)."""
    engine: str
    display_name: str
    server_binary: str
    version_map: Mapping[str, str]
    supported_majors: tuple[str, ...]
    grouping: GroupingStrategy = GroupingStrategy.SINGLE
    version_pattern: re.Pattern[str] | None = None
    can_probe_version: bool = True
    version_args: tuple[str, ...] = ("--version",)
    targets: tuple[tuple[Platform, Arch], ...] = SUPPORTED_TARGETS
    major_version_fn: MajorVersionFn | None = None

    @property
    def supported_platforms(self) -> list[str]:
        return [f"{p.value}-{a.value}" for p, a in self.targets]

    def supports(self, platform: Platform, arch: Arch) -> bool:
        return (platform, arch) in self.targets

    def resolve_version(self, requested: str) -> str:
        return self.version_map.get(requested, requested)

    def major_version(self, version: str) -> str:
        if self.major_version_fn is not None:
            return self.major_version_fn(version)
        return major_version(version, self.grouping)

    def build_download_url(self, version: str, platform: Platform, arch: Arch, base_url: str) -> str:
        tag = f"{self.engine}-{version}"
        filename = f"{tag}-{platform.value}-{arch.value}.{archive_extension(platform)}"
        return f"{base_url.rstrip('/')}/{tag}/{filename}"

    def parse_version_output(self, output: str) -> str | None:
        if self.version_pattern is not None:
            match = self.version_pattern.search(output)
            if match:
                return match.group(1)
        match = _GENERIC_VERSION_RE.search(output)
        return match.group(1) if match else None


@dataclass(frozen=True)
class EngineDefaults:
    """Registry-facing engine descriptor (implements EngineDescriptor).

    Database listing and config regeneration need a live engine plugin;
    these defaults report the tracked databases and leave configs alone.
    """
    engine: str
    default_port: int = 0
    port_range: PortRange | None = None
    file_extensions: tuple[str, ...] = ()
    file_based: bool = False

    async def list_databases(self, config: ContainerConfig) -> list[str]:
        return list(config.databases or [config.database])

    async def regenerate_config(self, name: str, port: int) -> None:
        return None


def mysql_major_version(version: str) -> str:
    """MySQL groups 5.x/8.x by X.Y (8.0, 8.4) and the innovation track by X (9)."""
    parts = version.split(".")
    if parts[0].isdigit() and int(parts[0]) >= 9:
        return parts[0]
    return ".".join(parts[:2])


@dataclass(frozen=True)
class EngineEntry:
    capability: EngineCapability
    defaults: EngineDefaults


def _entry(
    engine: str,
    display_name: str,
    server_binary: str,
    version_map: dict[str, str],
    supported_majors: tuple[str, ...],
    *,
    port: int = 0,
    port_range: tuple[int, int] | None = None,
    file_extensions: tuple[str, ...] = (),
    **capability: object,
) -> EngineEntry:
    return EngineEntry(
        capability=EngineCapability(
            engine=engine,
            display_name=display_name,
            server_binary=server_binary,
            version_map=version_map,
            supported_majors=supported_majors,
            **capability,  # type: ignore[arg-type]
        ),
        defaults=EngineDefaults(
            engine=engine,
            default_port=port,
            port_range=PortRange(*port_range) if port_range else None,
            file_extensions=file_extensions,
            file_based=bool(file_extensions),
        ),
    )


BUILTIN_ENGINES: dict[str, EngineEntry] = {
    entry.capability.engine: entry
    for entry in (
        _entry(
            "postgresql",
            "PostgreSQL",
            "postgres",
            {"14": "14.20.0", "15": "15.15.0", "16": "16.11.0", "17": "17.7.0", "18": "18.1.0"},
            ("14", "15", "16", "17", "18"),
            port=5432,
            port_range=(5432, 5500),
            version_pattern=re.compile(r"postgres \(PostgreSQL\) ([\d.]+)"),
        ),
        _entry(
            "mysql",
            "MySQL",
            "mysqld",
            {"8.0": "8.0.40", "8.4": "8.4.3", "9": "9.1.0"},
            ("8.0", "8.4", "9"),
            port=3306,
            port_range=(3306, 3400),
            grouping=GroupingStrategy.XY,
            major_version_fn=mysql_major_version,
            version_pattern=re.compile(r"Ver\s+([\d.]+)"),
        ),
        _entry(
            "mariadb",
            "MariaDB",
            "mariadbd",
            {"11.8": "11.8.5"},
            ("11.8",),
            port=3307,
            port_range=(3307, 3400),
            grouping=GroupingStrategy.XY,
            version_pattern=re.compile(r"Ver\s+([\d.]+)"),
        ),
        _entry(
            "mongodb",
            "MongoDB",
            "mongod",
            {"7.0": "7.0.28", "8.0": "8.0.17", "8.2": "8.2.3"},
            ("7.0", "8.0", "8.2"),
            port=27017,
            port_range=(27017, 27100),
            grouping=GroupingStrategy.XY,
            version_pattern=re.compile(r"db version v(\d+\.\d+\.\d+)"),
        ),
        _entry(
            "redis",
            "Redis",
            "redis-server",
            {"7": "7.4.7", "8": "8.4.0", "7.4": "7.4.7", "8.4": "8.4.0", "7.4.7": "7.4.7", "8.4.0": "8.4.0"},
            ("7", "8"),
            port=6379,
            port_range=(6379, 6400),
            version_pattern=re.compile(r"v=(\d+\.\d+\.\d+)"),
        ),
        _entry(
            "valkey",
            "Valkey",
            "valkey-server",
            {"8": "8.0.6", "9": "9.0.1", "8.0": "8.0.6", "9.0": "9.0.1", "8.0.6": "8.0.6", "9.0.1": "9.0.1"},
            ("8", "9"),
            port=6379,
            port_range=(6379, 6400),
            version_pattern=re.compile(r"v=(\d+\.\d+\.\d+)"),
        ),
        _entry(
            "clickhouse",
            "ClickHouse",
            "clickhouse",
            {"25": "25.12.3.21", "25.12": "25.12.3.21", "25.12.3": "25.12.3.21", "25.12.3.21": "25.12.3.21"},
            ("25.12",),
            port=9000,
            port_range=(9000, 9100),
            grouping=GroupingStrategy.XY,
            version_args=("client", "--version"),
            version_pattern=re.compile(r"version\s+(\d+\.\d+\.\d+\.\d+)"),
            targets=(
                (Platform.DARWIN, Arch.ARM64),
                (Platform.DARWIN, Arch.X64),
                (Platform.LINUX, Arch.ARM64),
                (Platform.LINUX, Arch.X64),
            ),
        ),
        _entry(
            "questdb",
            "QuestDB",
            "questdb.sh",
            {"9": "9.2.3", "9.2": "9.2.3", "9.2.3": "9.2.3"},
            ("9",),
            port=8812,
            port_range=(8812, 8900),
            # Java launcher script; invoking it starts a server
            can_probe_version=False,
        ),
        _entry(
            "sqlite",
            "SQLite",
            "sqlite3",
            {"3": "3.51.2", "3.51": "3.51.2"},
            ("3",),
            file_extensions=(".sqlite", ".sqlite3", ".db"),
            version_pattern=re.compile(r"^(\d+\.\d+\.\d+)"),
        ),
        _entry(
            "duckdb",
            "DuckDB",
            "duckdb",
            {"1": "1.4.3", "1.4": "1.4.3", "1.4.3": "1.4.3"},
            ("1",),
            file_extensions=(".duckdb", ".ddb"),
            version_pattern=re.compile(r"v?(\d+\.\d+\.\d+)"),
        ),
    )
}


def get_engine(engine: str) -> EngineEntry:
    """Look up a built-in engine.

    Raises:
        UnknownEngineError: If the engine is not in the catalog.
    """
    try:
        return BUILTIN_ENGINES[engine.lower()]
    except KeyError:
        raise UnknownEngineError(engine) from None
