"""Installed binary entities and provisioning stages."""

from __future__ import annotations

import platform as _platform
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable


class Platform(Enum):
    """Host operating system, named as in archive file names."""
    DARWIN = "darwin"
    LINUX = "linux"
    WIN32 = "win32"


class Arch(Enum):
    """Host CPU architecture, named as in archive file names."""
    ARM64 = "arm64"
    X64 = "x64"


# win32 builds are published for x64 only
SUPPORTED_TARGETS: tuple[tuple[Platform, Arch], ...] = (
    (Platform.DARWIN, Arch.ARM64),
    (Platform.DARWIN, Arch.X64),
    (Platform.LINUX, Arch.ARM64),
    (Platform.LINUX, Arch.X64),
    (Platform.WIN32, Arch.X64),
)


def host_platform() -> Platform:
    """Detect the running platform."""
    if sys.platform == "win32":
        return Platform.WIN32
    if sys.platform == "darwin":
        return Platform.DARWIN
    return Platform.LINUX


def host_arch() -> Arch:
    """Detect the running CPU architecture."""
    machine = _platform.machine().lower()
    if machine in ("arm64", "aarch64"):
        return Arch.ARM64
    return Arch.X64


def executable_suffix(platform: Platform) -> str:
    return ".exe" if platform == Platform.WIN32 else ""


def archive_extension(platform: Platform) -> str:
    return "zip" if platform == Platform.WIN32 else "tar.gz"


class InstallStage(Enum):
    """Provisioning state machine stages.

    NOT_INSTALLED -> DOWNLOADING -> EXTRACTING -> VERIFYING -> INSTALLED,
    or -> FAILED from any in-flight stage. CACHED is reported when an
    existing install short-circuits the pipeline.
    """
    NOT_INSTALLED = "not_installed"
    CACHED = "cached"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    VERIFYING = "verifying"
    INSTALLED = "installed"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    """Progress notification emitted by the provisioning pipeline."""
    stage: InstallStage
    message: str


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass(frozen=True)
class InstalledBinary:
    """One install directory: {engine}-{version}-{platform}-{arch}."""
    engine: str
    version: str
    platform: Platform
    arch: Arch

    @property
    def dir_name(self) -> str:
        return f"{self.engine}-{self.version}-{self.platform.value}-{self.arch.value}"

    @classmethod
    def parse_dir_name(cls, engine: str, dir_name: str) -> InstalledBinary | None:
        """Parse an install directory name for the given engine.

        Splits from the end so versions containing hyphens
        (e.g. "7.4.0-rc1") survive.

        Returns:
            The parsed binary, or None if the name does not belong to the engine.
        """
        prefix = f"{engine}-"
        if not dir_name.startswith(prefix):
            return None
        parts = dir_name[len(prefix):].split("-")
        if len(parts) < 3:
            return None
        arch_raw = parts.pop()
        platform_raw = parts.pop()
        version = "-".join(parts)
        if not version:
            return None
        try:
            return cls(engine, version, Platform(platform_raw), Arch(arch_raw))
        except ValueError:
            return None
