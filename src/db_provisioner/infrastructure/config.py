"""Configuration management for the database provisioner."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PathsConfig(BaseModel):
    """On-disk layout configuration."""

    root_dir: Path = Field(
        default_factory=lambda: Path.home() / ".db_provisioner",
        description="Root directory for binaries, containers and the shared config document",
    )

    @property
    def bin_dir(self) -> Path:
        """Directory holding installed engine binaries."""
        return self.root_dir / "bin"

    @property
    def containers_dir(self) -> Path:
        """Directory holding server-engine containers, one subdirectory per engine."""
        return self.root_dir / "containers"

    @property
    def config_file(self) -> Path:
        """Shared document holding the file-based engine registries."""
        return self.root_dir / "config.json"

    def engine_containers_dir(self, engine: str) -> Path:
        return self.containers_dir / engine

    def container_dir(self, name: str, engine: str) -> Path:
        return self.containers_dir / engine / name

    def container_config_file(self, name: str, engine: str) -> Path:
        return self.container_dir(name, engine) / "container.json"

    def container_data_dir(self, name: str, engine: str) -> Path:
        return self.container_dir(name, engine) / "data"


class FilesystemConfig(BaseModel):
    """Retry budget for busy-resource filesystem failures."""

    retry_interval_seconds: float = Field(default=0.5, gt=0, description="Delay between retries")
    unix_max_attempts: int = Field(default=10, ge=1, description="Attempts on darwin/linux")
    windows_max_attempts: int = Field(
        default=360, ge=1, description="Attempts on win32 (handles linger after process exit)"
    )


class PortsConfig(BaseModel):
    """Port allocation configuration."""

    host: str = Field(default="127.0.0.1", description="Interface used for bind probes")


class DownloadConfig(BaseModel):
    """Binary registry and download configuration."""

    primary_registry_url: str = Field(
        default="https://registry.layerbase.host", description="Primary archive registry"
    )
    mirror_registry_url: str = Field(
        default="https://github.com/robertjbass/hostdb/releases/download",
        description="Mirror archive registry",
    )
    primary_index_url: str = Field(
        default="https://registry.layerbase.host/releases.json",
        description="Primary release index",
    )
    mirror_index_url: str = Field(
        default="https://raw.githubusercontent.com/robertjbass/hostdb/main/releases.json",
        description="Mirror release index",
    )
    download_timeout_seconds: float = Field(default=300.0, gt=0, description="Overall download timeout")
    index_timeout_seconds: float = Field(default=5.0, gt=0, description="Release index fetch timeout")
    verify_timeout_seconds: float = Field(default=30.0, gt=0, description="Version probe timeout")


class VersionCacheConfig(BaseModel):
    """Version metadata cache configuration."""

    ttl_seconds: float = Field(default=30.0, ge=0, description="Per-engine grouped versions TTL")
    index_ttl_seconds: float = Field(default=300.0, ge=0, description="Release index document TTL")


class LockConfig(BaseModel):
    """Registry lock configuration."""

    retry_interval_ms: int = Field(default=50, ge=1, description="Acquire retry interval")
    timeout_ms: int = Field(default=5000, ge=1, description="Acquire timeout")
    stale_after_ms: int = Field(default=10000, ge=1, description="Marker age treated as abandoned")


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")
    otel_endpoint: str | None = Field(default=None)
    otel_service_name: str = Field(default="db_provisioner")
    metrics_port: int = Field(default=8003, ge=1, le=65535, description="Prometheus metrics port")


class Config(BaseSettings):
    """Main configuration for the database provisioner."""

    model_config = SettingsConfigDict(
        env_prefix="DB_PROVISIONER_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    paths: PathsConfig = Field(default_factory=PathsConfig)
    filesystem: FilesystemConfig = Field(default_factory=FilesystemConfig)
    ports: PortsConfig = Field(default_factory=PortsConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)
    version_cache: VersionCacheConfig = Field(default_factory=VersionCacheConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    def ensure_directories(self) -> None:
        """Ensure required directories exist."""
        self.paths.root_dir.mkdir(parents=True, exist_ok=True)
        self.paths.bin_dir.mkdir(parents=True, exist_ok=True)
        self.paths.containers_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    config = Config()
    config.ensure_directories()
    return config
