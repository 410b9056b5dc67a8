"""Pytest configuration and fixtures for db_provisioner tests."""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from prometheus_client import CollectorRegistry

from db_provisioner.infrastructure.config import (
    Config,
    DownloadConfig,
    FilesystemConfig,
    LockConfig,
    PathsConfig,
)
from db_provisioner.infrastructure.container import Container, reset_container
from db_provisioner.infrastructure.metrics import MetricsRegistry

PRIMARY_REGISTRY = "https://registry.example.test"
MIRROR_REGISTRY = "https://mirror.example.test/releases/download"


class FakeLiveness:
    """Liveness oracle driven by a set of (engine, name) pairs."""

    def __init__(self, delay: float = 0.0) -> None:
        self.running: set[tuple[str, str]] = set()
        self.delay = delay
        self.calls = 0

    def start(self, name: str, engine: str = "postgresql") -> None:
        self.running.add((engine, name))

    def stop(self, name: str, engine: str = "postgresql") -> None:
        self.running.discard((engine, name))

    async def is_running(self, name: str, engine: str) -> bool:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return (engine, name) in self.running


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def test_config(temp_dir: Path) -> Config:
    """Provide a test configuration rooted in a temporary directory."""
    config = Config(
        paths=PathsConfig(root_dir=temp_dir / "root"),
        filesystem=FilesystemConfig(
            retry_interval_seconds=0.01,
            unix_max_attempts=3,
            windows_max_attempts=3,
        ),
        download=DownloadConfig(
            primary_registry_url=PRIMARY_REGISTRY,
            mirror_registry_url=MIRROR_REGISTRY,
            primary_index_url=f"{PRIMARY_REGISTRY}/releases.json",
            mirror_index_url=f"{MIRROR_REGISTRY}/releases.json",
            download_timeout_seconds=10,
            index_timeout_seconds=2,
            verify_timeout_seconds=10,
        ),
        lock=LockConfig(retry_interval_ms=5, timeout_ms=2000, stale_after_ms=10000),
    )
    config.ensure_directories()
    return config


@pytest.fixture
def collector_registry() -> CollectorRegistry:
    return CollectorRegistry(auto_describe=True)


@pytest.fixture
def metrics_registry(collector_registry: CollectorRegistry) -> MetricsRegistry:
    """Provide a fresh metrics registry for each test."""
    # Separate registry to avoid duplicate-collector conflicts between tests
    return MetricsRegistry(registry=collector_registry)


@pytest.fixture
def liveness() -> FakeLiveness:
    return FakeLiveness()


@pytest.fixture
def container() -> Generator[Container, None, None]:
    """Provide a fresh DI container for each test."""
    reset_container()
    c = Container()
    yield c
    c.clear()


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
