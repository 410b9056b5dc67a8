"""Unit tests for the PID-file liveness oracle."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from db_provisioner.adapters.outbound.pid_liveness import PidFileLivenessOracle, read_pid
from db_provisioner.infrastructure.config import PathsConfig


@pytest.fixture
def oracle(temp_dir: Path) -> PidFileLivenessOracle:
    return PidFileLivenessOracle(PathsConfig(root_dir=temp_dir))


def _write_pid(oracle: PidFileLivenessOracle, name: str, engine: str, content: str) -> Path:
    pid_file = oracle.pid_file(name, engine)
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(content, encoding="utf-8")
    return pid_file


@pytest.mark.unit
class TestPidFileLivenessOracle:
    """Tests for PidFileLivenessOracle."""

    def test_pid_file_locations(self, oracle: PidFileLivenessOracle, temp_dir: Path) -> None:
        assert oracle.pid_file("pg1", "postgresql") == temp_dir / "containers" / "postgresql" / "pg1" / "data" / "postmaster.pid"
        assert oracle.pid_file("r1", "redis").name == "redis.pid"

    async def test_no_pid_file(self, oracle: PidFileLivenessOracle) -> None:
        assert await oracle.is_running("pg1", "postgresql") is False

    async def test_live_process(self, oracle: PidFileLivenessOracle) -> None:
        # postmaster.pid carries the PID on its first line, then data dir and more
        _write_pid(oracle, "pg1", "postgresql", f"{os.getpid()}\n/tmp/data\n1700000000\n5432\n")

        assert await oracle.is_running("pg1", "postgresql") is True

    async def test_stale_pid(self, oracle: PidFileLivenessOracle) -> None:
        _write_pid(oracle, "pg1", "postgresql", "999999999\n")

        assert await oracle.is_running("pg1", "postgresql") is False

    async def test_garbage_pid_file(self, oracle: PidFileLivenessOracle) -> None:
        _write_pid(oracle, "r1", "redis", "not-a-pid")

        assert await oracle.is_running("r1", "redis") is False

    def test_read_pid_empty(self, temp_dir: Path) -> None:
        empty = temp_dir / "empty.pid"
        empty.write_text("", encoding="utf-8")

        assert read_pid(empty) is None
