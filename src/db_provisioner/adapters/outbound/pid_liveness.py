"""Default liveness oracle: PID file + process table lookup.

Engine plugins that manage a server know best whether it is up; this
adapter covers the common case where the server writes a PID file inside
the container directory.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Mapping

import psutil

from db_provisioner.infrastructure.config import PathsConfig
from db_provisioner.infrastructure.logging import get_logger

logger = get_logger(__name__)

# PID file location relative to the container directory
DEFAULT_PID_FILES: dict[str, str] = {
    "postgresql": "data/postmaster.pid",
    "mysql": "data/mysql.pid",
    "mariadb": "data/mariadb.pid",
    "mongodb": "mongod.pid",
}


def read_pid(pid_file: Path) -> int | None:
    """Read the PID from the first line of a PID file."""
    try:
        first_line = pid_file.read_text(encoding="utf-8").splitlines()[0].strip()
        return int(first_line)
    except (FileNotFoundError, IndexError, ValueError):
        return None


class PidFileLivenessOracle:
    """Reports a container as running when its PID file names a live process."""

    def __init__(self, paths: PathsConfig, pid_files: Mapping[str, str] | None = None) -> None:
        self._paths = paths
        self._pid_files = dict(DEFAULT_PID_FILES if pid_files is None else pid_files)

    def pid_file(self, name: str, engine: str) -> Path:
        relative = self._pid_files.get(engine, f"{engine}.pid")
        return self._paths.container_dir(name, engine) / relative

    def _check(self, name: str, engine: str) -> bool:
        pid = read_pid(self.pid_file(name, engine))
        if pid is None or pid <= 0:
            return False
        alive = psutil.pid_exists(pid)
        if not alive:
            logger.debug("stale pid file", container=name, engine=engine, pid=pid)
        return alive

    async def is_running(self, name: str, engine: str) -> bool:
        return await asyncio.to_thread(self._check, name, engine)
