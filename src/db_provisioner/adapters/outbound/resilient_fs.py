"""Filesystem resilience layer.

Retrying primitives for directory removal and moves. Windows keeps file
handles open after a process exits (antivirus scanners, search indexers,
memory-mapped files), so "resource busy" failures are retried on a fixed
interval with a much larger budget there. Moves try an atomic rename first
and fall back to copy + delete across volumes.

Both retry loops go through resilient_operation(), parameterised by a
ResilientPolicy (retryable-error predicate, interval, attempt budget).
Retries block the calling coroutine only; nothing retries in the
background.
"""

from __future__ import annotations

import asyncio
import dataclasses
import errno
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

from db_provisioner.domain.entities.binary import Platform, host_platform
from db_provisioner.domain.errors import AmbiguousMoveError, DestinationExistsError
from db_provisioner.infrastructure.config import FilesystemConfig
from db_provisioner.infrastructure.logging import get_logger
from db_provisioner.infrastructure.metrics import get_metrics

T = TypeVar("T")

logger = get_logger(__name__)

# ERROR_SHARING_VIOLATION, ERROR_LOCK_VIOLATION
_WINDOWS_BUSY_CODES = frozenset({32, 33})


@dataclass(frozen=True)
class ResilientPolicy:
    """Retry policy for transient filesystem failures."""
    is_retryable: Callable[[BaseException], bool]
    interval_seconds: float
    max_attempts: int


def is_busy_error(exc: BaseException, platform: Platform | None = None) -> bool:
    """Check whether an error means a file or directory is still held open."""
    if not isinstance(exc, OSError):
        return False
    if getattr(exc, "winerror", None) in _WINDOWS_BUSY_CODES:
        return True
    if exc.errno in (errno.EBUSY, errno.ENOTEMPTY):
        return True
    if (platform or host_platform()) == Platform.WIN32:
        return exc.errno in (errno.EACCES, errno.EPERM)
    return False


def is_cross_device_error(exc: BaseException, platform: Platform | None = None) -> bool:
    """Check whether a rename failure should fall back to copy + delete.

    EXDEV is a rename across filesystems. Windows also reports EPERM for
    renames it refuses but a copy can still perform.
    """
    if not isinstance(exc, OSError):
        return False
    if exc.errno == errno.EXDEV:
        return True
    return (platform or host_platform()) == Platform.WIN32 and exc.errno == errno.EPERM


def default_busy_policy(
    platform: Platform | None = None,
    config: FilesystemConfig | None = None,
) -> ResilientPolicy:
    """Build the busy-resource policy for a platform.

    Args:
        platform: Target platform (default: host).
        config: Retry budget (default: FilesystemConfig defaults).

    Returns:
        Policy retrying busy errors every interval up to the platform budget.
    """
    platform = platform or host_platform()
    config = config or FilesystemConfig()
    max_attempts = config.windows_max_attempts if platform == Platform.WIN32 else config.unix_max_attempts
    return ResilientPolicy(
        is_retryable=lambda exc: is_busy_error(exc, platform),
        interval_seconds=config.retry_interval_seconds,
        max_attempts=max_attempts,
    )


async def resilient_operation(
    operation: Callable[[], Awaitable[T]],
    policy: ResilientPolicy,
    description: str,
) -> T:
    """Run an operation, retrying failures the policy deems transient.

    Args:
        operation: Zero-argument coroutine factory.
        policy: Retry policy.
        description: Operation name for logs and metrics.

    Returns:
        The operation's result.

    Raises:
        Exception: The last error once the budget is exhausted, or any
            non-retryable error immediately.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if not policy.is_retryable(exc) or attempt == policy.max_attempts:
                if attempt > 1:
                    logger.error(
                        "filesystem operation failed after retries",
                        operation=description,
                        attempts=attempt,
                        error=str(exc),
                    )
                raise
            get_metrics().fs_retries_total.labels(operation=description).inc()
            logger.warning(
                "filesystem resource busy, retrying",
                operation=description,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay=policy.interval_seconds,
                error=str(exc),
            )
            await asyncio.sleep(policy.interval_seconds)
    raise RuntimeError("Unexpected retry state")


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


async def remove_directory_recursively(path: Path, policy: ResilientPolicy | None = None) -> None:
    """Recursively delete a directory, retrying while it is busy.

    A missing path is not an error.
    """
    policy = policy or default_busy_policy()

    async def _remove() -> None:
        await asyncio.to_thread(_remove_path, path)

    await resilient_operation(_remove, policy, "remove")


async def copy_directory(src: Path, dst: Path) -> None:
    """Recursively copy a directory; dst must not exist."""
    if dst.exists():
        raise DestinationExistsError(dst)
    await asyncio.to_thread(shutil.copytree, src, dst, symlinks=True)


async def copy_file(src: Path, dst: Path) -> None:
    """Copy a file with metadata; dst must not exist."""
    if dst.exists():
        raise DestinationExistsError(dst)
    await asyncio.to_thread(shutil.copy2, src, dst)


async def _move(
    src: Path,
    dst: Path,
    policy: ResilientPolicy | None,
    copy: Callable[[Path, Path], Awaitable[None]],
) -> None:
    if dst.exists():
        raise DestinationExistsError(dst)
    policy = policy or default_busy_policy()
    # Cross-device errors go straight to the copy fallback, even where they
    # overlap with busy errors (EPERM on win32).
    rename_policy = dataclasses.replace(
        policy,
        is_retryable=lambda exc: policy.is_retryable(exc) and not is_cross_device_error(exc),
    )

    async def _rename() -> None:
        await asyncio.to_thread(os.rename, src, dst)

    try:
        await resilient_operation(_rename, rename_policy, "move")
        return
    except OSError as exc:
        if not is_cross_device_error(exc):
            raise
        logger.warning("rename crossed volumes, falling back to copy", src=str(src), dst=str(dst), error=str(exc))

    try:
        await copy(src, dst)
    except BaseException:
        await _rollback(dst, policy)
        raise

    try:
        await remove_directory_recursively(src, policy)
    except OSError as exc:
        await _rollback(dst, policy)
        raise AmbiguousMoveError(src, dst, exc) from exc


async def _rollback(dst: Path, policy: ResilientPolicy) -> None:
    try:
        await remove_directory_recursively(dst, policy)
    except OSError as exc:
        logger.error("rollback of partial copy failed", path=str(dst), error=str(exc))


async def move_directory(src: Path, dst: Path, policy: ResilientPolicy | None = None) -> None:
    """Move a directory, atomically where possible.

    Tries os.rename first. On a cross-volume failure, copies then deletes
    the source; if that delete fails the copy is rolled back and
    AmbiguousMoveError is raised, since two directories must never claim
    one container name.

    Raises:
        DestinationExistsError: If dst already exists.
        AmbiguousMoveError: If the source could not be removed after copying.
        OSError: If the move fails for any other reason.
    """
    await _move(src, dst, policy, copy_directory)


async def move_file(src: Path, dst: Path, policy: ResilientPolicy | None = None) -> None:
    """Move a single file with the same rename-then-copy fallback as move_directory()."""
    await _move(src, dst, policy, copy_file)
