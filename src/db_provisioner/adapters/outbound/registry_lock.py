"""Presence-based cross-process lock for the shared registry document.

The lock is a marker file created with O_CREAT | O_EXCL next to the
document it guards. Acquisition retries on a short interval up to a
timeout; a marker older than the staleness threshold is treated as
abandoned by a crashed process and force-removed, which bounds the
worst-case wait without a cleanup daemon or exit handlers.

The lock is not reentrant.
"""

from __future__ import annotations

import asyncio
import os
import time
import uuid
from pathlib import Path
from types import TracebackType

from db_provisioner.domain.entities.lock import LockMarker
from db_provisioner.domain.errors import LockTimeoutError
from db_provisioner.infrastructure.config import LockConfig
from db_provisioner.infrastructure.logging import get_logger
from db_provisioner.infrastructure.metrics import MetricsRegistry, get_metrics

logger = get_logger(__name__)


class RegistryLock:
    """Exclusive lock guarding a shared on-disk document."""

    def __init__(
        self,
        lock_path: Path,
        config: LockConfig | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the lock.

        Args:
            lock_path: Marker file path.
            config: Retry interval, timeout and staleness threshold.
            metrics: Metrics registry (default: global).
        """
        self._path = lock_path
        self._config = config or LockConfig()
        self._metrics = metrics or get_metrics()
        self._marker: LockMarker | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._marker is not None

    async def acquire(self) -> LockMarker:
        """Acquire the lock.

        Returns:
            The marker written for this holder.

        Raises:
            LockTimeoutError: If the lock stays held past the timeout.
        """
        started = time.monotonic()
        deadline = started + self._config.timeout_ms / 1000
        interval = self._config.retry_interval_ms / 1000
        self._path.parent.mkdir(parents=True, exist_ok=True)

        while True:
            marker = LockMarker()
            if self._try_create(marker):
                self._marker = marker
                self._metrics.registry_lock_wait_seconds.observe(time.monotonic() - started)
                return marker
            if self._reclaim_if_stale():
                continue
            if time.monotonic() >= deadline:
                raise LockTimeoutError(self._path, self._config.timeout_ms)
            await asyncio.sleep(interval)

    async def release(self) -> None:
        """Release the lock.

        Removal is best-effort: a failure is logged, and a marker that a
        stale-reclaim handed to another holder is left alone.
        """
        marker, self._marker = self._marker, None
        if marker is None:
            return
        try:
            current = LockMarker.loads(self._path.read_text(encoding="utf-8"))
            if current.holder != marker.holder:
                logger.warning("registry lock was reclaimed by another holder", path=str(self._path))
                return
            self._path.unlink()
        except FileNotFoundError:
            logger.warning("registry lock marker already removed", path=str(self._path))
        except (OSError, ValueError, KeyError) as exc:
            logger.warning("failed to release registry lock", path=str(self._path), error=str(exc))

    async def __aenter__(self) -> LockMarker:
        return await self.acquire()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.release()

    def _try_create(self, marker: LockMarker) -> bool:
        try:
            fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(marker.dumps())
        return True

    @staticmethod
    def _inspect(path: Path) -> tuple[str | None, float] | None:
        """Holder and age (ms) of a marker file, or None if it is gone.

        An unreadable or half-written marker has no holder and is aged by
        its mtime.
        """
        try:
            marker = LockMarker.loads(path.read_text(encoding="utf-8"))
            return marker.holder, marker.age_ms()
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError):
            try:
                return None, (time.time() - path.stat().st_mtime) * 1000
            except FileNotFoundError:
                return None

    def _reclaim_if_stale(self) -> bool:
        """Remove an abandoned marker.

        The marker is first renamed to a unique tombstone, so a fresh marker
        created after the age check is never deleted: if the tombstone holds
        a different holder than the one judged stale (or a fresh age), it is
        linked back.

        Returns:
            True if the marker is gone (removed or released meanwhile).
        """
        observed = self._inspect(self._path)
        if observed is None:
            return True
        stale_holder, age_ms = observed
        if age_ms <= self._config.stale_after_ms:
            return False

        tombstone = self._path.with_name(f"{self._path.name}.{uuid.uuid4().hex}.stale")
        try:
            os.rename(self._path, tombstone)
        except FileNotFoundError:
            return True
        try:
            claimed = self._inspect(tombstone)
            if claimed is not None and (claimed[0] != stale_holder or claimed[1] <= self._config.stale_after_ms):
                self._restore(tombstone)
                return False
        finally:
            tombstone.unlink(missing_ok=True)

        logger.warning("reclaimed stale registry lock", path=str(self._path), age_ms=round(age_ms))
        self._metrics.registry_lock_reclaims_total.inc()
        return True

    def _restore(self, tombstone: Path) -> None:
        try:
            os.link(tombstone, self._path)
        except FileExistsError:
            logger.warning("fresh registry lock displaced during stale reclaim", path=str(self._path))
        except OSError as exc:
            logger.error("failed to restore registry lock marker", path=str(self._path), error=str(exc))
