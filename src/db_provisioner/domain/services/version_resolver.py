"""Version metadata resolver service."""

from __future__ import annotations

import asyncio
import functools
from typing import Awaitable, Callable, Mapping, Sequence

from db_provisioner.domain.entities.versions import VersionCacheEntry
from db_provisioner.domain.errors import ProvisionerError
from db_provisioner.domain.value_objects.versions import (
    GroupingStrategy,
    MajorVersionFn,
    group_by_major,
    major_version,
    placeholder_version,
    sort_descending,
)
from db_provisioner.infrastructure.logging import get_logger
from db_provisioner.infrastructure.metrics import MetricsRegistry, get_metrics
from db_provisioner.ports.outbound import ReleaseIndexSource

ListInstalledFn = Callable[[], Awaitable[Sequence[str]]]


class VersionResolver:
    """Answers "which versions of this engine exist?".

    Three tiers, each consulted only when the previous one yields nothing:
    - the remote release index (primary, then mirror)
    - locally installed binaries
    - the engine's static version map

    Results are cached in memory for a short TTL. Concurrent callers during
    a cache miss share one resolution task.
    """

    def __init__(
        self,
        engine: str,
        index_source: ReleaseIndexSource,
        list_installed: ListInstalledFn,
        version_map: Mapping[str, str],
        supported_majors: Sequence[str],
        grouping: GroupingStrategy = GroupingStrategy.SINGLE,
        major_version_fn: MajorVersionFn | None = None,
        ttl_seconds: float = 30.0,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            engine: Engine id.
            index_source: Remote release index.
            list_installed: Coroutine listing installed full versions.
            version_map: Static major/minor/exact -> full version table.
            supported_majors: Majors the engine supports.
            grouping: Default major-version grouping strategy.
            major_version_fn: Override for engines with irregular majors.
            ttl_seconds: Cache lifetime.
            metrics: Metrics registry (default: global).
        """
        self._engine = engine
        self._index = index_source
        self._list_installed = list_installed
        self._version_map = dict(version_map)
        self._supported_majors = list(supported_majors)
        self._grouping = grouping
        self._major_fn = major_version_fn or functools.partial(major_version, strategy=grouping)
        self._ttl = ttl_seconds
        self._metrics = metrics or get_metrics()
        self._cache: VersionCacheEntry | None = None
        self._inflight: asyncio.Task[dict[str, list[str]]] | None = None
        self._logger = get_logger(__name__, engine=engine)

    @property
    def engine(self) -> str:
        return self._engine

    async def fetch_available_versions(self) -> dict[str, list[str]]:
        """Map each major version to its full versions, newest first."""
        if self._cache is not None and self._cache.is_fresh(self._ttl):
            return self._cache.versions

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._resolve())
            self._inflight.add_done_callback(self._clear_inflight)
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task[dict[str, list[str]]]) -> None:
        # Cleared on success and failure alike, so a failed fetch is retried
        if self._inflight is task:
            self._inflight = None

    async def _resolve(self) -> dict[str, list[str]]:
        versions = await self._from_remote()
        source = "remote"
        if not versions:
            versions = await self._from_installed()
            source = "installed"
        if not versions:
            versions = self._from_static_map()
            source = "hardcoded"

        self._metrics.version_fetch_total.labels(engine=self._engine, source=source).inc()
        self._cache = VersionCacheEntry(versions=versions)
        return versions

    async def _from_remote(self) -> dict[str, list[str]]:
        try:
            published = await self._index.versions_for(self._engine)
        except ProvisionerError as exc:
            self._logger.debug("release index unavailable, trying installed versions", error=str(exc))
            return {}
        return group_by_major(published, self._major_fn)

    async def _from_installed(self) -> dict[str, list[str]]:
        try:
            installed = await self._list_installed()
        except OSError as exc:
            self._logger.debug("could not list installed versions", error=str(exc))
            return {}
        if installed:
            self._logger.debug("using installed versions", count=len(installed))
        return group_by_major(installed, self._major_fn)

    def _from_static_map(self) -> dict[str, list[str]]:
        self._logger.debug("using static version map")
        grouped: dict[str, list[str]] = {}
        for major in self._supported_majors:
            full = self._version_map.get(major)
            if full:
                grouped[major] = [full]
        return grouped

    async def get_latest_version(self, major: str) -> str:
        """Newest known full version of a major.

        Falls back to the static map, then to a synthesized major.0[.0].
        """
        try:
            versions = await self.fetch_available_versions()
        except ProvisionerError as exc:
            self._logger.debug("version resolution failed", error=str(exc))
            versions = {}
        candidates = versions.get(major)
        if candidates:
            return sort_descending(candidates)[0]
        mapped = self._version_map.get(major)
        if mapped:
            return mapped
        return placeholder_version(major, self._grouping)

    def invalidate(self) -> None:
        """Drop the cached versions."""
        self._cache = None
