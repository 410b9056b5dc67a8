"""HTTP client for the upstream release index (releases.json).

The index lists every published version per engine with its platform
archives:

    {"databases": {"postgresql": {"17.7.0": {"version": "17.7.0",
                                              "platforms": {"linux-x64": {...}}}}}}

It is fetched from the primary registry and falls back to the mirror,
cached for a few minutes, and concurrent fetches share one request.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import httpx

from db_provisioner.domain.errors import ReleaseIndexError
from db_provisioner.infrastructure.config import DownloadConfig, VersionCacheConfig
from db_provisioner.infrastructure.logging import get_logger

logger = get_logger(__name__)

HttpClientFactory = Callable[[float], httpx.AsyncClient]


def default_http_client(timeout: float) -> httpx.AsyncClient:
    """Create the HTTP client used for registry traffic."""
    return httpx.AsyncClient(timeout=timeout, follow_redirects=True)


class ReleaseIndexClient:
    """Cached, coalesced access to releases.json."""

    def __init__(
        self,
        config: DownloadConfig | None = None,
        cache_config: VersionCacheConfig | None = None,
        http_client_factory: HttpClientFactory = default_http_client,
    ) -> None:
        self._config = config or DownloadConfig()
        self._ttl = (cache_config or VersionCacheConfig()).index_ttl_seconds
        self._client_factory = http_client_factory
        self._document: dict[str, Any] | None = None
        self._fetched_at = 0.0
        self._inflight: asyncio.Task[dict[str, Any]] | None = None

    @property
    def urls(self) -> tuple[str, str]:
        return self._config.primary_index_url, self._config.mirror_index_url

    async def fetch(self) -> dict[str, Any]:
        """Return the index document, fetching it when the cache is stale.

        Raises:
            ReleaseIndexError: If both the primary and the mirror fail.
        """
        if self._document is not None and time.monotonic() - self._fetched_at < self._ttl:
            return self._document

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._fetch_uncached())
            self._inflight.add_done_callback(self._clear_inflight)
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task[dict[str, Any]]) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _fetch_uncached(self) -> dict[str, Any]:
        errors: list[str] = []
        async with self._client_factory(self._config.index_timeout_seconds) as client:
            for url in self.urls:
                try:
                    response = await client.get(url)
                    response.raise_for_status()
                    document = response.json()
                except (httpx.HTTPError, ValueError) as exc:
                    logger.debug("release index source failed", url=url, error=str(exc))
                    errors.append(f"{url}: {exc}")
                    continue
                if not isinstance(document, dict):
                    errors.append(f"{url}: unexpected document type")
                    continue
                self._document = document
                self._fetched_at = time.monotonic()
                return document
        raise ReleaseIndexError(
            "Failed to fetch the release index from all registries",
            hint="; ".join(errors),
        )

    async def versions_for(self, engine: str) -> list[str]:
        """List published versions of an engine that ship at least one platform archive.

        Raises:
            ReleaseIndexError: If the index cannot be fetched or is malformed.
        """
        document = await self.fetch()
        databases = document.get("databases") or {}
        if not isinstance(databases, dict):
            raise ReleaseIndexError("Malformed release index: \"databases\" is not an object")
        releases = databases.get(engine) or {}
        if not isinstance(releases, dict):
            raise ReleaseIndexError(f"Malformed release index: entry for {engine} is not an object")
        versions = []
        for key, release in releases.items():
            if not isinstance(release, dict) or not release.get("platforms"):
                continue
            versions.append(str(release.get("version") or key))
        return versions

    def invalidate(self) -> None:
        self._document = None
        self._fetched_at = 0.0
