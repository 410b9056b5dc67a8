"""Version metadata cache entity."""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass
class VersionCacheEntry:
    """Grouped upstream versions for one engine.

    versions maps a major version to its full versions, newest first.
    """
    versions: dict[str, list[str]]
    fetched_at: float = field(default_factory=time.monotonic)

    def is_fresh(self, ttl_seconds: float) -> bool:
        return time.monotonic() - self.fetched_at < ttl_seconds
