"""Version string comparison and major-version grouping."""

from __future__ import annotations

import functools
import re
from enum import Enum
from typing import Callable, Iterable

_SEGMENT_RE = re.compile(r"^(\d+)(.*)$")


class GroupingStrategy(Enum):
    """How full versions are grouped under a major version.

    SINGLE groups by the first dot-segment (17.7.0 -> 17), XY by the
    first two (8.0.40 -> 8.0).
    """
    SINGLE = "single"
    XY = "xy"


MajorVersionFn = Callable[[str], str]


def _parse_segment(segment: str) -> tuple[int, str]:
    # Non-numeric segments sort before numeric ones
    match = _SEGMENT_RE.match(segment)
    if not match:
        return -1, segment
    return int(match.group(1)), match.group(2)


def compare_versions(a: str, b: str) -> int:
    """Compare two dotted versions.

    Prerelease suffixes ("7.4.0-rc1") sort before the release they precede.

    Returns:
        Positive if a > b, negative if a < b, 0 if equal.
    """
    parts_a = a.split(".")
    parts_b = b.split(".")
    for i in range(max(len(parts_a), len(parts_b))):
        num_a, suffix_a = _parse_segment(parts_a[i] if i < len(parts_a) else "0")
        num_b, suffix_b = _parse_segment(parts_b[i] if i < len(parts_b) else "0")
        if num_a != num_b:
            return num_a - num_b
        if suffix_a != suffix_b:
            if suffix_a == "":
                return 1
            if suffix_b == "":
                return -1
            return -1 if suffix_a < suffix_b else 1
    return 0


def sort_descending(versions: Iterable[str]) -> list[str]:
    """Sort versions newest first."""
    return sorted(versions, key=functools.cmp_to_key(compare_versions), reverse=True)


def major_version(version: str, strategy: GroupingStrategy) -> str:
    """Extract the grouping key of a version."""
    parts = version.split(".")
    if strategy == GroupingStrategy.XY and len(parts) >= 2:
        return f"{parts[0]}.{parts[1]}"
    return parts[0]


def major_minor(version: str) -> str:
    """First two segments of a version ("17.7.2" -> "17.7")."""
    return ".".join(version.split(".")[:2])


def group_by_major(versions: Iterable[str], major_fn: MajorVersionFn) -> dict[str, list[str]]:
    """Group versions by major, each group deduplicated and sorted newest first."""
    grouped: dict[str, list[str]] = {}
    for version in versions:
        bucket = grouped.setdefault(major_fn(version), [])
        if version not in bucket:
            bucket.append(version)
    return {major: sort_descending(bucket) for major, bucket in grouped.items()}


def placeholder_version(major: str, strategy: GroupingStrategy) -> str:
    """Synthesize a full version when nothing is known about a major."""
    if strategy == GroupingStrategy.XY:
        return f"{major}.0"
    return f"{major}.0.0"
