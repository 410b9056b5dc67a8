"""Unit tests for version comparison and grouping."""

from __future__ import annotations

import functools

import pytest

from db_provisioner.adapters.outbound.engine_capabilities import mysql_major_version
from db_provisioner.domain.value_objects.versions import (
    GroupingStrategy,
    compare_versions,
    group_by_major,
    major_minor,
    major_version,
    placeholder_version,
    sort_descending,
)


@pytest.mark.unit
class TestCompareVersions:
    """Tests for compare_versions."""

    @pytest.mark.parametrize(
        ("a", "b"),
        [
            ("17.7.0", "17.6.9"),
            ("17.10.0", "17.9.0"),
            ("8.4.0", "8.0.40"),
            ("7.4.0", "7.4.0-rc1"),
            ("25.12.3.21", "25.12.3"),
        ],
    )
    def test_greater(self, a: str, b: str) -> None:
        assert compare_versions(a, b) > 0
        assert compare_versions(b, a) < 0

    def test_equal_with_implicit_zero(self) -> None:
        assert compare_versions("17.7", "17.7.0") == 0

    def test_sort_descending(self) -> None:
        versions = ["17.5.0", "17.7.0", "7.4.0-rc1", "7.4.0", "17.10.1"]

        assert sort_descending(versions) == ["17.10.1", "17.7.0", "17.5.0", "7.4.0", "7.4.0-rc1"]


@pytest.mark.unit
class TestGrouping:
    """Tests for major-version grouping."""

    def test_single_strategy(self) -> None:
        assert major_version("17.7.0", GroupingStrategy.SINGLE) == "17"

    def test_xy_strategy(self) -> None:
        assert major_version("8.0.40", GroupingStrategy.XY) == "8.0"
        assert major_version("9", GroupingStrategy.XY) == "9"

    def test_mysql_innovation_track(self) -> None:
        assert mysql_major_version("8.4.3") == "8.4"
        assert mysql_major_version("9.1.0") == "9"

    def test_group_by_major_dedupes_and_sorts(self) -> None:
        major_fn = functools.partial(major_version, strategy=GroupingStrategy.SINGLE)

        grouped = group_by_major(["16.4.0", "17.5.0", "17.7.0", "17.5.0"], major_fn)

        assert grouped == {"16": ["16.4.0"], "17": ["17.7.0", "17.5.0"]}

    def test_major_minor(self) -> None:
        assert major_minor("17.7.2") == "17.7"
        assert major_minor("9") == "9"

    def test_placeholder(self) -> None:
        assert placeholder_version("17", GroupingStrategy.SINGLE) == "17.0.0"
        assert placeholder_version("8.0", GroupingStrategy.XY) == "8.0.0"
