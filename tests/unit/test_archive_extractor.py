"""Unit tests for archive extraction and install layout normalization."""

from __future__ import annotations

import io
import os
import shutil
import stat
import sys
import tarfile
import zipfile
from pathlib import Path

import pytest

from db_provisioner.adapters.outbound.archive_extractor import (
    extract_archive,
    extract_tar_gz,
    extract_zip,
    install_extracted,
    is_executable_name,
    make_executable,
)
from db_provisioner.domain.errors import ExtractionError

requires_tar = pytest.mark.skipif(shutil.which("tar") is None, reason="system tar not available")


def _build_tar_gz(path: Path, files: dict[str, bytes]) -> Path:
    with tarfile.open(path, "w:gz") as archive:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(content))
    return path


def _build_zip(path: Path, files: dict[str, bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return path


@pytest.mark.unit
class TestExecutableDetection:
    """Tests for is_executable_name."""

    @pytest.mark.parametrize("name", ["sqlite3", "duckdb", "redis-server", "sqlite3.exe", "libduckdb.dll"])
    def test_executables(self, name: str) -> None:
        assert is_executable_name(name, is_file=True)

    @pytest.mark.parametrize("name", ["LICENSE", "README", "libsqlite3.so", ".DS_Store", "duckdb.h", "Makefile"])
    def test_non_executables(self, name: str) -> None:
        assert not is_executable_name(name, is_file=True)

    def test_directories_are_not_executables(self) -> None:
        assert not is_executable_name("include", is_file=False)


@pytest.mark.unit
@requires_tar
class TestTarExtraction:
    """Tests for tar.gz extraction with the system tar."""

    async def test_extract_counts_files(self, temp_dir: Path) -> None:
        archive = _build_tar_gz(
            temp_dir / "pg.tar.gz",
            {"postgresql/bin/postgres": b"#!/bin/sh\n", "postgresql/share/README": b"docs"},
        )

        count = await extract_tar_gz(archive, temp_dir / "out")

        assert count == 2
        assert (temp_dir / "out" / "postgresql" / "bin" / "postgres").is_file()

    async def test_corrupt_archive(self, temp_dir: Path) -> None:
        archive = temp_dir / "broken.tar.gz"
        archive.write_bytes(b"definitely not gzip")

        with pytest.raises(ExtractionError):
            await extract_tar_gz(archive, temp_dir / "out")

    async def test_dispatch_by_extension(self, temp_dir: Path) -> None:
        archive = _build_tar_gz(temp_dir / "redis.tar.gz", {"redis/bin/redis-server": b"x"})

        assert await extract_archive(archive, temp_dir / "out") == 1


def _fake_tar(bin_dir: Path, body: str) -> None:
    bin_dir.mkdir()
    script = bin_dir / "tar"
    script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    script.chmod(0o755)


@pytest.mark.unit
@pytest.mark.skipif(sys.platform == "win32", reason="shell script stand-in for tar")
class TestTarNonZeroExit:
    """tar failing part-way through: tolerated only when files landed."""

    async def test_partial_extraction_accepted(self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        # invoked as: tar -xzf ARCHIVE -C DEST
        _fake_tar(
            temp_dir / "fakebin",
            'echo payload > "$4/postgres"\necho "tar: ._postgres: Cannot open" >&2\nexit 1',
        )
        monkeypatch.setenv("PATH", f"{temp_dir / 'fakebin'}{os.pathsep}{os.environ['PATH']}")

        count = await extract_tar_gz(temp_dir / "pg.tar.gz", temp_dir / "out")

        assert count == 1
        assert (temp_dir / "out" / "postgres").read_text() == "payload\n"

    async def test_nothing_extracted_fails(self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _fake_tar(temp_dir / "fakebin", 'echo "tar: unexpected EOF" >&2\nexit 2')
        monkeypatch.setenv("PATH", f"{temp_dir / 'fakebin'}{os.pathsep}{os.environ['PATH']}")

        with pytest.raises(ExtractionError, match="code 2"):
            await extract_tar_gz(temp_dir / "pg.tar.gz", temp_dir / "out")


@pytest.mark.unit
class TestZipExtraction:
    """Tests for zip extraction."""

    async def test_extract_zip(self, temp_dir: Path) -> None:
        archive = _build_zip(temp_dir / "sqlite.zip", {"sqlite3.exe": b"MZ", "sqldiff.exe": b"MZ"})

        assert await extract_archive(archive, temp_dir / "out") == 2
        assert (temp_dir / "out" / "sqlite3.exe").is_file()

    async def test_invalid_zip(self, temp_dir: Path) -> None:
        archive = temp_dir / "broken.zip"
        archive.write_bytes(b"PK garbage")

        with pytest.raises(ExtractionError):
            await extract_zip(archive, temp_dir / "out")


@pytest.mark.unit
class TestInstallLayout:
    """Tests for normalizing extracted trees into {install}/bin."""

    async def test_nested_engine_directory_flattened(self, temp_dir: Path) -> None:
        extract_dir = temp_dir / "extract"
        (extract_dir / "postgresql-17.7.0" / "bin").mkdir(parents=True)
        (extract_dir / "postgresql-17.7.0" / "bin" / "postgres").write_text("x")
        (extract_dir / "postgresql-17.7.0" / "lib").mkdir()
        install_dir = temp_dir / "install"

        await install_extracted(extract_dir, install_dir, "postgresql")

        assert (install_dir / "bin" / "postgres").is_file()
        assert (install_dir / "lib").is_dir()
        assert not (install_dir / "postgresql-17.7.0").exists()

    async def test_flat_archive_sorted_into_bin(self, temp_dir: Path) -> None:
        extract_dir = temp_dir / "extract"
        extract_dir.mkdir()
        for name in ("sqlite3", "sqldiff", "LICENSE", "libsqlite3.so"):
            (extract_dir / name).write_text(name)
        install_dir = temp_dir / "install"

        await install_extracted(extract_dir, install_dir, "sqlite")

        assert sorted(p.name for p in (install_dir / "bin").iterdir()) == ["sqldiff", "sqlite3"]
        assert (install_dir / "LICENSE").is_file()
        assert (install_dir / "libsqlite3.so").is_file()

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    async def test_make_executable(self, temp_dir: Path) -> None:
        bin_dir = temp_dir / "bin"
        bin_dir.mkdir()
        binary = bin_dir / "postgres"
        binary.write_text("x")
        binary.chmod(0o644)

        await make_executable(bin_dir)

        assert binary.stat().st_mode & stat.S_IXUSR

    async def test_make_executable_missing_dir(self, temp_dir: Path) -> None:
        await make_executable(temp_dir / "absent")
