"""Archive extraction and install-directory normalization.

Unix archives are unpacked with the system tar, Windows archives with
zipfile in a worker thread. Extracted trees are then normalized to
{install}/bin/{executables}: a nested top-level {engine} or {engine}-*
directory is flattened, and archives without a bin/ directory have their
executables moved into one.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import zipfile
from pathlib import Path

from db_provisioner.domain.errors import ExtractionError
from db_provisioner.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Extension-less files that are never executables (compared lower-case)
NON_BINARY_NAMES = frozenset(
    {
        "license",
        "licence",
        "readme",
        "notice",
        "changelog",
        "contributing",
        "authors",
        "copying",
        "version",
        "makefile",
        "dockerfile",
        "manifest",
        "install",
        "news",
        "thanks",
        "todo",
        "history",
    }
)

_WINDOWS_BINARY_SUFFIXES = (".exe", ".dll")


def _count_files(root: Path) -> int:
    return sum(len(files) for _, _, files in os.walk(root))


async def extract_tar_gz(archive: Path, dest: Path) -> int:
    """Unpack a .tar.gz archive with the system tar.

    A non-zero exit is tolerated when files were extracted: macOS
    AppleDouble sidecars (._*) in some archives truncate tar's run after
    the real payload is already on disk.

    Returns:
        Number of regular files extracted.

    Raises:
        ExtractionError: If tar cannot run or extracted nothing.
    """
    dest.mkdir(parents=True, exist_ok=True)
    try:
        process = await asyncio.create_subprocess_exec(
            "tar",
            "-xzf",
            str(archive),
            "-C",
            str(dest),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise ExtractionError(f"Failed to run tar: {exc}") from exc
    _, stderr = await process.communicate()

    extracted = await asyncio.to_thread(_count_files, dest)
    if process.returncode != 0:
        message = stderr.decode(errors="replace").strip()
        if extracted == 0:
            raise ExtractionError(
                f"tar exited with code {process.returncode} and extracted no files: {message}",
                hint="the archive may be corrupt; retry the download",
            )
        logger.warning(
            "tar exited non-zero but files were extracted, continuing",
            archive=archive.name,
            returncode=process.returncode,
            files=extracted,
            stderr=message,
        )
    return extracted


def _extract_zip(archive: Path, dest: Path) -> int:
    try:
        with zipfile.ZipFile(archive) as bundle:
            bundle.extractall(dest)
            return sum(1 for info in bundle.infolist() if not info.is_dir())
    except zipfile.BadZipFile as exc:
        raise ExtractionError(f"Invalid zip archive {archive.name}: {exc}") from exc


async def extract_zip(archive: Path, dest: Path) -> int:
    """Unpack a .zip archive in a worker thread.

    Returns:
        Number of files extracted.
    """
    dest.mkdir(parents=True, exist_ok=True)
    return await asyncio.to_thread(_extract_zip, archive, dest)


async def extract_archive(archive: Path, dest: Path) -> int:
    """Unpack an archive, choosing the extractor by file name."""
    if archive.name.endswith(".zip"):
        return await extract_zip(archive, dest)
    return await extract_tar_gz(archive, dest)


def is_executable_name(name: str, is_file: bool) -> bool:
    """Decide whether a top-level entry of a flat archive is an executable."""
    lower = name.lower()
    if lower.endswith(_WINDOWS_BINARY_SUFFIXES):
        return True
    if not is_file or name.startswith(".") or "." in name:
        return False
    return lower not in NON_BINARY_NAMES


def _move_entry(source: Path, dest: Path) -> None:
    if dest.exists():
        if dest.is_dir() and not dest.is_symlink():
            shutil.rmtree(dest)
        else:
            dest.unlink()
    shutil.move(str(source), str(dest))


def _install_extracted(extract_dir: Path, install_dir: Path, engine: str) -> None:
    entries = list(extract_dir.iterdir())
    nested = next(
        (e for e in entries if e.is_dir() and (e.name == engine or e.name.startswith(f"{engine}-"))),
        None,
    )
    source_dir = nested if nested is not None else extract_dir
    source_entries = list(source_dir.iterdir()) if nested is not None else entries

    install_dir.mkdir(parents=True, exist_ok=True)
    if any(e.is_dir() and e.name == "bin" for e in source_entries):
        for entry in source_entries:
            _move_entry(entry, install_dir / entry.name)
        return

    bin_dir = install_dir / "bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    for entry in source_entries:
        target = bin_dir if is_executable_name(entry.name, entry.is_file()) else install_dir
        _move_entry(entry, target / entry.name)


async def install_extracted(extract_dir: Path, install_dir: Path, engine: str) -> None:
    """Move an extracted tree into the install directory, normalized to bin/."""
    await asyncio.to_thread(_install_extracted, extract_dir, install_dir, engine)


def _make_executable(bin_dir: Path) -> None:
    if not bin_dir.is_dir():
        return
    for entry in bin_dir.iterdir():
        if entry.is_file():
            entry.chmod(0o755)


async def make_executable(bin_dir: Path) -> None:
    """chmod 0755 every file in a bin directory (Unix only)."""
    await asyncio.to_thread(_make_executable, bin_dir)
