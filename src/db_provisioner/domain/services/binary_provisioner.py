"""Binary provisioning pipeline service."""

from __future__ import annotations

import asyncio
import time
import uuid
from pathlib import Path

import httpx

from db_provisioner.adapters.outbound.archive_extractor import (
    extract_archive,
    install_extracted,
    make_executable,
)
from db_provisioner.adapters.outbound.release_index import HttpClientFactory, default_http_client
from db_provisioner.adapters.outbound.resilient_fs import default_busy_policy, remove_directory_recursively
from db_provisioner.domain.entities.binary import (
    Arch,
    InstalledBinary,
    InstallStage,
    Platform,
    ProgressCallback,
    ProgressEvent,
    archive_extension,
    executable_suffix,
    host_arch,
    host_platform,
)
from db_provisioner.domain.errors import (
    BinaryNotInstalledError,
    DownloadError,
    UnsupportedPlatformError,
    VerificationError,
    VersionMismatchError,
    VersionRetiredError,
)
from db_provisioner.domain.value_objects.versions import major_minor
from db_provisioner.infrastructure.config import Config
from db_provisioner.infrastructure.logging import get_logger
from db_provisioner.infrastructure.metrics import MetricsRegistry, get_metrics
from db_provisioner.infrastructure.tracing import trace_span
from db_provisioner.ports.outbound import BinaryCapability

_InstallKey = tuple[str, Platform, Arch]


class BinaryProvisioner:
    """Downloads, extracts, verifies and caches one engine's binaries.

    Per (version, platform, arch) the pipeline runs
    NOT_INSTALLED -> DOWNLOADING -> EXTRACTING -> VERIFYING -> INSTALLED,
    or ends in FAILED. Each transition is logged and reported to the
    optional progress callback. Temp directories are always removed; the
    install directory is removed only when the install fails.
    """

    def __init__(
        self,
        capability: BinaryCapability,
        config: Config,
        http_client_factory: HttpClientFactory = default_http_client,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the provisioner.

        Args:
            capability: Engine strategy (binary names, versions, URLs).
            config: Paths, registry URLs, timeouts and retry budget.
            http_client_factory: Builds the httpx client for downloads.
            metrics: Metrics registry (default: global).
        """
        self._capability = capability
        self._config = config
        self._paths = config.paths
        self._download = config.download
        self._client_factory = http_client_factory
        self._metrics = metrics or get_metrics()
        self._fs_policy = default_busy_policy(config=config.filesystem)
        self._inflight: dict[_InstallKey, asyncio.Task[Path]] = {}
        self._logger = get_logger(__name__, engine=capability.engine)

    @property
    def capability(self) -> BinaryCapability:
        return self._capability

    @property
    def engine(self) -> str:
        return self._capability.engine

    # =========================================================================
    # Paths
    # =========================================================================

    def resolve_full_version(self, requested: str) -> str:
        """Map "17", "17.7" or "17.7.0" to the full version to install."""
        return self._capability.resolve_version(requested)

    def install_path(self, version: str, platform: Platform, arch: Arch) -> Path:
        binary = InstalledBinary(self.engine, self.resolve_full_version(version), platform, arch)
        return self._paths.bin_dir / binary.dir_name

    def get_binary_executable(
        self,
        version: str,
        platform: Platform,
        arch: Arch,
        binary: str | None = None,
    ) -> Path:
        """Path of an executable inside an install (default: the server binary)."""
        name = binary or self._capability.server_binary
        return self.install_path(version, platform, arch) / "bin" / f"{name}{executable_suffix(platform)}"

    async def is_installed(self, version: str, platform: Platform, arch: Arch) -> bool:
        executable = self.get_binary_executable(version, platform, arch)
        return await asyncio.to_thread(executable.is_file)

    # =========================================================================
    # Install pipeline
    # =========================================================================

    async def ensure_installed(
        self,
        version: str,
        platform: Platform | None = None,
        arch: Arch | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Install a version unless it is already present.

        Concurrent calls for the same version and target share one install.

        Returns:
            The install directory.
        """
        platform = platform or host_platform()
        arch = arch or host_arch()
        full_version = self.resolve_full_version(version)

        if await self.is_installed(full_version, platform, arch):
            self._emit(on_progress, InstallStage.CACHED, f"Using cached {self._capability.display_name} binaries")
            self._metrics.binary_installs_total.labels(engine=self.engine, status="cached").inc()
            return self.install_path(full_version, platform, arch)

        key = (full_version, platform, arch)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self.download(full_version, platform, arch, on_progress))
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        return await asyncio.shield(task)

    def _forget(self, key: _InstallKey, task: asyncio.Task[Path]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def download(
        self,
        version: str,
        platform: Platform,
        arch: Arch,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Download, extract and verify a version.

        Returns:
            The install directory.

        Raises:
            UnsupportedPlatformError: If no binaries exist for the target.
            VersionRetiredError: If every registry answered 404.
            DownloadError: On other download failures or timeout.
            ExtractionError: If the archive could not be unpacked.
            VerificationError: If the installed binary fails its check.
        """
        if not self._capability.supports(platform, arch):
            raise UnsupportedPlatformError(
                self.engine,
                platform.value,
                arch.value,
                self._capability.supported_platforms,
            )

        full_version = self.resolve_full_version(version)
        install_dir = self.install_path(full_version, platform, arch)
        temp_dir = self._paths.bin_dir / (
            f".tmp-{self.engine}-{full_version}-{platform.value}-{arch.value}-{uuid.uuid4().hex}"
        )
        archive = temp_dir / f"{self.engine}.{archive_extension(platform)}"
        log = self._logger.bind(version=full_version, platform=platform.value, arch=arch.value)

        with trace_span(
            "binary.download",
            {"engine": self.engine, "version": full_version, "platform": platform.value, "arch": arch.value},
        ):
            await asyncio.to_thread(temp_dir.mkdir, parents=True, exist_ok=True)
            success = False
            try:
                await remove_directory_recursively(install_dir, self._fs_policy)

                self._emit(
                    on_progress,
                    InstallStage.DOWNLOADING,
                    f"Downloading {self._capability.display_name} {full_version} binaries...",
                )
                log.info("downloading binaries")
                await self._fetch_archive(full_version, platform, arch, archive)

                self._emit(on_progress, InstallStage.EXTRACTING, "Extracting binaries...")
                extract_dir = temp_dir / "extract"
                await extract_archive(archive, extract_dir)
                await install_extracted(extract_dir, install_dir, self.engine)
                if platform != Platform.WIN32:
                    await make_executable(install_dir / "bin")

                self._emit(on_progress, InstallStage.VERIFYING, "Verifying installation...")
                await self.verify(full_version, platform, arch)

                success = True
                self._emit(
                    on_progress,
                    InstallStage.INSTALLED,
                    f"{self._capability.display_name} {full_version} installed",
                )
                self._metrics.binary_installs_total.labels(engine=self.engine, status="installed").inc()
                log.info("binaries installed", path=str(install_dir))
                return install_dir
            except Exception as exc:
                self._emit(on_progress, InstallStage.FAILED, str(exc))
                self._metrics.binary_installs_total.labels(engine=self.engine, status="failed").inc()
                log.error("binary install failed", error=str(exc))
                raise
            finally:
                await self._cleanup(temp_dir)
                if not success:
                    await self._cleanup(install_dir)

    async def _fetch_archive(self, version: str, platform: Platform, arch: Arch, archive: Path) -> str:
        urls = [
            self._capability.build_download_url(version, platform, arch, base)
            for base in (self._download.primary_registry_url, self._download.mirror_registry_url)
        ]
        timeout = self._download.download_timeout_seconds
        started = time.monotonic()
        current_url = urls[0]
        try:
            async with asyncio.timeout(timeout):
                async with self._client_factory(timeout) as client:
                    for index, url in enumerate(urls):
                        current_url = url
                        is_last = index == len(urls) - 1
                        try:
                            async with client.stream("GET", url) as response:
                                status = response.status_code
                                if (status == 404 or status >= 500) and not is_last:
                                    self._logger.warning("registry unavailable, trying mirror", url=url, status=status)
                                    continue
                                if status == 404:
                                    raise VersionRetiredError(self.engine, version, url)
                                if not response.is_success:
                                    raise DownloadError(
                                        f"Failed to download {self._capability.display_name} binaries: HTTP {status}",
                                        url=url,
                                        status=status,
                                    )
                                size = 0
                                handle = await asyncio.to_thread(archive.open, "wb")
                                try:
                                    async for chunk in response.aiter_bytes():
                                        await asyncio.to_thread(handle.write, chunk)
                                        size += len(chunk)
                                finally:
                                    await asyncio.to_thread(handle.close)
                                if size == 0:
                                    raise DownloadError(
                                        f"Download failed: empty response body (HTTP {status})",
                                        url=url,
                                        status=status,
                                    )
                                return url
                        except httpx.TimeoutException:
                            raise
                        except httpx.TransportError as exc:
                            if is_last:
                                raise DownloadError(f"Download failed: {exc}", url=url) from exc
                            self._logger.warning("registry unreachable, trying mirror", url=url, error=str(exc))
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise DownloadError(
                f"Download timed out after {timeout:g} seconds",
                url=current_url,
                hint="check your network connection and retry",
            ) from exc
        finally:
            self._metrics.binary_download_seconds.observe(time.monotonic() - started)
        raise DownloadError("Download failed: no registry URL succeeded", url=current_url)

    async def _cleanup(self, path: Path) -> None:
        try:
            await remove_directory_recursively(path, self._fs_policy)
        except OSError as exc:
            self._logger.warning("cleanup failed", path=str(path), error=str(exc))

    def _emit(self, callback: ProgressCallback | None, stage: InstallStage, message: str) -> None:
        self._logger.debug("install stage", stage=stage.value, message=message)
        if callback is not None:
            callback(ProgressEvent(stage=stage, message=message))

    # =========================================================================
    # Verification
    # =========================================================================

    async def verify(self, version: str, platform: Platform, arch: Arch) -> bool:
        """Check that the installed server binary runs and reports the right version.

        A reported version is accepted when it matches the expected full
        version exactly or shares its major.minor (patch drift is tolerated).

        Raises:
            BinaryNotInstalledError: If the executable is absent.
            VersionMismatchError: If the binary reports another version.
            VerificationError: If the binary cannot be run or its output parsed.
        """
        full_version = self.resolve_full_version(version)
        executable = self.get_binary_executable(full_version, platform, arch)
        if not await asyncio.to_thread(executable.is_file):
            raise BinaryNotInstalledError(self.engine, full_version, executable)
        if not self._capability.can_probe_version:
            return True

        with trace_span("binary.verify", {"engine": self.engine, "version": full_version}):
            output = await self._probe_version(executable)
            reported = self._capability.parse_version_output(output)
            if reported is None:
                raise VerificationError(
                    f"Could not parse {self._capability.display_name} version from: {output.strip()[:200]}"
                )
            if reported == full_version or major_minor(reported) == major_minor(full_version):
                return True
            raise VersionMismatchError(self.engine, full_version, reported)

    async def _probe_version(self, executable: Path) -> str:
        timeout = self._download.verify_timeout_seconds
        try:
            process = await asyncio.create_subprocess_exec(
                str(executable),
                *self._capability.version_args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(executable.parent.parent),
            )
        except OSError as exc:
            raise VerificationError(f"Failed to run {executable.name}: {exc}") from exc
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except TimeoutError as exc:
            process.kill()
            await process.wait()
            raise VerificationError(f"{executable.name} version check timed out after {timeout:g} seconds") from exc

        err_text = stderr.decode(errors="replace").strip()
        if err_text:
            self._logger.debug("version probe stderr", stderr=err_text)
        if process.returncode != 0:
            raise VerificationError(
                f"{executable.name} exited with code {process.returncode}",
                hint=err_text or None,
            )
        return stdout.decode(errors="replace") or err_text

    # =========================================================================
    # Inventory
    # =========================================================================

    async def list_installed(self) -> list[InstalledBinary]:
        """Installed versions of this engine, parsed from the bin directory."""
        return await asyncio.to_thread(self._scan_installed)

    def _scan_installed(self) -> list[InstalledBinary]:
        bin_dir = self._paths.bin_dir
        if not bin_dir.is_dir():
            return []
        found = []
        for entry in sorted(bin_dir.iterdir()):
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            binary = InstalledBinary.parse_dir_name(self.engine, entry.name)
            if binary is not None:
                found.append(binary)
        return found

    async def list_installed_versions(self) -> list[str]:
        return [binary.version for binary in await self.list_installed()]

    async def uninstall(self, version: str, platform: Platform, arch: Arch) -> None:
        """Remove an installed version."""
        install_dir = self.install_path(version, platform, arch)
        await remove_directory_recursively(install_dir, self._fs_policy)
        self._logger.info("binaries removed", path=str(install_dir))
