"""
Go toolchain installer — converge the local install to the latest release.

One run decides what to do from two facts, the recorded version and
the latest available version:

  no record            -> install -> configure -> verify
  record == latest     -> configure -> verify (reinstall once if broken)
  record != latest     -> install -> configure -> verify

A new release is extracted into a staging directory next to the
install directory. The old tree is retired only after extraction
succeeds, and deleted only after the new tree verifies. If
verification fails the old tree and its version record come back.
The machine is left either in its previous good state or in the new
verified one.

Usage:
    from piprov.go_installer import GoInstaller
    report = GoInstaller(SystemHost(), config.go, config.profiles).converge()
"""

from __future__ import annotations

import logging
import shutil
import stat
from pathlib import Path
from typing import Optional

from .config import GoSettings
from .errors import (
    ArchitectureMismatchError,
    ArtifactTooSmallError,
    DownloadError,
    ProvisionError,
    VerifyError,
)
from .host import HostOps
from .models import ConvergeAction, ConvergeReport, InstalledState, RemoteRelease, VerifyResult
from .platforms import detect_platform
from .profile import render_env_script, shell_path, update_profiles, write_env_script
from .versions import VersionRecord, resolve_latest_version

logger = logging.getLogger("piprov.go_installer")

ENV_LABEL = "Go Environment"
GO_ENV_KEYS = ("GOROOT", "GOPATH", "GOARCH", "GOOS")

# Binary architectures that run a given download arch.
_COMPATIBLE_ARCHES = {
    "amd64": {"amd64"},
    "arm64": {"arm64"},
    "armv6l": {"arm"},
}


class GoInstaller:
    """Idempotent installer for the Go toolchain.

    Args:
        host: Capability adapter for every side effect.
        settings: Paths, URLs and thresholds.
        profiles: Shell profiles that should source the env script.
    """

    def __init__(self, host: HostOps, settings: GoSettings, profiles: list[Path]):
        self.host = host
        self.settings = settings
        self.profiles = profiles
        self.record = VersionRecord(settings.version_file)

    @property
    def install_dir(self) -> Path:
        return self.settings.install_dir

    @property
    def binary(self) -> Path:
        return self.install_dir / "bin" / "go"

    @property
    def staging_dir(self) -> Path:
        return self.install_dir.with_name(self.install_dir.name + ".staging")

    @property
    def retired_dir(self) -> Path:
        return self.install_dir.with_name(self.install_dir.name + ".previous")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def resolve_latest_version(self) -> RemoteRelease:
        """Latest release via the endpoint fallback chain."""
        return resolve_latest_version(self.host, self.settings)

    def read_recorded_version(self) -> Optional[str]:
        """Version recorded by the last completed install, if any."""
        return self.record.read()

    def state(self) -> InstalledState:
        """Current InstalledState."""
        return InstalledState(
            recorded_version=self.read_recorded_version(),
            install_path=self.install_dir,
        )

    # ------------------------------------------------------------------
    # Install / remove
    # ------------------------------------------------------------------

    def remove_existing(self, old_version: Optional[str] = None) -> None:
        """Delete the install tree, its record and any download leftovers.

        Safe to call when nothing is installed.

        Args:
            old_version: Version being removed, for the log.
        """
        if self.install_dir.exists():
            logger.info("Removing old Go installation (%s)", old_version or "unknown")
            shutil.rmtree(self.install_dir)
        self.record.clear()
        for leftover in (self.settings.download_dir, self.staging_dir):
            if leftover.exists():
                shutil.rmtree(leftover)

    def fetch_and_install(self, version: str) -> Optional[Path]:
        """Download, validate and unpack a release, then record it.

        Nothing outside the staging directory changes until the archive
        has been fully extracted. The version record is written last.

        Args:
            version: Release to install (``go1.23.4``).

        Returns:
            Path of the retired previous tree, or None if there was none.
            The caller deletes it once the new tree verifies.

        Raises:
            UnsupportedPlatformError: No build for this machine.
            DownloadError: Every transport failed.
            ArtifactTooSmallError: Truncated or error-page download.
            ExtractionError: Corrupt archive.
        """
        target = detect_platform(self.host)
        filename = target.archive_name(version)
        url = f"{self.settings.download_base.rstrip('/')}/{filename}"
        artifact = self.settings.download_dir / filename

        logger.info("Downloading Go %s for %s/%s from %s", version, target.os, target.arch, url)

        if self.staging_dir.exists():
            shutil.rmtree(self.staging_dir)
        self.settings.download_dir.mkdir(parents=True, exist_ok=True)

        try:
            self.host.download(url, artifact)
            if not artifact.is_file():
                raise DownloadError(f"Downloaded file not found: {artifact}")

            size = artifact.stat().st_size
            if size < self.settings.min_artifact_bytes:
                raise ArtifactTooSmallError(size, self.settings.min_artifact_bytes)

            self.host.extract(artifact, self.staging_dir, strip_components=1)
        except ProvisionError:
            if self.staging_dir.exists():
                shutil.rmtree(self.staging_dir)
            raise
        finally:
            shutil.rmtree(self.settings.download_dir, ignore_errors=True)

        retired = self._swap_in()
        self.record.write(version)
        logger.info("Go %s installed to %s", version, self.install_dir)
        return retired

    def _swap_in(self) -> Optional[Path]:
        """Move the staging tree into place, retiring the current one."""
        if self.retired_dir.exists():
            shutil.rmtree(self.retired_dir)

        retired = None
        if self.install_dir.exists():
            self.install_dir.rename(self.retired_dir)
            retired = self.retired_dir

        self.install_dir.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.staging_dir.rename(self.install_dir)
        except OSError:
            if retired is not None:
                retired.rename(self.install_dir)
            raise
        return retired

    def _rollback(self, retired: Optional[Path], previous_version: Optional[str]) -> None:
        """Put the retired tree and its record back after a failed verify."""
        if self.install_dir.exists():
            shutil.rmtree(self.install_dir)
        if retired is not None and retired.exists():
            retired.rename(self.install_dir)
            self.record.restore(previous_version)
            logger.warning("Restored previous Go installation (%s)", previous_version)
        else:
            self.record.clear()

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    def configure_environment(self) -> list[Path]:
        """Write the env script, create GOPATH and patch shell profiles.

        Returns:
            list[Path]: Profiles that gained a sourcing line this run.
        """
        gopath = self.settings.gopath
        exports = {
            "GOROOT": shell_path(self.install_dir),
            "GOPATH": shell_path(gopath),
            "PATH": "$GOROOT/bin:$GOPATH/bin:$PATH",
            "GO111MODULE": "on",
            "GOPROXY": "https://proxy.golang.org,direct",
            "GOSUMDB": "sum.golang.org",
        }
        write_env_script(
            self.settings.env_script,
            render_env_script("Go Environment Setup", exports),
        )
        for sub in ("bin", "pkg", "src"):
            (gopath / sub).mkdir(parents=True, exist_ok=True)

        return update_profiles(self.profiles, self.settings.env_script, ENV_LABEL)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _go_version(self) -> Optional[str]:
        r = self.host.run([str(self.binary), "version"])
        if r.returncode != 0:
            return None
        # "go version go1.23.4 linux/arm64"
        parts = r.stdout.split()
        return parts[2] if len(parts) >= 3 else None

    def _go_env(self) -> dict[str, str]:
        r = self.host.run([str(self.binary), "env", *GO_ENV_KEYS])
        if r.returncode != 0:
            return {}
        values = r.stdout.splitlines()
        return {k: v.strip() for k, v in zip(GO_ENV_KEYS, values)}

    def verify_functional(self) -> VerifyResult:
        """Run the installed ``go version`` and diagnose failures.

        A binary built for another CPU is fatal. A binary that only lost
        its executable bit is repaired and retried once.

        Returns:
            VerifyResult with the reported version and ``go env`` values.

        Raises:
            ArchitectureMismatchError: Wrong build for this machine.
            VerifyError: Missing or otherwise unrunnable binary.
        """
        binary = self.binary
        if not binary.is_file():
            raise VerifyError(f"Go binary not found at {binary}")

        repaired = False
        version = self._go_version()
        if version is None:
            expected = detect_platform(self.host).arch
            found = self.host.describe_binary(binary)
            if found is not None and found not in _COMPATIBLE_ARCHES.get(expected, {expected}):
                raise ArchitectureMismatchError(found, expected)

            mode = binary.stat().st_mode
            if not mode & stat.S_IXUSR:
                logger.warning("Go binary is not executable, fixing permissions")
                binary.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
                repaired = True
                version = self._go_version()

            if version is None:
                raise VerifyError(
                    "Go binary cannot be executed - this might indicate a corrupted download"
                )

        return VerifyResult(version=version, env=self._go_env(), repaired_permissions=repaired)

    # ------------------------------------------------------------------
    # Converge
    # ------------------------------------------------------------------

    def _install_cycle(self, version: str, previous_version: Optional[str]) -> VerifyResult:
        retired = self.fetch_and_install(version)
        try:
            self.configure_environment()
            result = self.verify_functional()
        except BaseException:
            self._rollback(retired, previous_version)
            raise
        if retired is not None:
            shutil.rmtree(retired, ignore_errors=True)
        return result

    def converge(self) -> ConvergeReport:
        """Bring the toolchain to the latest verified release.

        Returns:
            ConvergeReport describing the action taken.

        Raises:
            ProvisionError: On any fatal step; prior good state is kept.
        """
        release = self.resolve_latest_version()
        latest = release.latest_version
        recorded = self.read_recorded_version()
        logger.info("Latest Go: %s (%s), recorded: %s", latest, release.source.value, recorded)

        if recorded is None:
            action = ConvergeAction.INSTALLED
            result = self._install_cycle(latest, None)
        elif recorded != latest:
            logger.info("Update available: %s -> %s", recorded, latest)
            action = ConvergeAction.UPDATED
            result = self._install_cycle(latest, recorded)
        elif not self.install_dir.is_dir():
            logger.info("Go installation directory not found, installing")
            action = ConvergeAction.REINSTALLED
            result = self._install_cycle(latest, None)
        else:
            self.configure_environment()
            try:
                result = self.verify_functional()
                action = ConvergeAction.UP_TO_DATE
            except ArchitectureMismatchError:
                raise
            except VerifyError as exc:
                logger.warning("Verification failed (%s), attempting reinstall", exc)
                self.remove_existing(recorded)
                action = ConvergeAction.REINSTALLED
                result = self._install_cycle(latest, None)

        return ConvergeReport(
            action=action,
            version=latest,
            previous_version=recorded,
            release_source=release.source,
            verify=result,
        )
