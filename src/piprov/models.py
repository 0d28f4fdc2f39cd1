"""
Pydantic models describing what is installed on this machine and
what each provisioning run did about it.

Nothing here performs I/O. The installers and the vault build these
models; the CLI renders them.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class ReleaseSource(str, Enum):
    """Where the latest version string came from."""

    PRIMARY = "primary"
    LISTING = "listing"
    FALLBACK = "fallback"


class ConvergeAction(str, Enum):
    """What a converge run had to do."""

    INSTALLED = "installed"
    UPDATED = "updated"
    UP_TO_DATE = "up_to_date"
    REINSTALLED = "reinstalled"


class OutcomeStatus(str, Enum):
    """Whether a vault operation ran or the operator declined it."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"


class InstalledState(BaseModel):
    """What the version record says is on disk.

    ``recorded_version`` is None when the record is missing or empty,
    which means never installed or interrupted before completion.
    """

    recorded_version: Optional[str] = None
    install_path: Path

    @property
    def installed(self) -> bool:
        """Whether a completed install is recorded."""
        return self.recorded_version is not None


class RemoteRelease(BaseModel):
    """The newest version known to be available."""

    latest_version: str
    source: ReleaseSource = ReleaseSource.PRIMARY


class PlatformTarget(BaseModel):
    """Download identifier for this OS and CPU."""

    os: str
    arch: str

    def archive_name(self, version: str) -> str:
        """Distribution archive filename for a version.

        Args:
            version: Version string such as ``go1.23.4``.

        Returns:
            str: e.g. ``go1.23.4.linux-arm64.tar.gz``.
        """
        return f"{version}.{self.os}-{self.arch}.tar.gz"


class VerifyResult(BaseModel):
    """Outcome of a successful functional check."""

    version: str
    env: dict[str, str] = Field(default_factory=dict)
    repaired_permissions: bool = False


class ConvergeReport(BaseModel):
    """Summary of one installer run."""

    action: ConvergeAction
    version: str
    previous_version: Optional[str] = None
    release_source: ReleaseSource = ReleaseSource.PRIMARY
    verify: Optional[VerifyResult] = None


class VaultStatus(BaseModel):
    """Read-only snapshot of the credential directory and its archive."""

    ssh_dir: Path
    ssh_dir_exists: bool = False
    private_keys: list[str] = Field(default_factory=list)
    archive_path: Path
    archive_exists: bool = False
    archive_size: int = 0
    archive_modified: Optional[datetime] = None


class VaultOutcome(BaseModel):
    """Result of a backup or restore."""

    status: OutcomeStatus
    archive_path: Path
    archive_size: int = 0
    files: list[str] = Field(default_factory=list)
    previous_copy: Optional[Path] = None

    @property
    def cancelled(self) -> bool:
        """Whether the operator declined the operation."""
        return self.status == OutcomeStatus.CANCELLED


class ServiceReport(BaseModel):
    """Verified state of a package-managed service."""

    name: str
    version: str
    running: bool = False
    details: dict[str, str] = Field(default_factory=dict)
