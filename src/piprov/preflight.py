"""
Preflight system checks — detect the external tools provisioning uses.

Checks for:
  - GnuPG (required by the credential vault)
  - wget or curl (fallback download transport for the Go installer)
  - apt-get (required by the PostgreSQL and Redis installers)
  - systemctl (starts and reloads services)
  - sudo (edits files under /etc, runs apt-get)

Each check returns a result with:
  - Whether the tool is installed
  - Current version (if installed)
  - Package-manager install command
"""

from __future__ import annotations

import platform
import shutil
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ToolStatus(str, Enum):
    """Status of a system tool."""
    INSTALLED = "installed"
    MISSING = "missing"


@dataclass
class ToolCheck:
    """Result of checking a single system tool."""

    name: str
    status: ToolStatus
    required: bool
    binary: str = ""
    version: str = ""
    install_cmd: str = ""
    install_note: str = ""

    @property
    def installed(self) -> bool:
        """Whether the tool is installed."""
        return self.status == ToolStatus.INSTALLED

    @property
    def ok(self) -> bool:
        """Whether this check passes (installed, or optional and missing)."""
        return self.installed or not self.required


@dataclass
class PreflightResult:
    """Combined result of all preflight checks."""

    checks: list[ToolCheck] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        """True if all required tools pass."""
        return all(c.ok for c in self.checks)

    @property
    def required_missing(self) -> list[ToolCheck]:
        """List of required tools that are missing."""
        return [c for c in self.checks if c.required and not c.installed]

    @property
    def optional_missing(self) -> list[ToolCheck]:
        """List of optional tools that are missing."""
        return [c for c in self.checks if not c.required and not c.installed]


# ---------------------------------------------------------------------------
# Platform detection
# ---------------------------------------------------------------------------

def _detect_linux_pkg_manager() -> Optional[str]:
    """Detect the Linux package manager."""
    for mgr in ("apt", "dnf", "pacman", "zypper", "apk"):
        if shutil.which(mgr):
            return mgr
    return None


_INSTALL_TEMPLATES = {
    "apt": "sudo apt-get install -y {pkg}",
    "dnf": "sudo dnf install -y {pkg}",
    "pacman": "sudo pacman -S --noconfirm {pkg}",
    "zypper": "sudo zypper install -y {pkg}",
    "apk": "sudo apk add {pkg}",
}


def _install_cmd(package: str) -> str:
    """Install command for a package on this platform."""
    if platform.system() == "Darwin":
        return f"brew install {package}" if shutil.which("brew") else ""
    mgr = _detect_linux_pkg_manager()
    template = _INSTALL_TEMPLATES.get(mgr or "apt", _INSTALL_TEMPLATES["apt"])
    return template.format(pkg=package)


def _tool_version(binary: str) -> str:
    """First line of ``<binary> --version``, truncated."""
    try:
        result = subprocess.run(
            [binary, "--version"],
            capture_output=True, text=True, timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired):
        return ""
    if result.returncode != 0:
        return ""
    lines = result.stdout.strip().split("\n")
    return lines[0][:60] if lines else ""


def check_tool(
    name: str,
    binaries: tuple[str, ...],
    package: str,
    required: bool,
    note: str = "",
) -> ToolCheck:
    """Check whether any of ``binaries`` is on PATH.

    Args:
        name: Display name.
        binaries: Executables that satisfy the check, in preference order.
        package: Package providing the tool.
        required: Whether a missing tool fails preflight.
        note: Why the tool is needed.

    Returns:
        ToolCheck for the tool.
    """
    for binary in binaries:
        if shutil.which(binary):
            return ToolCheck(
                name=name,
                status=ToolStatus.INSTALLED,
                required=required,
                binary=binary,
                version=_tool_version(binary),
            )
    return ToolCheck(
        name=name,
        status=ToolStatus.MISSING,
        required=required,
        install_cmd=_install_cmd(package),
        install_note=note,
    )


# ---------------------------------------------------------------------------
# Individual tool checks
# ---------------------------------------------------------------------------

def check_gpg(required: bool = True) -> ToolCheck:
    """Check if GnuPG is installed."""
    return check_tool(
        "GnuPG", ("gpg", "gpg2"), "gnupg", required,
        "GPG encrypts the SSH key backup.",
    )


def check_downloader(required: bool = False) -> ToolCheck:
    """Check for wget or curl (fallback download transport)."""
    return check_tool(
        "wget/curl", ("wget", "curl"), "wget", required,
        "Used when a direct HTTP download fails.",
    )


def check_apt(required: bool = False) -> ToolCheck:
    """Check for apt-get."""
    return check_tool(
        "apt-get", ("apt-get",), "apt", required,
        "PostgreSQL and Redis setup need Debian, Ubuntu or Raspberry Pi OS.",
    )


def check_systemctl(required: bool = False) -> ToolCheck:
    """Check for systemctl."""
    return check_tool(
        "systemctl", ("systemctl",), "systemd", required,
        "Starts and reloads the database and cache services.",
    )


def check_sudo(required: bool = False) -> ToolCheck:
    """Check for sudo."""
    return check_tool(
        "sudo", ("sudo",), "sudo", required,
        "Needed to install packages and edit files under /etc.",
    )


# ---------------------------------------------------------------------------
# Auto-install
# ---------------------------------------------------------------------------

def auto_install_tool(check: ToolCheck) -> bool:
    """Attempt to auto-install a tool using its platform install command.

    Args:
        check: ToolCheck with install_cmd populated.

    Returns:
        True if install succeeded.
    """
    if check.installed:
        return True
    if not check.install_cmd:
        return False

    try:
        result = subprocess.run(
            check.install_cmd.split(),
            capture_output=True, text=True, timeout=180,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
        return False


# ---------------------------------------------------------------------------
# Full preflight
# ---------------------------------------------------------------------------

def run_preflight(
    require_gpg: bool = False,
    require_services: bool = False,
) -> PreflightResult:
    """Run all preflight checks.

    Args:
        require_gpg: Whether GPG is required (vault commands).
        require_services: Whether apt-get, systemctl and sudo are required
            (database and cache commands).

    Returns:
        PreflightResult with all tool checks.
    """
    return PreflightResult(checks=[
        check_gpg(required=require_gpg),
        check_downloader(),
        check_apt(required=require_services),
        check_systemctl(required=require_services),
        check_sudo(required=require_services),
    ])
