"""Exception hierarchy for provisioning failures.

Every fatal condition raised by the core derives from ProvisionError,
so the CLI can report it and exit non-zero in one place. A declined
confirmation is not an error and never raises.
"""

from __future__ import annotations


class ProvisionError(Exception):
    """Base class for all provisioning failures."""


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

class UnsupportedPlatformError(ProvisionError):
    """Raised when the OS or CPU architecture has no matching build."""


class MissingToolError(ProvisionError):
    """Raised when a required external tool is not installed.

    Attributes:
        tool: Name of the missing executable.
        hint: Suggested install command.
    """

    def __init__(self, tool: str, hint: str = ""):
        self.tool = tool
        self.hint = hint
        message = f"Required tool not found: {tool}"
        if hint:
            message += f" (install with: {hint})"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------

class DownloadError(ProvisionError):
    """Raised when an artifact cannot be downloaded by any transport."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ArtifactTooSmallError(ProvisionError):
    """Raised when a downloaded artifact is below the sanity threshold."""

    def __init__(self, size: int, minimum: int):
        self.size = size
        self.minimum = minimum
        super().__init__(
            f"Downloaded file is too small ({size} bytes, expected at least "
            f"{minimum}) - download may have failed"
        )


class ExtractionError(ProvisionError):
    """Raised when an archive cannot be unpacked."""


class VerifyError(ProvisionError):
    """Raised when an installed binary does not work."""


class ArchitectureMismatchError(VerifyError):
    """Raised when the installed binary targets a different CPU.

    Never retried automatically: reinstalling would fetch the same build.
    """

    def __init__(self, found: str, expected: str):
        self.found = found
        self.expected = expected
        super().__init__(
            f"Binary is built for {found}, but this machine needs {expected}"
        )


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------

class VaultError(ProvisionError):
    """Raised when a credential backup or restore cannot proceed."""


class DecryptError(VaultError):
    """Raised when an archive cannot be decrypted or unpacked.

    The cipher does not tell a wrong passphrase apart from corrupted
    data, so neither does this error.
    """


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

class ServiceError(ProvisionError):
    """Raised when a package service cannot be installed or started."""


class ServiceTimeoutError(ServiceError):
    """Raised when a service does not become ready within the poll bound."""
