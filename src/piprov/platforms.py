"""Map ``uname`` output onto Go download identifiers.

32-bit ARMv7 boards get the ARMv6 build: Go publishes no dedicated
ARMv7 archive and the ARMv6 one runs on both.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .errors import UnsupportedPlatformError
from .models import PlatformTarget

if TYPE_CHECKING:
    from .host import HostOps

logger = logging.getLogger("piprov.platforms")

_ARCH_MAP = {
    "x86_64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armv6l",
    "armv6l": "armv6l",
}

_SUPPORTED_OS = ("linux", "darwin")


def resolve_arch(machine: str) -> str:
    """Translate a machine string into a Go architecture name.

    Args:
        machine: Output of ``uname -m`` (e.g. ``aarch64``).

    Returns:
        str: Go architecture (``amd64``, ``arm64`` or ``armv6l``).

    Raises:
        UnsupportedPlatformError: For any non-x86_64, non-ARM machine.
    """
    if machine in _ARCH_MAP:
        return _ARCH_MAP[machine]
    if machine.startswith("arm"):
        logger.info("Unknown ARM variant %s - using armv6l binaries", machine)
        return "armv6l"
    raise UnsupportedPlatformError(f"Unsupported architecture: {machine}")


def resolve_os(system: str) -> str:
    """Translate an OS name into a Go OS identifier.

    Raises:
        UnsupportedPlatformError: For anything but Linux or macOS.
    """
    name = system.lower()
    if name not in _SUPPORTED_OS:
        raise UnsupportedPlatformError(f"Unsupported OS: {system}")
    return name


def detect_platform(host: "HostOps") -> PlatformTarget:
    """Resolve the download target for the machine behind ``host``."""
    target = PlatformTarget(os=resolve_os(host.system()), arch=resolve_arch(host.machine()))
    logger.debug("Platform: %s/%s", target.os, target.arch)
    return target
