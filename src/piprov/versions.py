"""Latest-release discovery and the local version record.

Resolution walks a fallback chain and never fails: a rebuild must not
block on a flaky metadata endpoint, so the last resort is a hardcoded
known-good version.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterator, Optional

from .errors import DownloadError
from .models import ReleaseSource, RemoteRelease

if TYPE_CHECKING:
    from .config import GoSettings
    from .host import HostOps

logger = logging.getLogger("piprov.versions")

VERSION_PATTERN = re.compile(r"go\d+\.\d+(\.\d+)?")
_LISTING_PATTERN = re.compile(r"go\d+\.\d+(?:\.\d+)?")


def is_valid_version(candidate: Optional[str]) -> bool:
    """Check a version string against the strict ``goN.N[.N]`` form.

    Args:
        candidate: String to check (may be None).

    Returns:
        bool: True for ``go1.23`` or ``go1.23.4``; False otherwise.
    """
    return bool(candidate) and VERSION_PATTERN.fullmatch(candidate) is not None


def _from_primary(host: "HostOps", settings: "GoSettings") -> Optional[str]:
    text = host.fetch_text(settings.version_url)
    lines = text.strip().splitlines()
    return lines[0].strip() if lines else None


def _from_listing(host: "HostOps", settings: "GoSettings") -> Optional[str]:
    match = _LISTING_PATTERN.search(host.fetch_text(settings.listing_url))
    return match.group(0) if match else None


def _candidates(
    host: "HostOps", settings: "GoSettings"
) -> Iterator[tuple[ReleaseSource, Callable[[], Optional[str]]]]:
    yield ReleaseSource.PRIMARY, lambda: _from_primary(host, settings)
    yield ReleaseSource.LISTING, lambda: _from_listing(host, settings)


def resolve_latest_version(host: "HostOps", settings: "GoSettings") -> RemoteRelease:
    """Find the newest Go release.

    Tries the VERSION endpoint, then the download listing page, then
    the configured fallback. A source that errors or yields a
    malformed string is skipped.

    Args:
        host: Capability adapter used for HTTP.
        settings: Go settings holding the URLs and fallback.

    Returns:
        RemoteRelease: Always holds a syntactically valid version.
    """
    for source, fetch in _candidates(host, settings):
        try:
            candidate = fetch()
        except DownloadError as exc:
            logger.debug("Version source %s failed: %s", source.value, exc)
            continue
        if is_valid_version(candidate):
            return RemoteRelease(latest_version=candidate, source=source)
        logger.debug("Version source %s returned malformed %r", source.value, candidate)

    logger.warning("Could not determine latest Go version, using %s", settings.fallback_version)
    return RemoteRelease(latest_version=settings.fallback_version, source=ReleaseSource.FALLBACK)


class VersionRecord:
    """The file recording the last version that installed successfully."""

    def __init__(self, path: Path):
        self.path = path

    def read(self) -> Optional[str]:
        """Recorded version, or None when missing or empty."""
        if not self.path.is_file():
            return None
        value = self.path.read_text().strip()
        return value or None

    def write(self, version: str) -> None:
        """Persist a version atomically (temp file + rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(f"{version}\n")
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def clear(self) -> None:
        """Forget the recorded version."""
        self.path.unlink(missing_ok=True)

    def restore(self, version: Optional[str]) -> None:
        """Put back a previously read value (None clears the record)."""
        if version is None:
            self.clear()
        else:
            self.write(version)
