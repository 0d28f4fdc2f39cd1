"""
Host capabilities — every side effect the provisioning core needs.

The installers and the vault never touch the network, archives, GPG
or systemd directly. They call a HostOps implementation:

  - SystemHost: the production adapter (requests, tarfile, gpg, systemctl)
  - tests supply a fake with scripted responses

Downloads prefer requests and fall back to wget or curl when the
HTTP connection itself fails. GPG is run without --batch so it asks
for the passphrase on the terminal; the passphrase never appears in
argv or in this process.
"""

from __future__ import annotations

import logging
import platform
import shutil
import subprocess
import tarfile
from abc import ABC, abstractmethod
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Sequence

import requests

from . import systemd
from .errors import DecryptError, DownloadError, ExtractionError, VaultError

logger = logging.getLogger("piprov.host")

CHUNK_SIZE = 64 * 1024

# ELF e_machine values -> Go architecture names
_ELF_MACHINES = {
    0x03: "386",
    0x28: "arm",
    0x3E: "amd64",
    0xB7: "arm64",
}


def elf_arch(path: Path) -> Optional[str]:
    """Read the target CPU from an ELF header.

    Args:
        path: Binary to inspect.

    Returns:
        Go-style architecture name, ``"unknown"`` for an ELF file with an
        unrecognised machine, or None when the file is not ELF.
    """
    try:
        with open(path, "rb") as f:
            header = f.read(20)
    except OSError:
        return None
    if len(header) < 20 or header[:4] != b"\x7fELF":
        return None
    byteorder = "little" if header[5] == 1 else "big"
    machine = int.from_bytes(header[18:20], byteorder)
    return _ELF_MACHINES.get(machine, "unknown")


def _strip_members(
    tar: tarfile.TarFile, strip_components: int
) -> Iterator[tarfile.TarInfo]:
    """Yield members with leading path components removed (tar --strip-components)."""
    for member in tar.getmembers():
        parts = Path(member.name).parts
        if len(parts) <= strip_components:
            continue
        member.name = str(Path(*parts[strip_components:]))
        yield member


class HostOps(ABC):
    """Capability interface over the operating system."""

    @abstractmethod
    def machine(self) -> str:
        """CPU architecture as reported by ``uname -m``."""

    @abstractmethod
    def system(self) -> str:
        """Kernel name as reported by ``uname -s``."""

    @abstractmethod
    def which(self, name: str) -> Optional[str]:
        """Path of an executable, or None."""

    @abstractmethod
    def fetch_text(self, url: str) -> str:
        """GET a small text document.

        Raises:
            DownloadError: On any transport or HTTP failure.
        """

    @abstractmethod
    def download(self, url: str, dest: Path) -> None:
        """Download ``url`` to ``dest``.

        Raises:
            DownloadError: When no transport could fetch the file.
        """

    @abstractmethod
    def extract(self, archive: Path, dest: Path, strip_components: int = 1) -> None:
        """Unpack a tarball into ``dest``.

        Raises:
            ExtractionError: On corrupt or unreadable archives.
        """

    @abstractmethod
    def run(self, cmd: Sequence[str], input: Optional[str] = None) -> subprocess.CompletedProcess:
        """Run a command, capturing text output. Never raises on exec failure."""

    @abstractmethod
    def describe_binary(self, path: Path) -> Optional[str]:
        """Target architecture of a binary (see ``elf_arch``)."""

    @abstractmethod
    def service_control(self, action: str, unit: str) -> bool:
        """Enable/start/restart/reload a system service."""

    @abstractmethod
    def encrypting(self, output: Path):
        """Context manager yielding a writable stream encrypted into ``output``.

        Raises:
            VaultError: If the cipher fails.
        """

    @abstractmethod
    def decrypting(self, source: Path):
        """Context manager yielding a readable stream of decrypted ``source``.

        Raises:
            DecryptError: On a wrong passphrase or corrupted data.
        """


class SystemHost(HostOps):
    """Production adapter that acts on the real machine."""

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def machine(self) -> str:
        return platform.machine()

    def system(self) -> str:
        return platform.system()

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    # -- HTTP ---------------------------------------------------------------

    def fetch_text(self, url: str) -> str:
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise DownloadError(f"GET {url} failed: {exc}") from exc
        return resp.text

    def download(self, url: str, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._download_requests(url, dest)
            return
        except requests.HTTPError as exc:
            dest.unlink(missing_ok=True)
            raise DownloadError(
                f"Download URL not accessible: {url} ({exc}). "
                "This might be due to network issues or invalid architecture"
            ) from exc
        except requests.RequestException as exc:
            dest.unlink(missing_ok=True)
            logger.warning("HTTP download failed (%s), trying command-line fallback", exc)

        self._download_cli(url, dest)

    def _download_requests(self, url: str, dest: Path) -> None:
        with self.session.get(url, stream=True, timeout=self.timeout) as resp:
            resp.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    f.write(chunk)
        logger.info("Downloaded %s", url)

    def _download_cli(self, url: str, dest: Path) -> None:
        if shutil.which("wget"):
            cmd = ["wget", "-q", "-O", str(dest), url]
        elif shutil.which("curl"):
            cmd = ["curl", "-fsSL", "-o", str(dest), url]
        else:
            raise DownloadError(
                "HTTP download failed and neither wget nor curl is installed "
                "(sudo apt-get install wget)"
            )
        result = self.run(cmd)
        if result.returncode != 0:
            dest.unlink(missing_ok=True)
            raise DownloadError(f"{cmd[0]} failed for {url}: {result.stderr.strip()}")
        logger.info("Downloaded %s via %s", url, cmd[0])

    # -- Archives -----------------------------------------------------------

    def extract(self, archive: Path, dest: Path, strip_components: int = 1) -> None:
        dest.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(archive, "r:*") as tar:
                tar.extractall(
                    dest,
                    members=_strip_members(tar, strip_components),
                    filter="data",
                )
        except (tarfile.TarError, OSError) as exc:
            raise ExtractionError(
                f"Failed to extract {archive.name}: {exc}. "
                "The archive may be corrupted or incompatible"
            ) from exc

    # -- Processes ----------------------------------------------------------

    def run(self, cmd: Sequence[str], input: Optional[str] = None) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                list(cmd), capture_output=True, text=True, input=input, timeout=300,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.debug("Command %s could not run: %s", cmd[0], exc)
            return subprocess.CompletedProcess(list(cmd), 126, stdout="", stderr=str(exc))

    def describe_binary(self, path: Path) -> Optional[str]:
        return elf_arch(path)

    def service_control(self, action: str, unit: str) -> bool:
        return systemd.systemctl(action, unit)

    # -- Cipher -------------------------------------------------------------

    @contextmanager
    def encrypting(self, output: Path) -> Iterator[BinaryIO]:
        proc = subprocess.Popen(
            ["gpg", "--yes", "--symmetric", "--cipher-algo", "AES256", "-o", str(output)],
            stdin=subprocess.PIPE,
        )
        try:
            yield proc.stdin
            proc.stdin.close()
        except BrokenPipeError as exc:
            # gpg exited before reading everything; its exit code says why.
            with suppress(BrokenPipeError):
                proc.stdin.close()
            proc.wait()
            logger.debug("gpg closed its input early (exit %s)", proc.returncode)
            raise VaultError(f"GPG encryption failed (exit {proc.returncode})") from exc
        except BaseException:
            proc.kill()
            proc.wait()
            raise
        if proc.wait() != 0:
            raise VaultError(f"GPG encryption failed (exit {proc.returncode})")

    @contextmanager
    def decrypting(self, source: Path) -> Iterator[BinaryIO]:
        proc = subprocess.Popen(
            ["gpg", "--decrypt", str(source)],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
        )
        try:
            yield proc.stdout
            # Drain what the reader left so gpg can exit.
            proc.stdout.read()
            proc.stdout.close()
        except (tarfile.TarError, OSError, EOFError) as exc:
            proc.kill()
            proc.wait()
            raise DecryptError("Restore failed - wrong password or corrupted backup") from exc
        except BaseException:
            proc.kill()
            proc.wait()
            raise
        if proc.wait() != 0:
            raise DecryptError("Restore failed - wrong password or corrupted backup")
