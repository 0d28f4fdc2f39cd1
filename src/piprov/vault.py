"""SSH credential vault — encrypted backup, restore and status.

The archive is a gzip tarball of the credential directory, streamed
straight into a symmetric cipher (GPG, AES-256 in production):

    ~/ssh_backup/ssh_keys_backup.tar.gz.gpg
        .ssh/
        ├── id_ed25519
        ├── id_ed25519.pub
        ├── config
        └── known_hosts

Backup writes to a temporary file beside the archive and renames it
on success, so a failed run never leaves a half-written archive.
Restore decrypts into a staging directory first; the credential
directory is only touched once the whole archive has been read, and
any existing keys are copied to ``<dir>.old`` before that. Permission
bits are re-applied after every restore because SSH refuses keys that
are readable by others.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tarfile
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .config import VaultSettings
from .errors import DecryptError, MissingToolError, VaultError
from .host import HostOps
from .models import OutcomeStatus, VaultOutcome, VaultStatus

logger = logging.getLogger("piprov.vault")

PRIVATE_KEY_PREFIX = "id_"
PUBLIC_KEY_SUFFIX = ".pub"

DIR_MODE = 0o700
PRIVATE_KEY_MODE = 0o600
PUBLIC_KEY_MODE = 0o644
CLIENT_FILES = ("config", "known_hosts")
CLIENT_FILE_MODE = 0o600

ConfirmFn = Callable[[str], bool]


def find_private_keys(ssh_dir: Path) -> list[str]:
    """Names of private key files directly inside ``ssh_dir``.

    A private key is a regular file named ``id_*`` that does not end
    in ``.pub``.

    Args:
        ssh_dir: Credential directory (may not exist).

    Returns:
        list[str]: Sorted filenames.
    """
    if not ssh_dir.is_dir():
        return []
    return sorted(
        p.name
        for p in ssh_dir.iterdir()
        if p.is_file()
        and p.name.startswith(PRIVATE_KEY_PREFIX)
        and not p.name.endswith(PUBLIC_KEY_SUFFIX)
    )


def _ignore_special(directory: str, names: list[str]) -> list[str]:
    """copytree ignore hook: skip sockets and FIFOs (ControlMaster, agents)."""
    skipped = []
    for name in names:
        try:
            mode = os.lstat(os.path.join(directory, name)).st_mode
        except OSError:
            continue
        if stat.S_ISSOCK(mode) or stat.S_ISFIFO(mode):
            skipped.append(name)
    return skipped


def _decline() -> ConfirmFn:
    return lambda prompt: False


class CredentialVault:
    """Backup, restore and inspect the SSH credential directory.

    Args:
        host: Capability adapter providing the cipher.
        settings: Directory and archive locations.
        confirm: Decision callback for destructive overwrites. Receives
            a prompt, returns True to proceed. Defaults to declining.
    """

    def __init__(self, host: HostOps, settings: VaultSettings, confirm: Optional[ConfirmFn] = None):
        self.host = host
        self.settings = settings
        self.confirm = confirm or _decline()

    @property
    def ssh_dir(self) -> Path:
        return self.settings.ssh_dir

    @property
    def archive_path(self) -> Path:
        return self.settings.archive_path

    @property
    def old_dir(self) -> Path:
        return self.ssh_dir.with_name(self.ssh_dir.name + ".old")

    def private_keys(self) -> list[str]:
        """Private key filenames currently in the credential directory."""
        return find_private_keys(self.ssh_dir)

    def ensure_dependencies(self) -> None:
        """Fail fast when the cipher tool is missing.

        Raises:
            MissingToolError: gpg is not on PATH.
        """
        if not self.host.which("gpg"):
            raise MissingToolError("gpg", "sudo apt-get install gnupg")

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def backup(self) -> VaultOutcome:
        """Encrypt the credential directory into the archive.

        Returns:
            VaultOutcome: ``cancelled`` if the operator declined to
            overwrite an existing archive.

        Raises:
            VaultError: Missing directory, no private keys, or a failed
                encryption pipeline.
        """
        self.ensure_dependencies()

        if not self.ssh_dir.is_dir():
            raise VaultError(f"SSH directory not found: {self.ssh_dir}")

        keys = self.private_keys()
        if not keys:
            raise VaultError(
                f"No SSH private keys found in {self.ssh_dir} "
                "(looking for files like id_rsa, id_ed25519)"
            )
        logger.info("Found %d private key(s) in %s", len(keys), self.ssh_dir)

        backup_dir = self.settings.backup_dir
        backup_dir.mkdir(parents=True, exist_ok=True)

        if self.archive_path.exists():
            if not self.confirm(f"Existing backup found at {self.archive_path}. Overwrite?"):
                logger.info("Backup cancelled by operator")
                return VaultOutcome(status=OutcomeStatus.CANCELLED, archive_path=self.archive_path)

        files = sorted(
            str(p.relative_to(self.ssh_dir))
            for p in self.ssh_dir.rglob("*")
            if p.is_file()
        )

        fd, tmp_name = tempfile.mkstemp(
            dir=backup_dir, prefix=f".{self.settings.archive_name}.", suffix=".partial",
        )
        os.close(fd)
        tmp_path = Path(tmp_name)
        try:
            with self.host.encrypting(tmp_path) as stream:
                with tarfile.open(fileobj=stream, mode="w|gz") as tar:
                    tar.add(self.ssh_dir, arcname=self.ssh_dir.name)
            if not tmp_path.is_file() or tmp_path.stat().st_size == 0:
                raise VaultError("Backup failed - cipher produced no output")
            os.replace(tmp_path, self.archive_path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        size = self.archive_path.stat().st_size
        logger.info("Backup created: %s (%d bytes, %d files)", self.archive_path, size, len(files))
        return VaultOutcome(
            status=OutcomeStatus.COMPLETED,
            archive_path=self.archive_path,
            archive_size=size,
            files=files,
        )

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def _preserve_existing(self) -> Path:
        """Copy the current credential directory to ``<dir>.old``."""
        if self.old_dir.exists():
            shutil.rmtree(self.old_dir)
        shutil.copytree(self.ssh_dir, self.old_dir, symlinks=True, ignore=_ignore_special)
        logger.info("Backed up existing keys to %s", self.old_dir)
        return self.old_dir

    def _extract_to(self, staging: Path) -> Path:
        with self.host.decrypting(self.archive_path) as stream:
            try:
                with tarfile.open(fileobj=stream, mode="r|gz") as tar:
                    tar.extractall(staging, filter="data")
            except (tarfile.TarError, EOFError) as exc:
                raise DecryptError("Restore failed - wrong password or corrupted backup") from exc

        root = staging / self.ssh_dir.name
        if not root.is_dir():
            raise VaultError(f"Archive does not contain a {self.ssh_dir.name} directory")
        return root

    def _merge(self, source: Path, dest: Path) -> list[str]:
        """Move every file under ``source`` into ``dest``, replacing clashes."""
        dest.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        restored = []
        for path in sorted(source.rglob("*")):
            rel = path.relative_to(source)
            target = dest / rel
            if path.is_dir() and not path.is_symlink():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(path, target)
            restored.append(str(rel))
        return restored

    def restore(self) -> VaultOutcome:
        """Decrypt the archive back into the credential directory.

        Returns:
            VaultOutcome: ``cancelled`` if the operator declined to
            overwrite existing keys.

        Raises:
            VaultError: No archive at the configured path.
            DecryptError: Wrong passphrase or corrupted archive. The
                credential directory is left as it was.
        """
        self.ensure_dependencies()

        if not self.archive_path.is_file():
            raise VaultError(
                f"Backup not found: {self.archive_path}. "
                "Set BACKUP_DIR if your backup is elsewhere"
            )

        previous_copy = None
        if self.private_keys():
            if not self.confirm(f"Existing SSH keys found in {self.ssh_dir}. Overwrite existing keys?"):
                logger.info("Restore cancelled by operator")
                return VaultOutcome(status=OutcomeStatus.CANCELLED, archive_path=self.archive_path)
            previous_copy = self._preserve_existing()

        parent = self.ssh_dir.parent
        parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(dir=parent, prefix=".piprov-restore-"))
        try:
            restored_root = self._extract_to(staging)
            files = self._merge(restored_root, self.ssh_dir)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        self.fix_permissions()
        logger.info("Restored %d file(s) to %s", len(files), self.ssh_dir)
        return VaultOutcome(
            status=OutcomeStatus.COMPLETED,
            archive_path=self.archive_path,
            archive_size=self.archive_path.stat().st_size,
            files=files,
            previous_copy=previous_copy,
        )

    def fix_permissions(self) -> None:
        """Apply the modes SSH expects: dir 700, keys 600, public 644, client files 600."""
        if not self.ssh_dir.is_dir():
            return
        self.ssh_dir.chmod(DIR_MODE)
        for entry in self.ssh_dir.iterdir():
            if entry.is_symlink() or not entry.is_file():
                continue
            name = entry.name
            if name.endswith(PUBLIC_KEY_SUFFIX):
                entry.chmod(PUBLIC_KEY_MODE)
            elif name.startswith(PRIVATE_KEY_PREFIX):
                entry.chmod(PRIVATE_KEY_MODE)
            elif name in CLIENT_FILES:
                entry.chmod(CLIENT_FILE_MODE)

    # ------------------------------------------------------------------
    # Check
    # ------------------------------------------------------------------

    def check(self) -> VaultStatus:
        """Report on the credential directory and archive without changing either."""
        status = VaultStatus(
            ssh_dir=self.ssh_dir,
            ssh_dir_exists=self.ssh_dir.is_dir(),
            private_keys=self.private_keys(),
            archive_path=self.archive_path,
        )
        if self.archive_path.is_file():
            st = self.archive_path.stat()
            status.archive_exists = True
            status.archive_size = st.st_size
            status.archive_modified = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
        return status
