"""Provisioning configuration.

Defaults reproduce the layout the tools have always used under the
operator's home directory. A YAML file can override any field:

    go:
      fallback_version: go1.23.4
    vault:
      backup_dir: /mnt/usb
    postgres:
      db_name: devdb

The BACKUP_DIR environment variable overrides ``vault.backup_dir``.
"""

from __future__ import annotations

import getpass
import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from . import PROVISION_HOME

logger = logging.getLogger("piprov.config")

CONFIG_FILENAME = "config.yaml"

# Last known-good release. Goes stale as new Go versions ship; only used
# when both version endpoints are unreachable or return garbage.
FALLBACK_GO_VERSION = "go1.23.4"


class _PathSettings(BaseModel):
    """Base for sections whose Path fields accept ``~``."""

    model_config = ConfigDict(validate_default=True)

    @field_validator("*")
    @classmethod
    def _expand_paths(cls, value: Any) -> Any:
        if isinstance(value, Path):
            return value.expanduser()
        return value


class GoSettings(_PathSettings):
    """Where the Go toolchain lives and where releases come from."""

    version_file: Path = Path("~/.go_installed_version")
    install_dir: Path = Path("~/.local/go")
    download_dir: Path = Path("/tmp/go_download")
    env_script: Path = Path("~/.go_env.sh")
    gopath: Path = Path("~/go")
    version_url: str = "https://go.dev/VERSION?m=text"
    listing_url: str = "https://go.dev/dl/"
    download_base: str = "https://go.dev/dl/"
    fallback_version: str = FALLBACK_GO_VERSION
    min_artifact_bytes: int = 10000
    http_timeout: float = 30.0


class VaultSettings(_PathSettings):
    """Credential directory and encrypted archive location."""

    ssh_dir: Path = Path("~/.ssh")
    backup_dir: Path = Path("~/ssh_backup")
    archive_name: str = "ssh_keys_backup.tar.gz.gpg"

    @property
    def archive_path(self) -> Path:
        """Full path of the encrypted archive."""
        return self.backup_dir / self.archive_name


class PostgresSettings(_PathSettings):
    """Local development PostgreSQL."""

    db_user: str = Field(default_factory=getpass.getuser)
    db_name: str = "devdb"
    port: int = 5432
    version_file: Path = Path("~/.postgresql_installed_version")
    env_script: Path = Path("~/.postgresql_env.sh")
    ready_attempts: int = 30
    ready_interval: float = 1.0


class RedisSettings(_PathSettings):
    """Local development Redis."""

    port: int = 6379
    version_file: Path = Path("~/.redis_installed_version")
    env_script: Path = Path("~/.redis_env.sh")
    config_candidates: list[Path] = Field(
        default_factory=lambda: [Path("/etc/redis/redis.conf"), Path("/etc/redis.conf")]
    )
    ready_attempts: int = 30
    ready_interval: float = 1.0


class ProvisionConfig(BaseModel):
    """Top-level configuration for every provisioning command."""

    profiles: list[Path] = Field(
        default_factory=lambda: [
            Path("~/.bashrc").expanduser(),
            Path("~/.zshrc").expanduser(),
            Path("~/.profile").expanduser(),
        ]
    )
    go: GoSettings = Field(default_factory=GoSettings)
    vault: VaultSettings = Field(default_factory=VaultSettings)
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)

    @field_validator("profiles")
    @classmethod
    def _expand_profiles(cls, value: list[Path]) -> list[Path]:
        return [p.expanduser() for p in value]


def default_config_path() -> Path:
    """Config file location under the provisioning home."""
    return Path(PROVISION_HOME).expanduser() / CONFIG_FILENAME


def load_config(path: Optional[Path] = None) -> ProvisionConfig:
    """Load configuration from YAML, falling back to defaults.

    Args:
        path: Config file. Defaults to ~/.piprov/config.yaml.

    Returns:
        ProvisionConfig with environment overrides applied.
    """
    config_file = (path or default_config_path()).expanduser()
    config = ProvisionConfig()

    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text()) or {}
            config = ProvisionConfig(**data)
            logger.debug("Loaded config from %s", config_file)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load config %s: %s, using defaults", config_file, exc)

    backup_dir = os.environ.get("BACKUP_DIR")
    if backup_dir:
        config.vault.backup_dir = Path(backup_dir).expanduser()

    return config
