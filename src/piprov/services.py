"""
Package-managed services — PostgreSQL and Redis for local development.

Both follow one pattern:

  1. apt-get install the packages if the binaries are missing
  2. configure (role/database/pg_hba for PostgreSQL, redis.conf for Redis)
  3. enable + start through systemd and poll until ready
  4. write ~/.<name>_env.sh and source it from the shell profiles
  5. verify, then record the installed version

Configuration edits are marked with a comment so reruns skip them.
Files under /etc are read and written through sudo.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Sequence

from .config import PostgresSettings, RedisSettings
from .errors import MissingToolError, ServiceError, ServiceTimeoutError
from .host import HostOps
from .models import ServiceReport
from .profile import render_env_script, update_profiles, write_env_script
from .versions import VersionRecord

logger = logging.getLogger("piprov.services")

CONFIG_MARKER = "# Configured by piprov"


def wait_until_ready(
    probe: Callable[[], bool],
    attempts: int = 30,
    interval: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    name: str = "service",
) -> int:
    """Poll ``probe`` until it succeeds or the attempt bound is reached.

    Args:
        probe: Returns True once the dependency is ready.
        attempts: Maximum number of probes.
        interval: Seconds slept between probes.
        sleep: Sleep function (injected by tests).
        name: Label for the timeout message.

    Returns:
        int: The attempt number that succeeded (1-based).

    Raises:
        ServiceTimeoutError: After ``attempts`` failed probes.
    """
    for attempt in range(1, attempts + 1):
        if probe():
            return attempt
        if attempt < attempts:
            sleep(interval)
    raise ServiceTimeoutError(
        f"{name} failed to become ready within {attempts} attempts"
    )


class PackageService(ABC):
    """Shared install/configure/start/verify flow for an apt service."""

    name: str = ""
    unit: str = ""
    packages: Sequence[str] = ()
    binaries: Sequence[str] = ()
    env_label: str = ""
    start_action: str = "start"
    configure_before_start: bool = False

    def __init__(
        self,
        host: HostOps,
        settings: PostgresSettings | RedisSettings,
        profiles: list[Path],
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.host = host
        self.settings = settings
        self.profiles = profiles
        self.sleep = sleep
        self.record = VersionRecord(settings.version_file)

    # -- helpers ------------------------------------------------------------

    def _sudo(self, *cmd: str, input: Optional[str] = None):
        full = ["sudo", *cmd] if self.host.which("sudo") else list(cmd)
        return self.host.run(full, input=input)

    def _must(self, *cmd: str, input: Optional[str] = None) -> str:
        r = self._sudo(*cmd, input=input)
        if r.returncode != 0:
            raise ServiceError(f"{' '.join(cmd)} failed: {r.stderr.strip()}")
        return r.stdout

    def _root_file_exists(self, path: Path) -> bool:
        return self._sudo("test", "-f", str(path)).returncode == 0

    def _read_root_file(self, path: Path) -> str:
        return self._must("cat", str(path))

    def _write_root_file(self, path: Path, content: str) -> None:
        self._must("cp", str(path), f"{path}.backup")
        self._must("tee", str(path), input=content)

    # -- state --------------------------------------------------------------

    def ensure_apt(self) -> None:
        """Fail unless this is a Debian-family system.

        Raises:
            MissingToolError: apt-get is not available.
        """
        if not self.host.which("apt-get"):
            raise MissingToolError(
                "apt-get", "this command requires Debian, Ubuntu or Raspberry Pi OS"
            )

    def is_installed(self) -> bool:
        """Whether every client binary is on PATH."""
        return all(self.host.which(b) for b in self.binaries)

    @abstractmethod
    def installed_version(self) -> Optional[str]:
        """Version of the installed server, or None."""

    @abstractmethod
    def is_running(self) -> bool:
        """Whether the server answers its readiness probe."""

    # -- steps --------------------------------------------------------------

    def install(self) -> None:
        """Install the packages with apt-get.

        Raises:
            ServiceError: apt-get failed or binaries are still missing.
        """
        logger.info("Installing %s", " ".join(self.packages))
        self._must("apt-get", "update")
        self._must("apt-get", "install", "-y", *self.packages)
        if not self.is_installed():
            raise ServiceError(f"{self.name} installation failed")

    def ensure_running(self) -> int:
        """Enable and start the unit, then wait for readiness.

        Returns:
            int: Probes needed (0 when it was already running).

        Raises:
            ServiceTimeoutError: Not ready within the poll bound.
        """
        if self.is_running():
            logger.info("%s is already running", self.name)
            return 0
        self.host.service_control("enable", self.unit)
        self.host.service_control(self.start_action, self.unit)
        return wait_until_ready(
            self.is_running,
            attempts=self.settings.ready_attempts,
            interval=self.settings.ready_interval,
            sleep=self.sleep,
            name=self.name,
        )

    @abstractmethod
    def configure(self) -> None:
        """Apply development configuration idempotently."""

    @abstractmethod
    def env_exports(self) -> dict[str, str]:
        """Variables written to the env script."""

    def configure_environment(self) -> list[Path]:
        """Write the env script and source it from shell profiles."""
        write_env_script(
            self.settings.env_script,
            render_env_script(f"{self.name} Environment Setup", self.env_exports()),
        )
        return update_profiles(self.profiles, self.settings.env_script, self.env_label)

    def _verify_details(self) -> dict[str, str]:
        return {}

    def verify(self) -> ServiceReport:
        """Check version and readiness, then record the version.

        Raises:
            ServiceError: Not installed or not running.
        """
        version = self.installed_version()
        if not version:
            raise ServiceError(f"{self.name} not found")
        if not self.is_running():
            raise ServiceError(f"{self.name} service: not running")
        details = self._verify_details()
        self.record.write(version)
        return ServiceReport(name=self.name, version=version, running=True, details=details)

    def update_instructions(self) -> list[str]:
        """Commands the operator runs to upgrade the packages by hand."""
        return [
            "sudo apt-get update",
            f"sudo apt-get upgrade {' '.join(self.packages)}",
        ]

    def provision(self) -> ServiceReport:
        """Install if needed, then configure, start and verify.

        Already-installed systems take the same path minus the install,
        which repairs configuration drift and stopped services.
        """
        self.ensure_apt()
        current = self.installed_version()
        if current is None:
            self.install()
        else:
            logger.info("%s %s is already installed, verifying", self.name, current)

        if self.configure_before_start:
            self.configure()
            self.ensure_running()
        else:
            self.ensure_running()
            self.configure()
        self.configure_environment()
        return self.verify()


class PostgresService(PackageService):
    """PostgreSQL with a superuser role and database for the operator."""

    name = "PostgreSQL"
    unit = "postgresql"
    packages = ("postgresql", "postgresql-contrib")
    binaries = ("psql", "pg_isready")
    env_label = "PostgreSQL Environment"

    settings: PostgresSettings

    def installed_version(self) -> Optional[str]:
        if not self.is_installed():
            return None
        r = self.host.run(["psql", "--version"])
        # "psql (PostgreSQL) 15.5 (Debian 15.5-0+deb12u1)"
        parts = r.stdout.split()
        if r.returncode != 0 or len(parts) < 3:
            return None
        return ".".join(parts[2].split(".")[:2])

    def is_running(self) -> bool:
        return self.host.run(["pg_isready"]).returncode == 0

    def _psql_as_postgres(self, *args: str):
        return self._sudo("-u", "postgres", *args) if self.host.which("sudo") else self.host.run(list(args))

    def role_exists(self) -> bool:
        user = self.settings.db_user.replace("'", "''")
        r = self._psql_as_postgres(
            "psql", "-tAc", f"SELECT 1 FROM pg_roles WHERE rolname='{user}'"
        )
        return r.stdout.strip() == "1"

    def database_exists(self) -> bool:
        r = self._psql_as_postgres("psql", "-lqt")
        names = {line.split("|")[0].strip() for line in r.stdout.splitlines()}
        return self.settings.db_name in names

    def pg_hba_path(self) -> Optional[Path]:
        version = self.installed_version()
        if not version:
            return None
        major = version.split(".")[0]
        return Path(f"/etc/postgresql/{major}/main/pg_hba.conf")

    def _patch_pg_hba(self, text: str) -> str:
        rule = f"local   all             {self.settings.db_user:<31} trust"
        block = [f"{CONFIG_MARKER} - local development", rule]
        lines = text.splitlines()
        for i, line in enumerate(lines):
            if line.startswith("# TYPE"):
                lines[i + 1:i + 1] = block
                break
        else:
            lines[0:0] = block
        return "\n".join(lines) + "\n"

    def configure(self) -> None:
        user, db = self.settings.db_user, self.settings.db_name

        if self.role_exists():
            logger.info("Database user '%s' already exists", user)
        else:
            r = self._psql_as_postgres("createuser", "--superuser", user)
            if r.returncode != 0:
                raise ServiceError(f"Could not create database user {user}: {r.stderr.strip()}")
            logger.info("Created database user '%s'", user)

        if self.database_exists():
            logger.info("Database '%s' already exists", db)
        else:
            r = self._psql_as_postgres("createdb", "-O", user, db)
            if r.returncode != 0:
                raise ServiceError(f"Could not create database {db}: {r.stderr.strip()}")
            logger.info("Created database '%s'", db)

        hba = self.pg_hba_path()
        if hba is None or not self._root_file_exists(hba):
            return
        text = self._read_root_file(hba)
        if CONFIG_MARKER in text:
            logger.info("Local authentication already configured")
            return
        self._write_root_file(hba, self._patch_pg_hba(text))
        self.host.service_control("reload", self.unit)
        logger.info("Configured local trust authentication in %s", hba)

    def env_exports(self) -> dict[str, str]:
        s = self.settings
        return {
            "PGHOST": "localhost",
            "PGPORT": str(s.port),
            "PGUSER": s.db_user,
            "PGDATABASE": s.db_name,
            "DATABASE_URL": f"postgresql://{s.db_user}@localhost:{s.port}/{s.db_name}",
        }

    def _verify_details(self) -> dict[str, str]:
        s = self.settings
        r = self.host.run(["psql", "-U", s.db_user, "-d", s.db_name, "-c", "SELECT 1;"])
        return {
            "host": "localhost",
            "port": str(s.port),
            "user": s.db_user,
            "database": s.db_name,
            "connection": "working" if r.returncode == 0 else "requires password or configuration",
        }


class RedisService(PackageService):
    """Redis bound to localhost and supervised by systemd."""

    name = "Redis"
    unit = "redis-server"
    packages = ("redis-server", "redis-tools")
    binaries = ("redis-server", "redis-cli")
    env_label = "Redis Environment"
    start_action = "restart"
    configure_before_start = True

    settings: RedisSettings

    def _cli(self, *args: str):
        return self.host.run(["redis-cli", "-p", str(self.settings.port), *args])

    def installed_version(self) -> Optional[str]:
        if not self.is_installed():
            return None
        r = self.host.run(["redis-server", "--version"])
        # "Redis server v=7.0.15 sha=00000000:0 malloc=jemalloc-5.3.0 bits=64 build=..."
        for token in r.stdout.split():
            if token.startswith("v="):
                return token[2:]
        return None

    def is_running(self) -> bool:
        return self._cli("ping").stdout.strip() == "PONG"

    def config_path(self) -> Optional[Path]:
        for candidate in self.settings.config_candidates:
            if self._root_file_exists(candidate):
                return candidate
        return None

    @staticmethod
    def _patch_conf(text: str) -> str:
        lines = text.splitlines()
        has_local_bind = any(line.startswith("bind 127.0.0.1") for line in lines)
        patched = []
        for line in lines:
            if line.startswith("supervised no"):
                line = "supervised systemd"
            elif line.startswith("bind ") and not has_local_bind:
                line = "bind 127.0.0.1 ::1"
            patched.append(line)
        patched.extend(["", CONFIG_MARKER])
        return "\n".join(patched) + "\n"

    def configure(self) -> None:
        conf = self.config_path()
        if conf is None:
            logger.info("Redis config not found, using default configuration")
            return
        text = self._read_root_file(conf)
        if CONFIG_MARKER in text:
            logger.info("Redis already configured for development")
            return
        self._write_root_file(conf, self._patch_conf(text))
        logger.info("Applied development configuration to %s", conf)

    def env_exports(self) -> dict[str, str]:
        port = self.settings.port
        return {
            "REDIS_HOST": "localhost",
            "REDIS_PORT": str(port),
            "REDIS_URL": f"redis://localhost:{port}",
        }

    def _info_field(self, section: str, field: str) -> str:
        for line in self._cli("info", section).stdout.splitlines():
            key, _, value = line.strip().partition(":")
            if key == field:
                return value.strip()
        return "unknown"

    def smoke_test(self) -> None:
        """SET, GET and DEL a throwaway key.

        Raises:
            ServiceError: The value did not round-trip.
        """
        key = "_piprov_setup_test"
        self._cli("SET", key, "success", "EX", "10")
        value = self._cli("GET", key).stdout.strip()
        self._cli("DEL", key)
        if value != "success":
            raise ServiceError("Redis read/write test failed")

    def _verify_details(self) -> dict[str, str]:
        self.smoke_test()
        return {
            "host": "localhost",
            "port": str(self.settings.port),
            "ping": "PONG",
            "memory": self._info_field("memory", "used_memory_human"),
            "clients": self._info_field("clients", "connected_clients"),
        }
