"""CLI tests for piprov commands.

Commands run through Click's CliRunner with ``obj`` pre-filled, so the
fake host and temporary config are used instead of the real machine.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from piprov import __version__
from piprov.cli import main

from conftest import FakeHost


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def invoke(runner: CliRunner, host: FakeHost, config):
    def _invoke(*args: str, input: str | None = None):
        return runner.invoke(main, list(args), obj={"config": config, "host": host}, input=input)
    return _invoke


class TestMain:
    """Top-level group behaviour."""

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for name in ("go", "vault", "postgres", "redis", "preflight"):
            assert name in result.output


class TestGoCommand:
    """Tests for ``piprov go``."""

    def test_fresh_install(self, invoke, host: FakeHost) -> None:
        host.publish_go("go1.23.4")

        result = invoke("go")

        assert result.exit_code == 0, result.output
        assert "No previous Go installation found" in result.output
        assert "Installed Go go1.23.4" in result.output
        assert "Go setup complete!" in result.output

    def test_rerun_reports_up_to_date(self, invoke, host: FakeHost) -> None:
        host.publish_go("go1.23.4")
        invoke("go")

        result = invoke("go")

        assert result.exit_code == 0
        assert "already the latest version" in result.output

    def test_failure_exits_1(self, invoke, host: FakeHost) -> None:
        """A fatal error prints the message and exits non-zero."""
        url = host.publish_go("go1.23.4")
        del host.artifacts[url]

        result = invoke("go")

        assert result.exit_code == 1
        assert "✗" in result.output
        assert "Go setup complete!" not in result.output


class TestVaultCommand:
    """Tests for ``piprov vault``."""

    def test_no_subcommand_shows_usage(self, invoke) -> None:
        result = invoke("vault")
        assert result.exit_code == 1
        assert "Usage" in result.output
        assert "backup" in result.output

    def test_unknown_subcommand(self, invoke) -> None:
        result = invoke("vault", "frobnicate")
        assert result.exit_code != 0

    def test_check_with_nothing(self, invoke) -> None:
        result = invoke("vault", "check")
        assert result.exit_code == 0
        assert "SSH directory not found" in result.output
        assert "No backup found" in result.output

    def test_backup_then_check(self, invoke, ssh_dir: Path) -> None:
        result = invoke("vault", "backup")
        assert result.exit_code == 0, result.output
        assert "Backup Complete" in result.output

        result = invoke("vault", "check")
        assert "Backup exists" in result.output
        assert "Private keys found: 1" in result.output

    def test_backup_overwrite_declined(self, invoke, ssh_dir: Path, config) -> None:
        """Answering no is a normal exit, not an error."""
        config.vault.backup_dir.mkdir(parents=True)
        config.vault.archive_path.write_bytes(b"old")

        result = invoke("vault", "backup", input="n\n")

        assert result.exit_code == 0
        assert "Backup cancelled" in result.output
        assert config.vault.archive_path.read_bytes() == b"old"

    def test_backup_without_keys_fails(self, invoke) -> None:
        result = invoke("vault", "backup")
        assert result.exit_code == 1

    def test_restore_confirmed(self, invoke, ssh_dir: Path) -> None:
        invoke("vault", "backup")

        result = invoke("vault", "restore", input="y\n")

        assert result.exit_code == 0, result.output
        assert "Restore Complete" in result.output
        assert "Previous keys saved" in result.output

    def test_restore_wrong_passphrase(self, invoke, host: FakeHost, ssh_dir: Path) -> None:
        invoke("vault", "backup")
        host.entered_passphrase = "nope"

        result = invoke("vault", "restore", input="y\n")

        assert result.exit_code == 1
        assert "wrong password" in result.output

    def test_restore_missing_archive(self, invoke) -> None:
        result = invoke("vault", "restore")
        assert result.exit_code == 1
        assert "Backup not found" in result.output


class TestServiceCommands:
    """Tests for ``piprov postgres`` and ``piprov redis``."""

    def test_update_help(self, invoke, host: FakeHost) -> None:
        result = invoke("postgres", "--update-help")
        assert result.exit_code == 0
        assert "sudo apt-get upgrade postgresql postgresql-contrib" in result.output
        assert host.commands == []

    def test_redis_requires_apt(self, invoke, host: FakeHost) -> None:
        host.tools.discard("apt-get")
        result = invoke("redis")
        assert result.exit_code == 1
        assert "apt-get" in result.output


class TestPreflightCommand:
    """Tests for ``piprov preflight``."""

    @patch("piprov.preflight.shutil.which", return_value=None)
    def test_optional_only(self, mock_which: MagicMock, runner: CliRunner) -> None:
        result = runner.invoke(main, ["preflight"], obj={"config": None, "host": None})
        assert result.exit_code == 0
        assert "Everything looks good" in result.output

    @patch("piprov.preflight.shutil.which", return_value=None)
    def test_vault_requires_gpg(self, mock_which: MagicMock, runner: CliRunner) -> None:
        result = runner.invoke(main, ["preflight", "--vault"], obj={"config": None, "host": None})
        assert result.exit_code == 1
        assert "GnuPG" in result.output

    @patch("piprov.preflight.shutil.which", return_value=None)
    def test_lists_optional_tools_not_found(self, mock_which: MagicMock, runner: CliRunner) -> None:
        """Optional gaps are summarised, required ones are not included."""
        result = runner.invoke(main, ["preflight", "--vault"], obj={"config": None, "host": None})

        summary = next(
            line for line in result.output.splitlines() if "Optional tools not found" in line
        )
        assert "sudo" in summary
        assert "GnuPG" not in summary
