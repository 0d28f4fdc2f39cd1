"""Tests for env scripts and shell-profile patching."""

from __future__ import annotations

import os
from pathlib import Path

from piprov.profile import (
    ensure_sourced,
    marker_for,
    render_env_script,
    shell_path,
    source_line,
    update_profiles,
    write_env_script,
)


class TestRenderEnvScript:
    """Tests for render_env_script()."""

    def test_exports_in_order(self) -> None:
        """Each variable becomes a quoted export line."""
        text = render_env_script("Redis Environment Setup", {"REDIS_HOST": "localhost", "REDIS_PORT": "6379"})
        lines = text.splitlines()
        assert lines[0] == "#!/bin/bash"
        assert lines.index('export REDIS_HOST="localhost"') < lines.index('export REDIS_PORT="6379"')

    def test_extra_block(self) -> None:
        """Extra shell text is appended after the exports."""
        text = render_env_script("T", {"A": "1"}, extra="alias psql-dev='psql -d devdb'\n")
        assert text.endswith("alias psql-dev='psql -d devdb'\n")


class TestWriteEnvScript:
    """Tests for write_env_script()."""

    def test_writes_executable(self, tmp_path: Path) -> None:
        """New scripts are written and made executable."""
        path = tmp_path / ".go_env.sh"
        assert write_env_script(path, "export A=1\n") is True
        assert path.read_text() == "export A=1\n"
        assert os.access(path, os.X_OK)

    def test_unchanged_content_not_rewritten(self, tmp_path: Path) -> None:
        """Same content is a no-op."""
        path = tmp_path / ".go_env.sh"
        write_env_script(path, "export A=1\n")
        assert write_env_script(path, "export A=1\n") is False

    def test_changed_content_replaced(self, tmp_path: Path) -> None:
        """New content replaces the old file with no leftovers."""
        path = tmp_path / ".go_env.sh"
        write_env_script(path, "export A=1\n")
        assert write_env_script(path, "export A=2\n") is True
        assert path.read_text() == "export A=2\n"
        assert [p.name for p in tmp_path.iterdir()] == [".go_env.sh"]


class TestShellPath:
    """Tests for shell_path() and source_line()."""

    def test_under_home(self) -> None:
        assert shell_path(Path.home() / ".go_env.sh") == "$HOME/.go_env.sh"

    def test_outside_home(self) -> None:
        assert shell_path(Path("/opt/env.sh")) == "/opt/env.sh"

    def test_source_line(self) -> None:
        assert source_line(Path("/opt/env.sh")) == '[ -f "/opt/env.sh" ] && source "/opt/env.sh"'


class TestEnsureSourced:
    """Tests for ensure_sourced() and update_profiles()."""

    def test_appends_block_once(self, home: Path) -> None:
        """A second call leaves the profile unchanged."""
        bashrc = home / ".bashrc"
        script = home / ".redis_env.sh"

        assert ensure_sourced(bashrc, script, "Redis Environment") is True
        first = bashrc.read_text()
        assert ensure_sourced(bashrc, script, "Redis Environment") is False

        assert bashrc.read_text() == first
        assert first.startswith("# bashrc\nexport EDITOR=vi\n")
        assert first.count(marker_for("Redis Environment")) == 1

    def test_existing_mention_counts(self, home: Path) -> None:
        """A hand-written sourcing line for the same script is respected."""
        bashrc = home / ".bashrc"
        bashrc.write_text('source "$HOME/.go_env.sh"\n')

        assert ensure_sourced(bashrc, home / ".go_env.sh", "Go Environment") is False

    def test_missing_trailing_newline(self, home: Path) -> None:
        """The block starts on its own line."""
        profile = home / ".profile"
        profile.write_text("export A=1")

        ensure_sourced(profile, home / ".go_env.sh", "Go Environment")

        assert profile.read_text().splitlines()[0] == "export A=1"

    def test_update_profiles_skips_missing(self, profiles: list[Path], home: Path) -> None:
        """Only profiles that exist are touched; none are created."""
        updated = update_profiles(profiles, home / ".go_env.sh", "Go Environment")

        assert updated == [home / ".bashrc"]
        assert not (home / ".zshrc").exists()
        assert not (home / ".profile").exists()
