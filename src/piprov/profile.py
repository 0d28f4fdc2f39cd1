"""Environment scripts and shell-profile sourcing lines.

Each tool writes one ``~/.<tool>_env.sh`` of exports and makes every
existing shell profile source it. Profiles are treated as append-only:
a block is added once, identified by a marker comment, and never
rewritten.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Iterable

logger = logging.getLogger("piprov.profile")

MARKER_SUFFIX = "(managed by piprov)"


def marker_for(label: str) -> str:
    """Marker comment identifying a managed block.

    Args:
        label: Human label such as ``Go Environment``.
    """
    return f"# {label} {MARKER_SUFFIX}"


def render_env_script(title: str, exports: dict[str, str], extra: str = "") -> str:
    """Build the text of an environment-export script.

    Values are written verbatim inside double quotes, so ``$HOME`` and
    ``$PATH`` expand when the script is sourced.
    """
    lines = [
        "#!/bin/bash",
        f"# {title}",
        "# Managed by piprov - rerun the installer to regenerate",
        "",
    ]
    lines.extend(f'export {key}="{value}"' for key, value in exports.items())
    if extra:
        lines.extend(["", extra.rstrip()])
    return "\n".join(lines) + "\n"


def write_env_script(path: Path, content: str) -> bool:
    """Write an environment script if its content changed.

    Args:
        path: Script location.
        content: Full script text.

    Returns:
        bool: True if the file was (re)written.
    """
    if path.is_file() and path.read_text() == content:
        _ensure_executable(path)
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    _ensure_executable(path)
    logger.info("Wrote environment script %s", path)
    return True


def _ensure_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def shell_path(path: Path) -> str:
    """Render a path for a shell script, relative to ``$HOME`` when possible."""
    try:
        return f"$HOME/{path.relative_to(Path.home())}"
    except ValueError:
        return str(path)


def source_line(env_script: Path) -> str:
    """Shell line that sources ``env_script`` if it exists."""
    target = shell_path(env_script)
    return f'[ -f "{target}" ] && source "{target}"'


def ensure_sourced(profile: Path, env_script: Path, label: str) -> bool:
    """Append a sourcing block to a profile unless one is there.

    A profile counts as configured when it contains the marker or any
    mention of the script's filename, so blocks written by older
    versions of these tools are not duplicated.

    Args:
        profile: Shell profile to patch (must exist).
        env_script: Script the profile should source.
        label: Label used in the marker comment.

    Returns:
        bool: True if the profile was modified.
    """
    text = profile.read_text() if profile.exists() else ""
    marker = marker_for(label)
    if marker in text or env_script.name in text:
        return False

    block = f"\n{marker}\n{source_line(env_script)}\n"
    if text and not text.endswith("\n"):
        block = "\n" + block
    with open(profile, "a") as f:
        f.write(block)
    logger.info("Added %s to %s", label, profile.name)
    return True


def update_profiles(profiles: Iterable[Path], env_script: Path, label: str) -> list[Path]:
    """Patch every existing profile; missing profiles are skipped.

    Returns:
        list[Path]: Profiles that were modified.
    """
    updated = []
    for profile in profiles:
        if not profile.is_file():
            continue
        if ensure_sourced(profile, env_script, label):
            updated.append(profile)
    return updated
