"""System-level systemd control for package-managed services.

PostgreSQL and Redis ship their own units from apt, so nothing is
installed here: this module only enables, starts and reloads
them through ``sudo systemctl``.

Usage:
    from piprov.systemd import systemctl
    systemctl("enable", "redis-server")
"""

from __future__ import annotations

import logging
import shutil
import subprocess

logger = logging.getLogger("piprov.systemd")

ACTIONS = ("enable", "disable", "start", "stop", "restart", "reload")


def _run(cmd: list[str]) -> subprocess.CompletedProcess:
    """Run a command and capture output.

    Args:
        cmd: Command and arguments.

    Returns:
        CompletedProcess with stdout/stderr.
    """
    return subprocess.run(
        cmd, capture_output=True, text=True, timeout=60,
    )


def _systemctl_cmd(*args: str) -> list[str]:
    """Build a systemctl command, prefixing sudo when available."""
    cmd = ["systemctl", *args]
    if shutil.which("sudo"):
        cmd.insert(0, "sudo")
    return cmd


def systemctl(action: str, unit: str) -> bool:
    """Run a state-changing systemctl action on a unit.

    Args:
        action: One of enable, disable, start, stop, restart, reload.
        unit: Unit name (``postgresql``, ``redis-server``).

    Returns:
        bool: True if systemctl exited 0.
    """
    if action not in ACTIONS:
        raise ValueError(f"Unsupported systemctl action: {action}")
    try:
        r = _run(_systemctl_cmd(action, unit))
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.error("systemctl %s %s failed: %s", action, unit, exc)
        return False
    if r.returncode != 0:
        logger.error("systemctl %s %s: %s", action, unit, r.stderr.strip())
        return False
    logger.info("systemctl %s %s", action, unit)
    return True
