"""Shared utilities for all CLI command modules.

Provides the Rich console, the step/success/info/error message
helpers that every command prints through, and logging setup.
"""

from __future__ import annotations

import logging

import click
from rich.console import Console
from rich.markup import escape

console = Console()

RULE = "━" * 59


def setup_logging(verbose: bool) -> None:
    """Configure root logging for a CLI run."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )


def step(message: str) -> None:
    console.print(f"[blue]→ {escape(message)}[/]")


def success(message: str) -> None:
    console.print(f"[green]✓ {escape(message)}[/]")


def info(message: str) -> None:
    console.print(f"[yellow]ℹ {escape(message)}[/]")


def error(message: str) -> None:
    console.print(f"[red]✗ {escape(message)}[/]")


def human_size(size: int) -> str:
    """Format a byte count like ``ls -lh``.

    Args:
        size: Size in bytes.

    Returns:
        str: e.g. ``4.2K`` or ``1.3M``.
    """
    value = float(size)
    for unit in ("B", "K", "M", "G"):
        if value < 1024 or unit == "G":
            return f"{value:.0f}{unit}" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}G"


def confirm(prompt: str) -> bool:
    """Interactive yes/no, defaulting to no."""
    return click.confirm(prompt, default=False)


def fail(exc: Exception) -> None:
    """Report a fatal error and exit 1."""
    error(str(exc))
    raise SystemExit(1)
