"""
piprov CLI — one command per provisioning tool.

The main Click group loads configuration and the host adapter once
and hands them to every command through ``ctx.obj``. Tests pre-fill
``ctx.obj`` with a fake host and a temporary config.

Entry point: piprov.cli:main
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from .. import __version__
from ._common import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="piprov")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
@click.option(
    "--config", "config_path", default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file (default: ~/.piprov/config.yaml).",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, config_path: Optional[Path]):
    """piprov — provision a disposable single-board server.

    Every command detects current state, converges it and verifies
    the result. Rerun any of them at any time.
    """
    from ..config import load_config
    from ..host import SystemHost

    setup_logging(verbose)
    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        ctx.obj["config"] = load_config(config_path)
    if "host" not in ctx.obj:
        ctx.obj["host"] = SystemHost(timeout=ctx.obj["config"].go.http_timeout)


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .go import register_go_commands
from .vault import register_vault_commands
from .services import register_service_commands
from .preflight import register_preflight_commands

register_go_commands(main)
register_vault_commands(main)
register_service_commands(main)
register_preflight_commands(main)
