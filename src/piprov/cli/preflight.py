"""Preflight command: report the external tools provisioning relies on."""

from __future__ import annotations

import click
from rich.table import Table

from ._common import console


def register_preflight_commands(main: click.Group) -> None:
    """Register the preflight command."""

    @main.command("preflight")
    @click.option("--vault", "for_vault", is_flag=True, help="Require the vault's tools.")
    @click.option("--services", "for_services", is_flag=True, help="Require the database/cache tools.")
    @click.option("--install", is_flag=True, help="Offer to install missing required tools.")
    def preflight_cmd(for_vault: bool, for_services: bool, install: bool):
        """Check which system tools are available.

        Exits 1 if a required tool is missing.
        """
        from ..preflight import auto_install_tool, run_preflight

        result = run_preflight(require_gpg=for_vault, require_services=for_services)

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Tool", width=12)
        table.add_column("Status", width=12)
        table.add_column("Details")

        for check in result.checks:
            if check.installed:
                status_str = "[green]found[/]"
                detail = check.version or check.binary
            elif check.required:
                status_str = "[red]missing[/]"
                detail = f"[red]required[/] {check.install_cmd}"
            else:
                status_str = "[dim]not found[/]"
                detail = f"[dim]optional - {check.install_note}[/]"
            table.add_row(f"  {check.name}", status_str, detail)

        console.print()
        console.print(table)
        console.print()

        if result.optional_missing:
            names = ", ".join(c.name for c in result.optional_missing)
            console.print(f"    [dim]Optional tools not found: {names}[/]")

        if result.all_ok:
            console.print("    [green]Everything looks good![/]")
            return

        still_missing = []
        for check in result.required_missing:
            if install and check.install_cmd and click.confirm(
                f"    Install {check.name} automatically?", default=True,
            ):
                console.print(f"    [dim]Running: {check.install_cmd}[/]")
                if auto_install_tool(check):
                    console.print(f"    [green]{check.name} installed![/]")
                    continue
                console.print("    [red]Auto-install failed.[/]")
            still_missing.append(check)

        if still_missing:
            for check in still_missing:
                console.print(f"    [bold]{check.name}[/]: {check.install_note}")
                if check.install_cmd:
                    console.print(f"    [dim]Install with: {check.install_cmd}[/]")
            raise SystemExit(1)
