"""Go toolchain command: converge to the latest release."""

from __future__ import annotations

import click
from rich.panel import Panel

from ..errors import ProvisionError
from ..models import ConvergeAction
from ..profile import shell_path
from ._common import RULE, console, fail, info, step, success


def register_go_commands(main: click.Group) -> None:
    """Register the go command."""

    @main.command("go")
    @click.pass_obj
    def go_cmd(obj: dict):
        """Install or update Go to the latest release.

        Downloads the right build for this CPU, unpacks it under
        ~/.local/go, writes ~/.go_env.sh and verifies that the go
        binary runs. Run it anytime to update.

        Examples:

            piprov go

            piprov --verbose go
        """
        from ..go_installer import GoInstaller

        config = obj["config"]
        installer = GoInstaller(obj["host"], config.go, config.profiles)

        step("Fetching latest Go version from go.dev...")
        recorded = installer.read_recorded_version()
        if recorded:
            info(f"Currently installed version: {recorded}")
        else:
            info("No previous Go installation found")

        try:
            report = installer.converge()
        except ProvisionError as exc:
            fail(exc)

        if report.action == ConvergeAction.UP_TO_DATE:
            success(f"Go {report.version} is already the latest version")
        elif report.action == ConvergeAction.UPDATED:
            success(f"Updated Go: {report.previous_version} → {report.version}")
        elif report.action == ConvergeAction.REINSTALLED:
            success(f"Reinstalled Go {report.version}")
        else:
            success(f"Installed Go {report.version}")

        verify = report.verify
        if verify is not None:
            if verify.repaired_permissions:
                info("Fixed executable permission on the go binary")
            success(f"Go version: {verify.version}")
            for key, value in verify.env.items():
                console.print(f"  {key}={value}")

        settings = config.go
        console.print(Panel(
            f"[bold green]Go setup complete![/]\n"
            f"Installation: [cyan]{settings.install_dir}[/]\n"
            f"Version file: [cyan]{settings.version_file}[/]\n"
            f"Environment:  [cyan]{settings.env_script}[/]\n"
            f"GOPATH:       [cyan]{settings.gopath}[/]\n\n"
            f"Use Go in this terminal: [bold]source {shell_path(settings.env_script)}[/]",
            title="Go",
            border_style="green",
        ))
        console.print(RULE)
