"""Vault commands: backup, restore, check."""

from __future__ import annotations

import click
from rich.panel import Panel

from ..errors import ProvisionError
from ._common import RULE, confirm, console, fail, human_size, info, step, success


def _vault(obj: dict):
    from ..vault import CredentialVault

    return CredentialVault(obj["host"], obj["config"].vault, confirm=confirm)


def register_vault_commands(main: click.Group) -> None:
    """Register the vault command group."""

    @main.group(invoke_without_command=True)
    @click.pass_context
    def vault(ctx: click.Context):
        """SSH keys backup and restore (AES-256 encrypted).

        The archive lives in $BACKUP_DIR (default ~/ssh_backup) and is
        safe to copy to a USB drive, cloud storage or another machine.
        You will need the password you chose to restore it.

        Examples:

            piprov vault backup

            BACKUP_DIR=/mnt/usb piprov vault restore
        """
        if ctx.invoked_subcommand is None:
            click.echo(ctx.get_help())
            ctx.exit(1)

    @vault.command("backup")
    @click.pass_obj
    def vault_backup(obj: dict):
        """Encrypt and back up SSH keys."""
        v = _vault(obj)
        step("Starting SSH keys backup")
        keys = v.private_keys()
        if keys:
            success(f"Found {len(keys)} private key(s)")
        info("You will be prompted to enter an encryption password")
        info("REMEMBER THIS PASSWORD - you'll need it to restore")

        try:
            outcome = v.backup()
        except ProvisionError as exc:
            fail(exc)

        if outcome.cancelled:
            info("Backup cancelled")
            return

        console.print(Panel(
            f"[bold green]Backup created[/]\n"
            f"Path: [cyan]{outcome.archive_path}[/]\n"
            f"Size: {human_size(outcome.archive_size)}\n"
            f"Files: {', '.join(outcome.files)}\n\n"
            "The file is AES-256 encrypted - safe to store anywhere",
            title="Backup Complete",
            border_style="green",
        ))
        console.print(RULE)

    @vault.command("restore")
    @click.pass_obj
    def vault_restore(obj: dict):
        """Restore SSH keys from the encrypted backup."""
        v = _vault(obj)
        step("Starting SSH keys restore")
        info("Enter the password you used during backup")

        try:
            outcome = v.restore()
        except ProvisionError as exc:
            fail(exc)

        if outcome.cancelled:
            info("Restore cancelled")
            return

        if outcome.previous_copy:
            info(f"Previous keys saved to {outcome.previous_copy}")
        success("Permissions fixed")
        console.print(Panel(
            "[bold green]SSH keys restored[/]\n"
            f"From: [cyan]{outcome.archive_path}[/]\n"
            f"Files: {', '.join(outcome.files)}\n\n"
            "Test with: ssh -T git@github.com",
            title="Restore Complete",
            border_style="green",
        ))
        console.print(RULE)

    @vault.command("check")
    @click.pass_obj
    def vault_check(obj: dict):
        """Show SSH directory and backup status (changes nothing)."""
        status = _vault(obj).check()
        step("Checking SSH backup status")

        if status.ssh_dir_exists:
            success(f"SSH directory exists: {status.ssh_dir}")
            info(f"Private keys found: {len(status.private_keys)}")
            for key in status.private_keys:
                console.print(f"  {key}")
        else:
            info(f"SSH directory not found: {status.ssh_dir}")

        if status.archive_exists:
            success(f"Backup exists: {status.archive_path}")
            info(f"Size: {human_size(status.archive_size)}")
            if status.archive_modified:
                info(f"Date: {status.archive_modified:%Y-%m-%d %H:%M} UTC")
        else:
            info(f"No backup found at: {status.archive_path}")
        console.print(RULE)
