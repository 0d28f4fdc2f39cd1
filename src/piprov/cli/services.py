"""Database and cache commands: postgres, redis."""

from __future__ import annotations

import click
from rich.table import Table

from ..errors import ProvisionError
from ._common import RULE, console, fail, info, step, success


def _run_service(obj: dict, service_cls, settings, update_help: bool) -> None:
    service = service_cls(obj["host"], settings, obj["config"].profiles)

    if update_help:
        info(f"How to update {service.name}:")
        for cmd in service.update_instructions():
            console.print(f"  {cmd}")
        info(f"Afterwards, rerun this command to verify and reconfigure {service.name}")
        return

    step(f"Provisioning {service.name}")
    try:
        report = service.provision()
    except ProvisionError as exc:
        fail(exc)

    success(f"{report.name} version: {report.version}")
    success(f"{report.name} service: running")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="dim")
    table.add_column("Value")
    for key, value in report.details.items():
        table.add_row(key, value)
    console.print(table)

    info(f"Version tracking file: {settings.version_file}")
    info(f"Environment script: {settings.env_script}")
    console.print(RULE)


def register_service_commands(main: click.Group) -> None:
    """Register the postgres and redis commands."""

    @main.command("postgres")
    @click.option("--update-help", is_flag=True, help="Show how to upgrade the packages and exit.")
    @click.pass_obj
    def postgres_cmd(obj: dict, update_help: bool):
        """Install, configure and verify PostgreSQL for local development.

        Creates a superuser role for you and a 'devdb' database, trusts
        local socket logins for that role, and writes ~/.postgresql_env.sh.
        """
        from ..services import PostgresService

        _run_service(obj, PostgresService, obj["config"].postgres, update_help)

    @main.command("redis")
    @click.option("--update-help", is_flag=True, help="Show how to upgrade the packages and exit.")
    @click.pass_obj
    def redis_cmd(obj: dict, update_help: bool):
        """Install, configure and verify Redis for local development.

        Binds Redis to localhost, supervises it with systemd, runs a
        read/write test and writes ~/.redis_env.sh.
        """
        from ..services import RedisService

        _run_service(obj, RedisService, obj["config"].redis, update_help)
