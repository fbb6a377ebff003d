"""Inspection commands: catalog, systemd-unit."""

from __future__ import annotations

import json
import sys

import click
from rich.table import Table

from ..errors import PassbridgeError
from ._common import config_or_exit, console, err_console


def register_catalog_commands(main: click.Group) -> None:
    """Register the catalog and systemd-unit commands."""

    @main.command("catalog")
    @click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False))
    @click.option("--store", default=None, type=click.Path(file_okay=False),
                  help="Password store location.")
    @click.option("--json-out", is_flag=True, help="Print the catalog as JSON.")
    def catalog_cmd(config_path, store, json_out):
        """Show what the bridge would index, without encrypting anything.

        Lists identities only. Secret content is never printed.
        """
        from ..catalog import build_catalog

        config = config_or_exit(config_path, store=store)
        try:
            build = build_catalog(config.store)
        except PassbridgeError as exc:
            err_console.print(f"[bold red]Catalog failed:[/] {exc}")
            sys.exit(1)

        if json_out:
            click.echo(json.dumps({
                "recipients": list(build.recipients),
                "entries": [entry.model_dump() for entry in build.entries],
            }, indent=2, ensure_ascii=False))
            return

        table = Table(title=f"{config.store} ({len(build.entries)} secrets)")
        table.add_column("Path", style="cyan")
        table.add_column("Domain")
        table.add_column("Username", style="bold")
        table.add_column("Normalized", style="dim")
        for entry in build.entries:
            table.add_row(entry.path, entry.domain, entry.username, entry.username_normalized)
        console.print(table)
        console.print(f"Recipients: {', '.join(build.recipients)}")

    @main.command("systemd-unit")
    @click.option("--exec-path", default=None, help="passbridge executable for ExecStart.")
    @click.option("--install", is_flag=True, help="Write the unit to ~/.config/systemd/user.")
    @click.option("--enable", is_flag=True, help="With --install: enable and start it.")
    def systemd_unit_cmd(exec_path, install, enable):
        """Print (or install) a systemd user unit.

        `systemctl --user reload passbridge` then triggers a rebuild.
        """
        from ..systemd import generate_unit_file, install_unit, systemd_available

        if not install:
            click.echo(generate_unit_file(exec_path))
            return
        if not systemd_available():
            err_console.print("[red]systemd user session not available.[/]")
            sys.exit(1)
        path = install_unit(exec_path=exec_path, enable=enable)
        console.print(f"\n  [green]Unit installed:[/] {path}\n")
