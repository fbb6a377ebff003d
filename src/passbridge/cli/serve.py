"""Server commands: serve, reload, stop, status."""

from __future__ import annotations

import json
import signal
import sys
from pathlib import Path

import click
from rich.markup import escape
from rich.panel import Panel

from ..errors import PassbridgeError
from ._common import config_or_exit, console, err_console, home_option


def register_serve_commands(main: click.Group) -> None:
    """Register the server lifecycle commands."""

    @main.command("serve")
    @click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False),
                  help="YAML config file (default: <home>/config.yaml).")
    @click.option("--store", default=None, type=click.Path(file_okay=False),
                  help="Password store location.")
    @click.option("--home", default=None, type=click.Path(file_okay=False),
                  help="passbridge home (PID file, logs).")
    @click.option("--host", default=None, help="Address to listen on (default: 127.0.0.1).")
    @click.option("--port", default=None, type=int, help="Port to listen on (default: 7277).")
    @click.option("--gpg", default=None, help="gpg command (default: gpg).")
    @click.option("--workers", default=None, type=int, help="Parallel re-encode workers.")
    def serve(config_path, store, home, host, port, gpg, workers):
        """Build the snapshot and serve it until stopped.

        Send SIGUSR1 (or run `passbridge reload`) after the store changes
        to rebuild without downtime.
        """
        from ..daemon import BridgeService, is_running

        config = config_or_exit(
            config_path, store=store, home=home, host=host, port=port,
            gpg=gpg, workers=workers,
        )
        if is_running(config.home):
            console.print("[yellow]passbridge is already running.[/]")
            sys.exit(0)

        try:
            svc = BridgeService(config)
            svc.setup_logging()
            svc.start()
        except (PassbridgeError, OSError) as exc:
            err_console.print(f"[bold red]Failed to start:[/] {exc}")
            sys.exit(1)

        host, port = svc.address
        console.print(f"\n  [green]passbridge serving[/] on [cyan]http://{host}:{port}[/]")
        console.print(f"  Store: {config.store}")
        console.print(f"  Secrets: {len(svc.registry.current())}")
        console.print(f"  Log: {config.log_file}")
        console.print("  [dim]SIGUSR1 reloads, Ctrl+C stops[/]\n")
        svc.run_forever()

    @main.command("reload")
    @home_option
    def reload_cmd(home: str):
        """Ask the running server to rebuild its snapshot."""
        from ..daemon import signal_reload

        pid = signal_reload(Path(home).expanduser())
        if pid is None:
            console.print("[yellow]passbridge is not running.[/]")
            sys.exit(1)
        console.print(f"\n  [green]Reload requested[/] (PID {pid}); see the log for the outcome.\n")

    @main.command("stop")
    @home_option
    def stop_cmd(home: str):
        """Stop the running server."""
        from ..daemon import send_signal

        pid = send_signal(signal.SIGTERM, Path(home).expanduser())
        if pid is None:
            console.print("[yellow]passbridge is not running.[/]")
            return
        console.print(f"\n  [green]Sent SIGTERM to passbridge (PID {pid})[/]\n")

    @main.command("status")
    @home_option
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def status_cmd(home: str, json_out: bool):
        """Show whether the server is running and what it serves."""
        from ..daemon import read_pid, read_status

        home_path = Path(home).expanduser()
        pid = read_pid(home_path)
        status = read_status(home_path) if pid is not None else None
        if json_out:
            click.echo(json.dumps({**(status or {}), "running": pid is not None, "pid": pid}))
            return
        if pid is None:
            console.print("\n  [yellow]passbridge is not running.[/]\n")
            return

        lines = [f"PID: [bold]{pid}[/]", f"Home: {home_path}"]
        if status:
            lines += [
                f"Address: [cyan]{status.get('address', '?')}[/]",
                f"Store: {escape(str(status.get('store', '?')))}",
                f"Generation: [bold]{status.get('generation', '?')}[/]"
                f" ({status.get('secrets', 0)} secrets, built {status.get('built_at') or '?'})",
                f"Reloads: [green]{status.get('reloads_ok', 0)} ok[/],"
                f" [red]{status.get('reloads_failed', 0)} failed[/]",
                f"Last reload: {status.get('last_reload') or '[dim]never[/]'}",
            ]
        lines.append(f"Log: {home_path / 'logs' / 'passbridge.log'}")
        console.print()
        console.print(
            Panel(
                "\n".join(lines),
                title="[green]passbridge running[/]",
                border_style="green",
            )
        )

        errors = (status or {}).get("recent_errors", [])
        if errors:
            console.print(f"\n[yellow]Recent errors ({len(errors)}):[/]")
            for err in errors[-5:]:
                console.print(f"  [dim]{escape(err)}[/]")
        console.print()
