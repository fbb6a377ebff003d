"""Shared helpers for CLI command modules."""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console

from .. import BRIDGE_HOME
from ..config import BridgeConfig, load_config
from ..errors import ConfigurationError

console = Console()
err_console = Console(stderr=True)


def config_or_exit(config_path: str | None = None, **overrides) -> BridgeConfig:
    """Load configuration, exiting with status 1 on invalid settings."""
    try:
        return load_config(Path(config_path) if config_path else None, **overrides)
    except ConfigurationError as exc:
        err_console.print(f"[bold red]Configuration error:[/] {exc}")
        raise SystemExit(1)


def home_option(fn):
    """``--home`` option shared by the process-control commands."""
    return click.option(
        "--home",
        default=BRIDGE_HOME,
        type=click.Path(),
        help="passbridge home (PID file, logs).",
    )(fn)
