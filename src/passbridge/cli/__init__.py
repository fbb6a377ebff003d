"""
passbridge CLI.

The main Click group lives here; each command family registers itself
from its own module.

Entry point: passbridge.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="passbridge")
def main():
    """passbridge — serve a pass(1) store to companion clients.

    Secrets leave the machine exactly as encrypted as they are on disk.
    """


from .serve import register_serve_commands
from .catalog import register_catalog_commands

register_serve_commands(main)
register_catalog_commands(main)
