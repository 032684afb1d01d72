"""
relaylists CLI -- inspect and synchronize relay-backed lists.

Each command group lives in its own module and is attached to the main
Click group through a register function.

Entry point: relaylists.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="relaylists")
@click.option("-v", "--verbose", is_flag=True, help="Log sync progress to stderr.")
def main(verbose):
    """relaylists -- tribes, bookmarks and mutes, kept in sync."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .sync_cmd import register_sync_commands
from .relays_cmd import register_relays_commands
from .folder_cmd import register_folder_commands

register_sync_commands(main)
register_relays_commands(main)
register_folder_commands(main)
