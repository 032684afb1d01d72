"""Shared utilities for all CLI command modules.

Provides the Rich console instance, the registry builder used by every
command, and the table renderers for lists and folders.
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .. import RELAYLISTS_HOME
from ..accounts import Account, AccountRegistry
from ..config import load_settings
from ..errors import NotAuthenticatedError, StorageIOError
from ..models import ListSnapshot

console = Console()
logger = logging.getLogger("relaylists.cli")

PUBKEY_RE = re.compile(r"^[0-9a-f]{64}$")


def validate_pubkey(ctx, param, value):
    """Click callback: accept only 64-char lowercase hex pubkeys."""
    if value is None:
        return value
    value = value.strip().lower()
    if not PUBKEY_RE.match(value):
        raise click.BadParameter("expected a 64-character hex public key")
    return value


def home_option(func):
    return click.option(
        "--home", default=RELAYLISTS_HOME, type=click.Path(), help="relaylists home directory."
    )(func)


def account_option(func):
    return click.option(
        "--account",
        "account",
        required=True,
        callback=validate_pubkey,
        help="Hex public key of the list owner.",
    )(func)


def build_registry(home: str, pubkey: str) -> AccountRegistry:
    """Registry with a read-only account (no signer, no cipher)."""
    home_path = Path(home).expanduser()
    registry = AccountRegistry(home_path, load_settings(home_path))
    registry.activate(Account(pubkey=pubkey))
    return registry


def fail(message: str, code: int = 1) -> None:
    console.print(f"[bold red]{message}[/]")
    sys.exit(code)


def handle_fatal(exc: Exception) -> None:
    """Map account-wide failures to exit codes."""
    if isinstance(exc, StorageIOError):
        fail(f"Local storage unavailable: {exc}", 2)
    if isinstance(exc, NotAuthenticatedError):
        fail(f"Not authenticated: {exc}", 3)
    raise exc


def items_table(snapshot: ListSnapshot, title: str) -> Table:
    """Render list items as a Rich table."""
    table = Table(title=title, show_lines=False)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Id", style="cyan")
    table.add_column("Set")
    table.add_column("Private")
    table.add_column("Fields", style="dim")
    for index, item in enumerate(snapshot.items, start=1):
        table.add_row(
            str(index),
            item.id[:16] + ("…" if len(item.id) > 16 else ""),
            item.set_id or "[dim]root[/]",
            "[yellow]yes[/]" if item.is_private else "no",
            ", ".join(f"{k}={v}" for k, v in item.fields.items()),
        )
    return table
