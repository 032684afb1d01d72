"""List commands: lists, sync, show, cleanup."""

from __future__ import annotations

import asyncio

import click
from rich.panel import Panel

from ..errors import ListSyncError
from ..schema import SCHEMAS
from ._common import (
    account_option,
    build_registry,
    console,
    handle_fatal,
    home_option,
    items_table,
)


def _list_argument(func):
    return click.argument("list_name", type=click.Choice(sorted(SCHEMAS)))(func)


def register_sync_commands(main: click.Group) -> None:
    """Register list synchronization commands."""

    @main.command("lists")
    def lists_cmd():
        """Show the built-in list types."""
        for schema in SCHEMAS.values():
            private = "encrypted private items" if schema.encrypt_private_content else "public only"
            console.print(
                f"  [cyan]{schema.name:<10}[/] kind {schema.kind:<6} "
                f"{schema.description} [dim]({private})[/]"
            )

    @main.command("sync")
    @_list_argument
    @account_option
    @home_option
    def sync_cmd(list_name, account, home):
        """Fetch a list from the relays and merge it into the local file."""
        registry = build_registry(home, account)
        orchestrator = registry.orchestrator(list_name)

        console.print(f"\n  Synchronizing [cyan]{list_name}[/]...", end=" ")
        try:
            report = asyncio.run(orchestrator.sync())
        except ListSyncError as exc:
            console.print("[red]failed[/]")
            handle_fatal(exc)
            return
        console.print("[green]done[/]")

        relays = f"{len(report.relays_ok)} ok"
        if report.relays_failed:
            relays += f", [yellow]{len(report.relays_failed)} failed[/]"
        if not report.relays_ok and not report.relays_failed:
            relays = "[yellow]unavailable[/]"
        console.print(
            Panel(
                f"Items: [bold]{report.item_count}[/]\n"
                f"From relays: [green]+{len(report.added_from_network)}[/]\n"
                f"Tombstoned: {len(report.suppressed_by_tombstone)}\n"
                f"Relays: {relays}\n"
                f"Opaque private sets: {len(report.opaque_sets)}\n"
                f"File updated: {'yes' if report.wrote_file else 'no'}",
                title=f"{list_name} sync",
                border_style="cyan",
            )
        )

    @main.command("show")
    @_list_argument
    @account_option
    @home_option
    def show_cmd(list_name, account, home):
        """Print the durable copy of a list."""
        registry = build_registry(home, account)
        orchestrator = registry.orchestrator(list_name)
        try:
            snapshot = asyncio.run(orchestrator.file.read())
        except ListSyncError as exc:
            handle_fatal(exc)
            return

        if not snapshot.items and not snapshot.opaque:
            console.print(f"[dim]No {list_name} stored for this account.[/]")
            return
        console.print(items_table(snapshot, f"{list_name} ({len(snapshot.items)} items)"))
        for blob in snapshot.opaque:
            console.print(
                f"  [yellow]opaque[/] private partition in set "
                f"'{blob.set_id or 'root'}' ({len(blob.ciphertext)} bytes)"
            )
        if snapshot.pending_publish:
            console.print("  [yellow]Local changes not yet published.[/]")

    @main.command("cleanup")
    @_list_argument
    @account_option
    @home_option
    def cleanup_cmd(list_name, account, home):
        """Remove folder assignments for items no longer in the list."""
        registry = build_registry(home, account)
        orchestrator = registry.orchestrator(list_name)
        try:
            removed = asyncio.run(orchestrator.cleanup_orphans())
        except ListSyncError as exc:
            handle_fatal(exc)
            return
        if removed:
            console.print(f"  Removed [bold]{removed}[/] orphaned assignment(s).")
        else:
            console.print("  [green]No orphaned assignments.[/]")
