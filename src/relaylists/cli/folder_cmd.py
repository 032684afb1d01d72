"""Folder commands: folder create, rename, delete, list, move."""

from __future__ import annotations

import click
from rich.table import Table

from ..models import ROOT_FOLDER, RootOrderType
from ..schema import SCHEMAS
from ._common import account_option, build_registry, console, fail, home_option


def _folders(home, account, list_name):
    return build_registry(home, account).orchestrator(list_name).folders


def _list_option(func):
    return click.option(
        "--list",
        "list_name",
        type=click.Choice(sorted(SCHEMAS)),
        default="tribes",
        show_default=True,
        help="List the folders belong to.",
    )(func)


def register_folder_commands(main: click.Group) -> None:
    """Register the folder command group."""

    @main.group()
    def folder():
        """Organize list items into local folders."""

    @folder.command("create")
    @click.argument("name")
    @_list_option
    @account_option
    @home_option
    def folder_create(name, list_name, account, home):
        """Create a folder."""
        created = _folders(home, account, list_name).create_folder(name)
        console.print(f"  [green]Created[/] '{created.name}' [dim]({created.id})[/]")

    @folder.command("rename")
    @click.argument("folder_id")
    @click.argument("name")
    @_list_option
    @account_option
    @home_option
    def folder_rename(folder_id, name, list_name, account, home):
        """Rename a folder."""
        try:
            _folders(home, account, list_name).rename_folder(folder_id, name)
        except KeyError:
            fail(f"Folder not found: {folder_id}")
        console.print(f"  [green]Renamed[/] {folder_id} to '{name}'")

    @folder.command("delete")
    @click.argument("folder_id")
    @_list_option
    @account_option
    @home_option
    def folder_delete(folder_id, list_name, account, home):
        """Delete a folder; its items move to root."""
        service = _folders(home, account, list_name)
        try:
            moved = service.delete_folder(folder_id)
        except KeyError:
            fail(f"Folder not found: {folder_id}")
        console.print(f"  [green]Deleted[/] {folder_id}; {len(moved)} item(s) moved to root")

    @folder.command("list")
    @_list_option
    @account_option
    @home_option
    def folder_list(list_name, account, home):
        """Show folders and the root order."""
        service = _folders(home, account, list_name)
        folders = service.get_folders()
        if not folders:
            console.print("[dim]No folders.[/]")
        else:
            table = Table(title=f"{list_name} folders")
            table.add_column("Id", style="dim")
            table.add_column("Name", style="cyan")
            table.add_column("Items", justify="right")
            for entry in folders:
                table.add_row(entry.id, entry.name, str(service.get_folder_item_count(entry.id)))
            console.print(table)

        root = service.get_root_order()
        if root:
            console.print("\n  [bold]Root order[/]")
            for entry in root:
                marker = "[cyan]folder[/]" if entry.type == RootOrderType.FOLDER else "item  "
                console.print(f"    {marker} {entry.id}")

    @folder.command("move")
    @click.argument("item_id")
    @click.argument("folder_id", required=False, default=ROOT_FOLDER)
    @_list_option
    @account_option
    @home_option
    def folder_move(item_id, folder_id, list_name, account, home):
        """Move an item into a folder (omit FOLDER_ID for root)."""
        try:
            _folders(home, account, list_name).move_member_to_folder(item_id, folder_id)
        except KeyError:
            fail(f"Folder not found: {folder_id}")
        console.print(f"  [green]Moved[/] {item_id} to {folder_id or 'root'}")
