"""Relay commands: relays list, add, remove."""

from __future__ import annotations

from pathlib import Path

import click

from ..config import load_settings, save_settings
from ._common import console, fail, home_option


def _normalize(url: str) -> str:
    url = url.strip().rstrip("/")
    if not url.startswith(("wss://", "ws://")):
        raise click.BadParameter("relay URLs must start with wss:// or ws://")
    return url


def register_relays_commands(main: click.Group) -> None:
    """Register the relays command group."""

    @main.group()
    def relays():
        """Manage the relays lists are fetched from and published to."""

    @relays.command("list")
    @home_option
    def relays_list(home):
        """Show configured relays."""
        settings = load_settings(Path(home))
        if not settings.relays:
            console.print("[yellow]No relays configured.[/]")
            return
        for url in settings.relays:
            console.print(f"  [cyan]{url}[/]")
        console.print(
            f"\n  [dim]timeout {settings.relay_timeout}s, "
            f"{settings.relay_concurrency} at once, "
            f"{settings.page_size} events/page[/]"
        )

    @relays.command("add")
    @click.argument("url")
    @home_option
    def relays_add(url, home):
        """Add a relay."""
        url = _normalize(url)
        settings = load_settings(Path(home))
        if url in settings.relays:
            console.print(f"  [dim]{url} already configured.[/]")
            return
        settings.relays.append(url)
        path = save_settings(settings, Path(home))
        console.print(f"  [green]Added[/] {url} [dim]({path})[/]")

    @relays.command("remove")
    @click.argument("url")
    @home_option
    def relays_remove(url, home):
        """Remove a relay."""
        url = _normalize(url)
        settings = load_settings(Path(home))
        if url not in settings.relays:
            fail(f"Relay not configured: {url}")
        settings.relays.remove(url)
        save_settings(settings, Path(home))
        console.print(f"  [green]Removed[/] {url}")
