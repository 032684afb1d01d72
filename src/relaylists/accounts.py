"""
Accounts -- the explicit per-account registry.

There are no process-wide singletons. An ``AccountRegistry`` owns the
session store, the file locks and one orchestrator per (account, list).
Switching accounts pauses every registered component of the old account
that can be paused and resumes the new account's.

Usage:
    registry = AccountRegistry(home, settings)
    registry.activate(Account(pubkey=pk, signer=signer, cipher=cipher))
    tribes = registry.orchestrator("tribes")
    report = await tribes.sync()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .channels import SyncEvents
from .config import SyncSettings, resolve_home
from .errors import ListSyncError, NotAuthenticatedError
from .folders import FolderService, FolderStore
from .merge import MergeEngine
from .orchestrator import ListOrchestrator
from .protocols import Cipher, Pausable, Signer
from .schema import ListSchema, get_schema
from .tiers.cache import CacheAdapter, SessionStore
from .tiers.file import FileAdapter, FileLockRegistry, account_dir
from .tiers.network import ClientFactory, NetworkAdapter

logger = logging.getLogger("relaylists.accounts")


@dataclass
class Account:
    """The identity lists are synchronized for.

    Attributes:
        pubkey: Hex public key; names the account directory.
        signer: Signs published events; None means read-only.
        cipher: Decrypts/encrypts private partitions; None means every
            private partition is opaque on this device.
    """

    pubkey: str
    signer: Optional[Signer] = None
    cipher: Optional[Cipher] = None


class SyncScheduler:
    """Periodic background synchronization of one list.

    Implements ``Pausable`` so the registry can suspend it when the
    active account changes.

    Args:
        orchestrator: The list to keep in sync.
        interval: Seconds between syncs.
    """

    def __init__(self, orchestrator: ListOrchestrator, interval: float = 300.0) -> None:
        self.orchestrator = orchestrator
        self.interval = interval
        self._paused = False
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def pause(self) -> None:
        self._paused = True
        logger.debug("Paused %s scheduler", self.orchestrator.schema.name)

    def resume(self) -> None:
        self._paused = False
        logger.debug("Resumed %s scheduler", self.orchestrator.schema.name)

    def start(self) -> None:
        """Start the loop in the running event loop."""
        if not self.running:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self._paused:
                continue
            try:
                await self.orchestrator.sync()
                self.runs += 1
            except ListSyncError as exc:
                logger.warning(
                    "Scheduled sync of %s failed: %s", self.orchestrator.schema.name, exc
                )


class AccountRegistry:
    """Per-account orchestrators, components, and channels.

    Args:
        home: relaylists home directory.
        settings: Relay and timing settings shared by all lists.
        client_factory: Relay client factory override (tests, proxies).
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        settings: Optional[SyncSettings] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.home = resolve_home(home)
        self.settings = settings or SyncSettings()
        self.store = SessionStore()
        self.locks = FileLockRegistry()
        self.merge_engine = MergeEngine()
        self._client_factory = client_factory
        self._active: Optional[Account] = None
        self._accounts: dict[str, Account] = {}
        self._orchestrators: dict[tuple[str, str], ListOrchestrator] = {}
        self._components: dict[str, list[object]] = {}
        self._events: dict[str, SyncEvents] = {}

    # ------------------------------------------------------------------
    # Active account
    # ------------------------------------------------------------------

    @property
    def active(self) -> Optional[Account]:
        return self._active

    def active_pubkey(self) -> Optional[str]:
        return self._active.pubkey if self._active else None

    def require_active(self) -> Account:
        """Return the active account.

        Raises:
            NotAuthenticatedError: If no account is active.
        """
        if self._active is None:
            raise NotAuthenticatedError("No active account")
        return self._active

    def activate(self, account: Account) -> None:
        """Make an account active and resume its paused components."""
        self._accounts[account.pubkey] = account
        self._active = account
        for component in self._components.get(account.pubkey, []):
            if isinstance(component, Pausable):
                component.resume()
        logger.info("Activated account %s", account.pubkey[:12])

    def switch(self, account: Account) -> None:
        """Pause the current account's components and activate another."""
        if self._active is not None and self._active.pubkey != account.pubkey:
            self._pause_account(self._active.pubkey)
        self.activate(account)

    def logout(self) -> None:
        """Deactivate the current account; its lists stop syncing."""
        if self._active is not None:
            self._pause_account(self._active.pubkey)
            self.store.clear_account(self._active.pubkey)
            logger.info("Logged out %s", self._active.pubkey[:12])
        self._active = None

    def _pause_account(self, pubkey: str) -> None:
        paused = 0
        for component in self._components.get(pubkey, []):
            if isinstance(component, Pausable):
                component.pause()
                paused += 1
        logger.debug("Paused %d components of %s", paused, pubkey[:12])

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def events(self, pubkey: Optional[str] = None) -> SyncEvents:
        """Channels of an account (the active one by default)."""
        key = pubkey or self.require_active().pubkey
        if key not in self._events:
            self._events[key] = SyncEvents()
        return self._events[key]

    def register(self, component: object, pubkey: Optional[str] = None) -> None:
        """Attach a component to an account's lifecycle."""
        key = pubkey or self.require_active().pubkey
        self._components.setdefault(key, []).append(component)

    def components(self, pubkey: Optional[str] = None) -> list[object]:
        key = pubkey or self.require_active().pubkey
        return list(self._components.get(key, []))

    def orchestrator(self, list_name: str) -> ListOrchestrator:
        """The orchestrator for a list of the active account.

        Raises:
            NotAuthenticatedError: If no account is active.
            KeyError: If the list name is unknown.
        """
        account = self.require_active()
        schema = get_schema(list_name)
        key = (account.pubkey, schema.name)
        if key not in self._orchestrators:
            self._orchestrators[key] = self._build(account, schema)
        return self._orchestrators[key]

    def scheduler(self, list_name: str, interval: float = 300.0) -> SyncScheduler:
        """Create and register a background scheduler for a list."""
        scheduler = SyncScheduler(self.orchestrator(list_name), interval)
        self.register(scheduler)
        return scheduler

    def _build(self, account: Account, schema: ListSchema) -> ListOrchestrator:
        events = self.events(account.pubkey)
        folder_path = account_dir(self.home, account.pubkey) / f"{schema.storage_key}.folders.json"
        return ListOrchestrator(
            schema=schema,
            account=account.pubkey,
            cache=CacheAdapter(
                self.store, account.pubkey, schema, legacy_key=f"relaylists_{schema.name}_browser"
            ),
            file=FileAdapter(self.home, account.pubkey, schema, self.locks),
            network=NetworkAdapter(
                schema,
                account.pubkey,
                self.settings,
                cipher=account.cipher,
                signer=account.signer,
                client_factory=self._client_factory,
            ),
            folders=FolderService(FolderStore(folder_path), events.folders_changed),
            active_account=self.active_pubkey,
            merge=self.merge_engine,
            events=events,
            cache_ttl=self.settings.cache_ttl_seconds,
        )
