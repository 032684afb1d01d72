"""
List orchestrator -- the only component callers talk to.

One orchestrator serves one (account, list) pair and coordinates the
schema, the three tiers, the merge engine and the folder service:

    sync()   -> read file  ┐
                fetch net  ┘-> merge -> cache (always) -> file (if changed)
                           -> folder assignments + orphan cleanup
                           -> publish (only when asked)

    load()   -> cache if fresh (refresh in background), else sync()

Local edits go straight to the file under the per-list lock and queue a
publish; removals also leave a tombstone so a stale relay copy cannot
resurrect the item on the next sync.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, TypeVar

from .channels import SyncEvents
from .errors import NetworkError, NotAuthenticatedError
from .folders import FolderService
from .merge import MergeEngine
from .models import (
    FetchResult,
    ListItem,
    ListSet,
    ListSnapshot,
    PublishReport,
    SyncReport,
    unix_now,
)
from .protocols import NetworkTier
from .schema import ListSchema
from .tiers.cache import CacheAdapter
from .tiers.file import FileAdapter

logger = logging.getLogger("relaylists.orchestrator")

T = TypeVar("T")


class ListOrchestrator:
    """Coordinates every tier of one list for one account.

    Args:
        schema: List schema.
        account: Owner pubkey.
        cache: Session cache tier.
        file: Durable file tier.
        network: Relay tier.
        folders: Folder and ordering service for this list.
        active_account: Returns the currently active pubkey (or None).
        merge: Merge engine; a default one is created when omitted.
        events: Channels for sync reports.
        cache_ttl: Seconds a cached snapshot counts as fresh.
    """

    def __init__(
        self,
        schema: ListSchema,
        account: str,
        cache: CacheAdapter,
        file: FileAdapter,
        network: NetworkTier,
        folders: FolderService,
        active_account: Callable[[], Optional[str]],
        merge: Optional[MergeEngine] = None,
        events: Optional[SyncEvents] = None,
        cache_ttl: float = 60.0,
    ) -> None:
        self.schema = schema
        self.account = account
        self.cache = cache
        self.file = file
        self.network = network
        self.folders = folders
        self.merge_engine = merge or MergeEngine()
        self.events = events or SyncEvents()
        self.cache_ttl = cache_ttl
        self._active_account = active_account
        self._refresh_task: Optional[asyncio.Task] = None
        self._folder_lock = asyncio.Lock()

    def _require_account(self) -> None:
        active = self._active_account()
        if active is None:
            raise NotAuthenticatedError("No active account")
        if active != self.account:
            raise NotAuthenticatedError(
                f"Account {self.account[:12]} is not the active account"
            )

    # ------------------------------------------------------------------
    # Synchronization
    # ------------------------------------------------------------------

    async def sync(self, publish: bool = False) -> SyncReport:
        """Synchronize the list across all tiers.

        Args:
            publish: Re-publish the canonical snapshot afterwards.

        Returns:
            SyncReport: What happened.

        Raises:
            NotAuthenticatedError: Before any I/O, if no account is active.
            StorageIOError: If the account file cannot be read or written.
        """
        self._require_account()
        logger.info("Synchronizing %s for %s", self.schema.name, self.account[:12])

        network_task = asyncio.create_task(self._fetch_network())
        try:
            # fail fast on a broken file while the fetch is still in flight
            await self.file.read()
            network = await network_task
        except BaseException:
            network_task.cancel()
            await asyncio.gather(network_task, return_exceptions=True)
            raise

        async with self.file.transaction() as tx:
            # re-read so local edits made during the fetch are merged too
            current = await tx.read()
            result = self.merge_engine.merge(current, network, self.cache.get())
            snapshot = result.snapshot
            if result.changed:
                snapshot.last_modified = unix_now()
                await tx.write(snapshot)
            else:
                snapshot.last_modified = current.last_modified

        self.cache.set(snapshot)

        orphans = await self._in_folders(self._reconcile_folders, snapshot.item_ids())

        report = SyncReport(
            list_name=self.schema.name,
            account=self.account,
            item_count=len(snapshot.items),
            added_from_network=result.added,
            suppressed_by_tombstone=result.suppressed,
            wrote_file=result.changed,
            relays_ok=network.relays_ok if network else [],
            relays_failed=network.relays_failed if network else [],
            opaque_sets=[b.set_id for b in snapshot.opaque],
            orphans_removed=orphans,
        )

        if publish:
            try:
                report.published = await self.publish()
            except NetworkError as exc:
                logger.warning("Publish after sync failed; will retry later: %s", exc)

        logger.info(
            "%s synced: %d items (+%d from relays, %d tombstoned)",
            self.schema.name,
            report.item_count,
            len(result.added),
            len(result.suppressed),
        )
        self.events.sync_completed.emit(report)
        return report

    async def _in_folders(self, func: Callable[..., T], *args) -> T:
        """Run folder work off the event loop, one call at a time."""
        async with self._folder_lock:
            return await asyncio.to_thread(func, *args)

    def _reconcile_folders(self, item_ids: list[str]) -> int:
        self.folders.ensure_member_assignments(item_ids)
        return self.folders.cleanup_orphaned_assignments(item_ids)

    async def _fetch_network(self) -> Optional[FetchResult]:
        try:
            return await self.network.fetch()
        except NetworkError as exc:
            logger.warning("Network unavailable for %s: %s", self.schema.name, exc)
            return None

    async def load(self) -> ListSnapshot:
        """Return the list, preferring a fresh cache.

        A fresh cache is returned immediately and a background sync is
        scheduled; otherwise a full sync runs first.
        """
        self._require_account()
        cached = self.cache.get()
        if cached is not None and self.cache.is_fresh(self.cache_ttl):
            self._schedule_refresh()
            return cached
        await self.sync()
        return self.cache.get() or ListSnapshot()

    def _schedule_refresh(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        self._refresh_task = asyncio.create_task(self.sync())
        self._refresh_task.add_done_callback(self._log_refresh_result)

    def _log_refresh_result(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Background refresh of %s failed: %s", self.schema.name, exc)

    async def wait_for_refresh(self) -> None:
        """Wait for a scheduled background refresh, if any."""
        if self._refresh_task is not None:
            await asyncio.gather(self._refresh_task, return_exceptions=True)

    def items(self) -> list[ListItem]:
        """Synchronous view of the cached items."""
        cached = self.cache.get()
        return cached.items if cached else []

    # ------------------------------------------------------------------
    # Local edits
    # ------------------------------------------------------------------

    async def add_item(self, item: ListItem) -> ListSnapshot:
        """Add or replace an item locally and queue a publish."""
        self._require_account()
        item_id = self.schema.get_item_id(item)
        async with self.file.transaction() as tx:
            snapshot = await tx.read()
            existing = [i for i, entry in enumerate(snapshot.items) if entry.id == item_id]
            if existing:
                snapshot.items[existing[0]] = item
            else:
                snapshot.items.append(item)
            if item.set_id and snapshot.get_set(item.set_id) is None:
                snapshot.sets.append(ListSet(d_tag=item.set_id))
            snapshot.tombstones = [t for t in snapshot.tombstones if t != item_id]
            snapshot.pending_publish = True
            await tx.write(snapshot)

        self.cache.set(snapshot)
        await self._in_folders(self.folders.ensure_member_assignment, item_id)
        logger.info("Added %s to %s", item_id[:16], self.schema.name)
        return snapshot

    async def remove_item(self, item_id: str) -> bool:
        """Remove an item locally, tombstone it, and queue a publish.

        Returns:
            bool: False if the item was not in the list.
        """
        self._require_account()
        async with self.file.transaction() as tx:
            snapshot = await tx.read()
            remaining = [i for i in snapshot.items if i.id != item_id]
            if len(remaining) == len(snapshot.items):
                return False
            snapshot.items = remaining
            if item_id not in snapshot.tombstones:
                snapshot.tombstones.append(item_id)
            snapshot.pending_publish = True
            await tx.write(snapshot)

        self.cache.set(snapshot)
        await self._in_folders(self.folders.remove_member_assignment, item_id)
        logger.info("Removed %s from %s", item_id[:16], self.schema.name)
        return True

    async def set_private(self, item_id: str, private: bool) -> bool:
        """Move an item between the public and private partitions."""
        self._require_account()
        async with self.file.transaction() as tx:
            snapshot = await tx.read()
            item = snapshot.get(item_id)
            if item is None:
                return False
            if item.is_private == private:
                return True
            item.is_private = private
            snapshot.pending_publish = True
            await tx.write(snapshot)
        self.cache.set(snapshot)
        return True

    @property
    def has_pending_publish(self) -> bool:
        cached = self.cache.get()
        return bool(cached and cached.pending_publish)

    async def publish(self) -> PublishReport:
        """Publish the durable snapshot to the relays.

        Raises:
            NotAuthenticatedError: If no account is active or no signer.
            NetworkError: If no relay accepted the update.
        """
        self._require_account()
        async with self.file.transaction() as tx:
            snapshot = await tx.read()
            report = await self.network.publish(snapshot)
            if snapshot.pending_publish:
                snapshot.pending_publish = False
                await tx.write(snapshot)
        self.cache.set(snapshot)
        return report

    async def cleanup_orphans(self) -> int:
        """Drop folder assignments for items no longer in the list."""
        self._require_account()
        cached = self.cache.get()
        snapshot = cached if cached is not None else await self.file.read()
        return await self._in_folders(self.folders.cleanup_orphaned_assignments, snapshot.item_ids())
