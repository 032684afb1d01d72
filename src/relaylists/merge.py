"""
Merge engine -- one canonical snapshot from three disagreeing tiers.

There is no shared clock between the cache, the file and the relays, so
timestamps are never compared across tiers. Instead:

    1. The file is the source of truth for identity and order.
    2. Network items missing from the file are remote additions and are
       appended in the order received, unless tombstoned.
    3. File items missing from the network are kept. Relays are
       incomplete by nature; only an explicit local removal deletes.
    4. Undecryptable private partitions are kept as opaque blobs.
    5. Same id on both sides with different fields: the file wins.
    6. Tombstones live until a relay answered a cycle after the removal
       was published.

The cache is only a hint and never contributes items.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .models import FetchResult, ListItem, ListSet, ListSnapshot, OpaquePrivateBlob

logger = logging.getLogger("relaylists.merge")


@dataclass
class MergeResult:
    """Outcome of one merge.

    Attributes:
        snapshot: Canonical snapshot.
        added: Ids appended from the network.
        suppressed: Network ids skipped because of a tombstone.
        conflicts: Ids present on both sides with different fields.
        changed: Whether the snapshot differs from the file's content.
    """

    snapshot: ListSnapshot
    added: list[str] = field(default_factory=list)
    suppressed: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    changed: bool = False


class MergeEngine:
    """Reconciles file, network and cache views of a list."""

    def merge(
        self,
        file: ListSnapshot,
        network: Optional[FetchResult],
        cache: Optional[ListSnapshot] = None,
    ) -> MergeResult:
        """Merge tier views into a canonical snapshot.

        Args:
            file: Durable snapshot (source of truth).
            network: Relay union, or None when the network was unavailable.
            cache: Session cache hint; only used for diagnostics.

        Returns:
            MergeResult: The canonical snapshot plus what changed.
        """
        result = MergeResult(snapshot=ListSnapshot())
        items = [item.model_copy(deep=True) for item in file.items]
        by_id: dict[str, ListItem] = {item.id: item for item in items}
        tombstones = set(file.tombstones)

        if network is not None:
            for item in network.items:
                existing = by_id.get(item.id)
                if existing is not None:
                    if not existing.same_content(item):
                        result.conflicts.append(item.id)
                    continue
                if item.id in tombstones:
                    result.suppressed.append(item.id)
                    continue
                copy = item.model_copy(deep=True)
                items.append(copy)
                by_id[copy.id] = copy
                result.added.append(copy.id)

        if result.conflicts:
            logger.info(
                "%d items differ between file and network; keeping file versions",
                len(result.conflicts),
            )
        if cache is not None and set(cache.item_ids()) != set(by_id):
            logger.debug("Cache hint was stale (%d vs %d items)", len(cache.items), len(by_id))

        # a removal still waiting to be published is not reflected remotely yet
        settled = network is not None and bool(network.relays_ok) and not file.pending_publish
        snapshot = ListSnapshot(
            items=items,
            last_modified=file.last_modified,
            sets=self._merge_sets(file.sets, network.sets if network else []),
            opaque=self._merge_opaque(file.opaque, network),
            tombstones=[] if settled else list(file.tombstones),
            pending_publish=file.pending_publish,
            extra=dict(file.extra),
        )
        result.snapshot = snapshot
        result.changed = not snapshot.content_equals(file)
        return result

    @staticmethod
    def _merge_sets(file_sets: list[ListSet], network_sets: list[ListSet]) -> list[ListSet]:
        merged = [s.model_copy(deep=True) for s in file_sets]
        by_tag = {s.d_tag: s for s in merged}
        for remote in network_sets:
            local = by_tag.get(remote.d_tag)
            if local is None:
                copy = remote.model_copy(deep=True)
                merged.append(copy)
                by_tag[copy.d_tag] = copy
                continue
            if not local.title and remote.title:
                local.title = remote.title
            if not local.extra_tags and remote.extra_tags:
                local.extra_tags = [list(t) for t in remote.extra_tags]
        return merged

    @staticmethod
    def _merge_opaque(
        file_blobs: list[OpaquePrivateBlob], network: Optional[FetchResult]
    ) -> list[OpaquePrivateBlob]:
        blobs = {b.set_id: b.model_copy() for b in file_blobs}
        if network is None:
            return list(blobs.values())
        remote = {b.set_id: b for b in network.opaque}
        for d_tag in network.decrypted_sets:
            if d_tag not in remote:
                blobs.pop(d_tag, None)
        for d_tag, blob in remote.items():
            blobs[d_tag] = blob.model_copy()
        return list(blobs.values())
