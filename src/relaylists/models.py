"""
Pydantic models for lists, snapshots, and folder metadata.

A snapshot is what one tier believes a list looks like. Snapshots from
different tiers carry their own ``last_modified`` and are never compared
by timestamp; the merge engine decides how they combine.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

ROOT_FOLDER = ""


def unix_now() -> int:
    """Current time as integer unix seconds."""
    return int(time.time())


class ListItem(BaseModel):
    """One entry of a list, identified by ``id``.

    Attributes:
        id: Stable identity (a pubkey, event id, hashtag ...).
        fields: Schema-declared payload such as relay hint or petname.
        is_private: Which encryption partition the item belongs to.
        added_at: When the item was added or discovered.
        set_id: Network-level sub-list (``d`` tag); ``""`` is the root list.
    """

    id: str
    fields: dict[str, str] = Field(default_factory=dict)
    is_private: bool = False
    added_at: int = Field(default_factory=unix_now)
    set_id: str = ROOT_FOLDER

    def same_content(self, other: "ListItem") -> bool:
        """Compare everything except the timestamp."""
        return (
            self.id == other.id
            and self.fields == other.fields
            and self.is_private == other.is_private
            and self.set_id == other.set_id
        )


class OpaquePrivateBlob(BaseModel):
    """Private content this process could not decrypt.

    Kept byte-for-byte and re-emitted unchanged on the next publish.
    """

    set_id: str = ROOT_FOLDER
    ciphertext: str
    created_at: int = 0


class ListSet(BaseModel):
    """Metadata for one network-level sub-list."""

    d_tag: str = ROOT_FOLDER
    title: str = ""
    extra_tags: list[list[str]] = Field(default_factory=list)


class ListSnapshot(BaseModel):
    """Materialized state of one tier or of a merge result."""

    items: list[ListItem] = Field(default_factory=list)
    last_modified: int = 0
    sets: list[ListSet] = Field(default_factory=list)
    opaque: list[OpaquePrivateBlob] = Field(default_factory=list)
    tombstones: list[str] = Field(default_factory=list)
    pending_publish: bool = False
    extra: dict[str, Any] = Field(default_factory=dict)

    def item_ids(self) -> list[str]:
        """Item ids in snapshot order."""
        return [item.id for item in self.items]

    def get(self, item_id: str) -> Optional[ListItem]:
        """Look up an item by id."""
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def get_set(self, d_tag: str) -> Optional[ListSet]:
        """Look up sub-list metadata by ``d`` tag."""
        for list_set in self.sets:
            if list_set.d_tag == d_tag:
                return list_set
        return None

    def set_ids(self) -> list[str]:
        """Every ``d`` tag referenced by sets, items, or opaque blobs."""
        seen: list[str] = []
        for d_tag in (
            [s.d_tag for s in self.sets]
            + [i.set_id for i in self.items]
            + [b.set_id for b in self.opaque]
        ):
            if d_tag not in seen:
                seen.append(d_tag)
        return seen

    def content_equals(self, other: "ListSnapshot") -> bool:
        """True when both snapshots would serialize to the same document.

        ``last_modified`` is ignored; it changes on every write.
        """
        return self.model_dump(exclude={"last_modified"}) == other.model_dump(
            exclude={"last_modified"}
        )


class FetchResult(BaseModel):
    """Deduplicated union of whatever the relays returned."""

    items: list[ListItem] = Field(default_factory=list)
    had_private_partition_but_could_not_decrypt: bool = False
    opaque: list[OpaquePrivateBlob] = Field(default_factory=list)
    sets: list[ListSet] = Field(default_factory=list)
    decrypted_sets: list[str] = Field(default_factory=list)
    relays_ok: list[str] = Field(default_factory=list)
    relays_failed: list[str] = Field(default_factory=list)


class PublishReport(BaseModel):
    """Outcome of publishing a list to the relay set."""

    event_ids: list[str] = Field(default_factory=list)
    accepted: dict[str, bool] = Field(default_factory=dict)

    @property
    def any_accepted(self) -> bool:
        return any(self.accepted.values())


class Folder(BaseModel):
    """A local folder grouping list items."""

    id: str
    name: str
    created_at: int = Field(default_factory=unix_now)
    order: int = 0


class MemberAssignment(BaseModel):
    """Placement of one item inside a folder (``""`` = root)."""

    item_id: str
    folder_id: str = ROOT_FOLDER
    order: int = 0


class RootOrderType(str, Enum):
    """Kinds of entries interleaved at the root level."""

    FOLDER = "folder"
    MEMBER = "member"


class RootOrderItem(BaseModel):
    """One entry of the mixed folder/member root display order."""

    type: RootOrderType
    id: str


class FolderExport(BaseModel):
    """A folder expressed as a network-level sub-list."""

    d_tag: str
    title: str
    member_ids: list[str] = Field(default_factory=list)


class FolderChange(BaseModel):
    """Announcement that folder metadata changed."""

    action: Literal["created", "renamed", "deleted", "moved", "cleaned"]
    folder_id: str = ROOT_FOLDER
    item_ids: list[str] = Field(default_factory=list)


class SyncReport(BaseModel):
    """Summary of one synchronization call."""

    list_name: str
    account: str
    item_count: int = 0
    added_from_network: list[str] = Field(default_factory=list)
    suppressed_by_tombstone: list[str] = Field(default_factory=list)
    wrote_file: bool = False
    relays_ok: list[str] = Field(default_factory=list)
    relays_failed: list[str] = Field(default_factory=list)
    opaque_sets: list[str] = Field(default_factory=list)
    orphans_removed: int = 0
    published: Optional[PublishReport] = None
    from_cache: bool = False
