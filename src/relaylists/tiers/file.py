"""
Durable file tier -- one JSON document per (account, list).

Storage layout:
    ~/.relaylists/accounts/<pubkey>/
    ├── tribes.json              # list document
    ├── tribes.folders.json      # folder metadata (see folders.py)
    └── ...

Document format (version 1):
    {
      "version": 1,
      "kind": 30000,
      "lastModified": 1700000000,
      "sets": [{"d": "", "title": "", "extraTags": []}],
      "items": [{"id": "...", "set": "", "private": false,
                 "addedAt": 1700000000, "tags": [["p", "...", ""]]}],
      "opaque": [{"set": "", "content": "...", "createdAt": 0}],
      "tombstones": ["..."],
      "pendingPublish": false
    }

Top-level fields this version does not know are carried through every
rewrite untouched. Item entries the schema cannot decode are moved to
``unrecognizedItems`` rather than dropped.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from ..errors import StorageIOError
from ..models import ListItem, ListSet, ListSnapshot, OpaquePrivateBlob, unix_now
from ..schema import ListSchema

logger = logging.getLogger("relaylists.tiers.file")

FILE_VERSION = 1
KNOWN_FIELDS = {
    "version",
    "kind",
    "lastModified",
    "sets",
    "items",
    "opaque",
    "tombstones",
    "pendingPublish",
}
UNRECOGNIZED_ITEMS = "unrecognizedItems"


def account_dir(home: Path, account: str) -> Path:
    """Directory holding one account's durable state."""
    return Path(home).expanduser() / "accounts" / account


class FileLockRegistry:
    """One ``asyncio.Lock`` per (account, list) pair.

    Every reader and writer of a list document goes through the same
    lock, so there is never more than one writer per file.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def lock_for(self, account: str, list_name: str) -> asyncio.Lock:
        key = (account, list_name)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]


# ---------------------------------------------------------------------------
# Document <-> snapshot
# ---------------------------------------------------------------------------


def snapshot_to_document(
    snapshot: ListSnapshot, schema: ListSchema, last_modified: int
) -> dict[str, Any]:
    """Serialize a snapshot into the on-disk document."""
    doc: dict[str, Any] = dict(snapshot.extra)
    doc.update(
        {
            "version": FILE_VERSION,
            "kind": schema.kind,
            "lastModified": last_modified,
            "sets": [
                {"d": s.d_tag, "title": s.title, "extraTags": s.extra_tags}
                for s in snapshot.sets
            ],
            "items": [
                {
                    "id": schema.get_item_id(item),
                    "set": item.set_id,
                    "private": item.is_private,
                    "addedAt": item.added_at,
                    "tags": schema.item_to_wire_tags(item),
                }
                for item in snapshot.items
            ],
            "opaque": [
                {"set": b.set_id, "content": b.ciphertext, "createdAt": b.created_at}
                for b in snapshot.opaque
            ],
            "tombstones": list(snapshot.tombstones),
            "pendingPublish": snapshot.pending_publish,
        }
    )
    return doc


def _decode_item(entry: Any, schema: ListSchema) -> Optional[ListItem]:
    if not isinstance(entry, dict):
        return None
    added_at = entry.get("addedAt") if isinstance(entry.get("addedAt"), int) else 0
    decoded = schema.wire_tags_to_items(entry.get("tags") or [], added_at)
    wanted = entry.get("id")
    for item in decoded:
        if wanted is None or item.id == wanted:
            return item.model_copy(
                update={
                    "is_private": bool(entry.get("private", False)),
                    "set_id": str(entry.get("set", "") or ""),
                }
            )
    return None


def document_to_snapshot(doc: dict[str, Any], schema: ListSchema) -> ListSnapshot:
    """Parse an on-disk document, preserving what it cannot interpret."""
    version = doc.get("version", FILE_VERSION)
    if isinstance(version, int) and version > FILE_VERSION:
        logger.warning(
            "%s document has version %s (newer than %s); reading known fields only",
            schema.name,
            version,
            FILE_VERSION,
        )

    extra = {k: v for k, v in doc.items() if k not in KNOWN_FIELDS}
    unrecognized = list(extra.get(UNRECOGNIZED_ITEMS) or [])

    items: list[ListItem] = []
    seen: set[str] = set()
    for entry in doc.get("items") or []:
        item = _decode_item(entry, schema)
        if item is None:
            unrecognized.append(entry)
            continue
        if item.id in seen:
            continue
        seen.add(item.id)
        items.append(item)
    if unrecognized:
        extra[UNRECOGNIZED_ITEMS] = unrecognized

    sets = [
        ListSet(
            d_tag=str(s.get("d", "") or ""),
            title=str(s.get("title", "") or ""),
            extra_tags=[t for t in s.get("extraTags") or [] if isinstance(t, list)],
        )
        for s in doc.get("sets") or []
        if isinstance(s, dict)
    ]
    opaque = [
        OpaquePrivateBlob(
            set_id=str(b.get("set", "") or ""),
            ciphertext=b["content"],
            created_at=int(b.get("createdAt", 0) or 0),
        )
        for b in doc.get("opaque") or []
        if isinstance(b, dict) and isinstance(b.get("content"), str)
    ]

    return ListSnapshot(
        items=items,
        last_modified=int(doc.get("lastModified", 0) or 0),
        sets=sets,
        opaque=opaque,
        tombstones=[t for t in doc.get("tombstones") or [] if isinstance(t, str)],
        pending_publish=bool(doc.get("pendingPublish", False)),
        extra=extra,
    )


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class FileAdapter:
    """File tier for one (account, list).

    Args:
        home: relaylists home directory.
        account: Owner pubkey; names the account directory.
        schema: List schema.
        locks: Shared lock registry; one per process is enough.
    """

    def __init__(
        self,
        home: Path,
        account: str,
        schema: ListSchema,
        locks: Optional[FileLockRegistry] = None,
    ) -> None:
        self.account = account
        self.schema = schema
        self.directory = account_dir(home, account)
        self.path = self.directory / f"{schema.storage_key}.json"
        self._lock = (locks or FileLockRegistry()).lock_for(account, schema.name)

    async def read(self) -> ListSnapshot:
        """Read the durable snapshot.

        Raises:
            StorageIOError: If the account directory or file is inaccessible
                or the document is corrupt.
        """
        async with self._lock:
            return await self._read_unlocked()

    async def write(self, snapshot: ListSnapshot) -> None:
        """Atomically replace the durable snapshot.

        Raises:
            StorageIOError: If the document cannot be written.
        """
        async with self._lock:
            await self._write_unlocked(snapshot)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["FileTransaction"]:
        """Hold the list lock across a read-modify-write."""
        async with self._lock:
            yield FileTransaction(self)

    async def _read_unlocked(self) -> ListSnapshot:
        return await asyncio.to_thread(self._read_sync)

    async def _write_unlocked(self, snapshot: ListSnapshot) -> None:
        await asyncio.to_thread(self._write_sync, snapshot)

    def _read_sync(self) -> ListSnapshot:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            if not self.path.exists():
                return ListSnapshot()
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("Cannot read %s: %s", self.path, exc)
            raise StorageIOError(f"Cannot read {self.path}: {exc}", self.path) from exc

        try:
            doc = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.error("Corrupt list document %s: %s", self.path, exc)
            raise StorageIOError(f"Corrupt list document {self.path}: {exc}", self.path) from exc
        if not isinstance(doc, dict):
            raise StorageIOError(f"List document {self.path} is not an object", self.path)

        return document_to_snapshot(doc, self.schema)

    def _write_sync(self, snapshot: ListSnapshot) -> None:
        doc = snapshot_to_document(snapshot, self.schema, unix_now())
        tmp_path = self.path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(doc, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.error("Cannot write %s: %s", self.path, exc)
            raise StorageIOError(f"Cannot write {self.path}: {exc}", self.path) from exc
        logger.debug("Wrote %d %s items to %s", len(snapshot.items), self.schema.name, self.path)


class FileTransaction:
    """Lock-holding view of a ``FileAdapter`` handed out by ``transaction()``."""

    def __init__(self, adapter: FileAdapter) -> None:
        self._adapter = adapter

    async def read(self) -> ListSnapshot:
        return await self._adapter._read_unlocked()

    async def write(self, snapshot: ListSnapshot) -> None:
        await self._adapter._write_unlocked(snapshot)
