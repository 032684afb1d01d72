"""
Folders and ordering -- local organization of a list's items.

Folders, item placement and the mixed root order are per-account
metadata. They never touch the network and do not care which tier
currently holds an item; they only see item ids.

Storage layout:
    ~/.relaylists/accounts/<pubkey>/<list>.folders.json
    {
      "folders":     [{"id", "name", "createdAt", "order"}],
      "assignments": [{"itemId", "folderId", "order"}],
      "rootOrder":   [{"type": "folder"|"member", "id"}]
    }

Invariants:
    - at most one assignment per item id
    - an assignment points at an existing folder or at root ("")
    - after any deletion or move the affected folder is renumbered 0..n-1
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import time
from pathlib import Path
from typing import Any, Iterable, Optional

from .channels import Channel
from .errors import ReferentialIntegrityWarning, StorageIOError
from .models import (
    ROOT_FOLDER,
    Folder,
    FolderChange,
    FolderExport,
    MemberAssignment,
    RootOrderItem,
    RootOrderType,
    unix_now,
)

logger = logging.getLogger("relaylists.folders")

FOLDERS_KEY = "folders"
ASSIGNMENTS_KEY = "assignments"
ROOT_ORDER_KEY = "rootOrder"


class FolderStore:
    """Small JSON key/value document for one account's folder metadata.

    Args:
        path: Backing file, or None to keep everything in memory.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self._data: Optional[dict[str, Any]] = None

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        self._data = {}
        if self.path is not None and self.path.exists():
            try:
                loaded = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                raise StorageIOError(f"Cannot read folder metadata {self.path}: {exc}", self.path) from exc
            if isinstance(loaded, dict):
                self._data = loaded
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._load()[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if self._load().pop(key, None) is not None:
            self._flush()

    def _flush(self) -> None:
        if self.path is None:
            return
        tmp_path = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(self._data, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StorageIOError(f"Cannot write folder metadata {self.path}: {exc}", self.path) from exc


def _new_folder_id() -> str:
    return f"folder_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class FolderService:
    """Folder CRUD, item placement, and ordering for one list.

    Args:
        store: Backing metadata document.
        changes: Channel notified after every structural change.
    """

    def __init__(
        self,
        store: FolderStore,
        changes: Optional[Channel[FolderChange]] = None,
    ) -> None:
        self.store = store
        self.changes = changes

    def _notify(self, change: FolderChange) -> None:
        if self.changes is not None:
            self.changes.emit(change)

    # ------------------------------------------------------------------
    # Folder CRUD
    # ------------------------------------------------------------------

    def get_folders(self) -> list[Folder]:
        """All folders sorted by order."""
        raw = self.store.get(FOLDERS_KEY, [])
        folders = [
            Folder(
                id=f["id"],
                name=f.get("name", ""),
                created_at=f.get("createdAt", 0),
                order=f.get("order", 0),
            )
            for f in raw
        ]
        return sorted(folders, key=lambda f: f.order)

    def _save_folders(self, folders: list[Folder]) -> None:
        self.store.set(
            FOLDERS_KEY,
            [
                {"id": f.id, "name": f.name, "createdAt": f.created_at, "order": f.order}
                for f in folders
            ],
        )

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        return next((f for f in self.get_folders() if f.id == folder_id), None)

    def folder_exists(self, folder_id: str) -> bool:
        return folder_id == ROOT_FOLDER or self.get_folder(folder_id) is not None

    def create_folder(self, name: str) -> Folder:
        """Create a folder at the end of the folder order."""
        folders = self.get_folders()
        max_order = max((f.order for f in folders), default=-1)
        folder = Folder(id=_new_folder_id(), name=name, created_at=unix_now(), order=max_order + 1)
        folders.append(folder)
        self._save_folders(folders)

        if self.has_root_order():
            self.add_to_root_order(RootOrderType.FOLDER, folder.id)

        logger.info("Created folder '%s' (%s)", name, folder.id)
        self._notify(FolderChange(action="created", folder_id=folder.id))
        return folder

    def rename_folder(self, folder_id: str, new_name: str) -> None:
        """Rename a folder.

        Raises:
            KeyError: If the folder does not exist.
        """
        folders = self.get_folders()
        folder = next((f for f in folders if f.id == folder_id), None)
        if folder is None:
            raise KeyError(f"Folder not found: {folder_id}")
        folder.name = new_name
        self._save_folders(folders)
        self._notify(FolderChange(action="renamed", folder_id=folder_id))

    def delete_folder(self, folder_id: str) -> list[str]:
        """Delete a folder, moving its members to root.

        Members keep their relative order and are appended after the
        existing root items; root is then renumbered. No list item is
        removed.

        Returns:
            list[str]: Ids of the items that moved to root.

        Raises:
            KeyError: If the folder does not exist or is root.
        """
        if folder_id == ROOT_FOLDER or self.get_folder(folder_id) is None:
            raise KeyError(f"Folder not found: {folder_id!r}")
        affected = self.get_members_in_folder(folder_id)
        assignments = self._get_assignments()
        root_max = max(
            (a.order for a in assignments if a.folder_id == ROOT_FOLDER), default=-1
        )
        position = {item_id: index for index, item_id in enumerate(affected)}
        for a in assignments:
            if a.folder_id == folder_id:
                a.folder_id = ROOT_FOLDER
                a.order = root_max + 1 + position[a.item_id]
        self._save_assignments(assignments)

        self.reorder_items(ROOT_FOLDER)

        self._save_folders([f for f in self.get_folders() if f.id != folder_id])

        if self.has_root_order():
            order = self.get_root_order()
            index = next(
                (i for i, e in enumerate(order)
                 if e.type == RootOrderType.FOLDER and e.id == folder_id),
                len(order),
            )
            order = [e for e in order if not (e.type == RootOrderType.FOLDER and e.id == folder_id)]
            index = min(index, len(order))
            existing = {e.id for e in order if e.type == RootOrderType.MEMBER}
            moved = [
                RootOrderItem(type=RootOrderType.MEMBER, id=item_id)
                for item_id in affected
                if item_id not in existing
            ]
            self.save_root_order(order[:index] + moved + order[index:])

        logger.info("Deleted folder %s; %d items moved to root", folder_id, len(affected))
        self._notify(FolderChange(action="deleted", folder_id=folder_id, item_ids=affected))
        return affected

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def _get_assignments(self) -> list[MemberAssignment]:
        return [
            MemberAssignment(
                item_id=a["itemId"],
                folder_id=a.get("folderId", ROOT_FOLDER),
                order=a.get("order", 0),
            )
            for a in self.store.get(ASSIGNMENTS_KEY, [])
        ]

    def _save_assignments(self, assignments: list[MemberAssignment]) -> None:
        self.store.set(
            ASSIGNMENTS_KEY,
            [{"itemId": a.item_id, "folderId": a.folder_id, "order": a.order} for a in assignments],
        )

    def get_assignments(self) -> list[MemberAssignment]:
        """Every assignment, in storage order."""
        return self._get_assignments()

    def get_member_folder(self, item_id: str) -> str:
        """Folder holding an item; root when unassigned."""
        found = next((a for a in self._get_assignments() if a.item_id == item_id), None)
        return found.folder_id if found else ROOT_FOLDER

    def get_members_in_folder(self, folder_id: str) -> list[str]:
        """Item ids in a folder, by order."""
        members = [a for a in self._get_assignments() if a.folder_id == folder_id]
        return [a.item_id for a in sorted(members, key=lambda a: a.order)]

    def get_folder_item_count(self, folder_id: str) -> int:
        return sum(1 for a in self._get_assignments() if a.folder_id == folder_id)

    def move_member_to_folder(
        self,
        item_id: str,
        target_folder_id: str,
        explicit_order: Optional[int] = None,
    ) -> None:
        """Place an item in a folder (or root).

        Without ``explicit_order`` the item is appended to the target.
        The folder it left is renumbered to close the gap.

        Raises:
            KeyError: If the target folder does not exist.
        """
        if not self.folder_exists(target_folder_id):
            raise KeyError(f"Folder not found: {target_folder_id}")

        assignments = self._get_assignments()
        existing = next((a for a in assignments if a.item_id == item_id), None)
        if explicit_order is not None:
            order = explicit_order
        else:
            order = max(
                (a.order for a in assignments
                 if a.folder_id == target_folder_id and a.item_id != item_id),
                default=-1,
            ) + 1

        source_folder_id: Optional[str] = None
        if existing is not None:
            source_folder_id = existing.folder_id
            existing.folder_id = target_folder_id
            existing.order = order
        else:
            assignments.append(
                MemberAssignment(item_id=item_id, folder_id=target_folder_id, order=order)
            )
        self._save_assignments(assignments)

        if source_folder_id is not None and source_folder_id != target_folder_id:
            self.reorder_items(source_folder_id)

        if self.has_root_order():
            if target_folder_id == ROOT_FOLDER:
                self.add_to_root_order(RootOrderType.MEMBER, item_id)
            else:
                self.remove_from_root_order(RootOrderType.MEMBER, item_id)

        self._notify(FolderChange(action="moved", folder_id=target_folder_id, item_ids=[item_id]))

    def ensure_member_assignment(self, item_id: str, explicit_order: Optional[int] = None) -> bool:
        """Assign an unplaced item to the end of root.

        Returns:
            bool: True if a new assignment was created.
        """
        if explicit_order is None:
            return bool(self.ensure_member_assignments([item_id]))
        assignments = self._get_assignments()
        if any(a.item_id == item_id for a in assignments):
            return False
        assignments.append(MemberAssignment(item_id=item_id, folder_id=ROOT_FOLDER, order=explicit_order))
        self._save_assignments(assignments)
        if self.has_root_order():
            self.add_to_root_order(RootOrderType.MEMBER, item_id)
        return True

    def ensure_member_assignments(self, item_ids: Iterable[str]) -> list[str]:
        """Append every unplaced item to the end of root in one write.

        Returns:
            list[str]: Ids that received a new assignment, in order.
        """
        assignments = self._get_assignments()
        placed = {a.item_id for a in assignments}
        next_order = max(
            (a.order for a in assignments if a.folder_id == ROOT_FOLDER), default=-1
        ) + 1

        added: list[str] = []
        for item_id in item_ids:
            if item_id in placed:
                continue
            placed.add(item_id)
            assignments.append(
                MemberAssignment(item_id=item_id, folder_id=ROOT_FOLDER, order=next_order)
            )
            next_order += 1
            added.append(item_id)
        if not added:
            return added

        self._save_assignments(assignments)
        if self.has_root_order():
            order = self._raw_root_order()
            present = {e.id for e in order if e.type == RootOrderType.MEMBER}
            # newest first, as add_to_root_order does one at a time
            for item_id in added:
                if item_id not in present:
                    order.insert(0, RootOrderItem(type=RootOrderType.MEMBER, id=item_id))
            self.save_root_order(order)
        return added

    def remove_member_assignment(self, item_id: str) -> None:
        """Forget an item's placement (used when the item is removed)."""
        assignments = self._get_assignments()
        gone = next((a for a in assignments if a.item_id == item_id), None)
        if gone is None:
            return
        self._save_assignments([a for a in assignments if a.item_id != item_id])
        self.reorder_items(gone.folder_id)
        if self.has_root_order():
            self.remove_from_root_order(RootOrderType.MEMBER, item_id)

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def reorder_items(self, folder_id: str) -> None:
        """Renumber one folder's assignments to 0..n-1 by current order."""
        assignments = self._get_assignments()
        in_folder = sorted(
            (a for a in assignments if a.folder_id == folder_id), key=lambda a: a.order
        )
        for index, a in enumerate(in_folder):
            a.order = index
        self._save_assignments(assignments)

    def move_item_to_position(self, item_id: str, new_index: int) -> None:
        """Move an item within its folder; index is clamped to [0, len]."""
        assignments = self._get_assignments()
        item = next((a for a in assignments if a.item_id == item_id), None)
        if item is None:
            return

        in_folder = sorted(
            (a for a in assignments if a.folder_id == item.folder_id), key=lambda a: a.order
        )
        in_folder.remove(item)
        insert_at = max(0, min(new_index, len(in_folder)))
        in_folder.insert(insert_at, item)
        for index, a in enumerate(in_folder):
            a.order = index
        self._save_assignments(assignments)

    def move_folder_to_position(self, folder_id: str, new_index: int) -> None:
        """Move a folder within the folder order; index is clamped."""
        folders = self.get_folders()
        folder = next((f for f in folders if f.id == folder_id), None)
        if folder is None:
            return
        folders.remove(folder)
        insert_at = max(0, min(new_index, len(folders)))
        folders.insert(insert_at, folder)
        for index, f in enumerate(folders):
            f.order = index
        self._save_folders(folders)

    # ------------------------------------------------------------------
    # Root order (folders and unfiled items interleaved)
    # ------------------------------------------------------------------

    def _raw_root_order(self) -> list[RootOrderItem]:
        return [RootOrderItem(type=e["type"], id=e["id"]) for e in self.store.get(ROOT_ORDER_KEY, [])]

    def has_root_order(self) -> bool:
        return len(self.store.get(ROOT_ORDER_KEY, [])) > 0

    def get_root_order(self) -> list[RootOrderItem]:
        """Explicit root display order, built lazily on first access."""
        order = self._raw_root_order()
        if not order:
            return self._build_initial_root_order()
        return order

    def _build_initial_root_order(self) -> list[RootOrderItem]:
        members = list(reversed(self.get_members_in_folder(ROOT_FOLDER)))
        order = [RootOrderItem(type=RootOrderType.MEMBER, id=m) for m in members]
        order += [RootOrderItem(type=RootOrderType.FOLDER, id=f.id) for f in self.get_folders()]
        self.save_root_order(order)
        return order

    def save_root_order(self, order: list[RootOrderItem]) -> None:
        self.store.set(ROOT_ORDER_KEY, [{"type": e.type.value, "id": e.id} for e in order])

    def add_to_root_order(self, type: RootOrderType, id: str) -> None:
        """Insert at the front (newest first) unless already present."""
        order = self.get_root_order()
        if any(e.type == type and e.id == id for e in order):
            return
        order.insert(0, RootOrderItem(type=type, id=id))
        self.save_root_order(order)

    def remove_from_root_order(self, type: RootOrderType, id: str) -> None:
        order = [e for e in self.get_root_order() if not (e.type == type and e.id == id)]
        self.save_root_order(order)

    def move_in_root_order(self, type: RootOrderType, id: str, new_index: int) -> None:
        order = self.get_root_order()
        current = next((i for i, e in enumerate(order) if e.type == type and e.id == id), None)
        if current is None:
            return
        entry = order.pop(current)
        order.insert(max(0, min(new_index, len(order))), entry)
        self.save_root_order(order)

    def clear_root_order(self) -> None:
        self.store.remove(ROOT_ORDER_KEY)

    def clear_assignments(self) -> None:
        self.store.remove(ASSIGNMENTS_KEY)

    # ------------------------------------------------------------------
    # Cleanup and export
    # ------------------------------------------------------------------

    def cleanup_orphaned_assignments(self, existing_ids: Iterable[str]) -> int:
        """Drop assignments whose item is no longer in the list.

        Also re-homes assignments that point at a vanished folder and
        prunes root-order entries for vanished items. Safe to run at any
        time and idempotent.

        Args:
            existing_ids: Canonical item ids reported by the orchestrator.

        Returns:
            int: Number of orphaned assignments removed.
        """
        existing = set(existing_ids)
        folder_ids = {f.id for f in self.get_folders()}
        assignments = self._get_assignments()

        kept: list[MemberAssignment] = []
        touched: set[str] = set()
        for a in assignments:
            if a.item_id not in existing:
                logger.warning(
                    "%s",
                    ReferentialIntegrityWarning(f"dropping assignment for vanished item {a.item_id}"),
                )
                touched.add(a.folder_id)
                continue
            if a.folder_id != ROOT_FOLDER and a.folder_id not in folder_ids:
                logger.warning(
                    "%s",
                    ReferentialIntegrityWarning(f"item {a.item_id} pointed at missing folder {a.folder_id}"),
                )
                touched.add(a.folder_id)
                a.folder_id = ROOT_FOLDER
                # sorts after current root items until root is renumbered
                a.order = 1_000_000 + a.order
                touched.add(ROOT_FOLDER)
            kept.append(a)

        removed = len(assignments) - len(kept)
        if touched:
            self._save_assignments(kept)
            for folder_id in touched:
                if folder_id == ROOT_FOLDER or folder_id in folder_ids:
                    self.reorder_items(folder_id)

        if self.has_root_order():
            order = self._raw_root_order()
            pruned = [
                e for e in order
                if (e.type == RootOrderType.MEMBER and e.id in existing)
                or (e.type == RootOrderType.FOLDER and e.id in folder_ids)
            ]
            if len(pruned) != len(order):
                self.save_root_order(pruned)

        if removed:
            logger.info("Removed %d orphaned assignments", removed)
            self._notify(FolderChange(action="cleaned", item_ids=[]))
        return removed

    def export_folder(self, folder_id: str) -> FolderExport:
        """Describe a folder as a network-level sub-list.

        Raises:
            KeyError: If the folder does not exist.
        """
        folder = self.get_folder(folder_id)
        if folder is None:
            raise KeyError(f"Folder not found: {folder_id}")
        return FolderExport(
            d_tag=folder.id,
            title=folder.name,
            member_ids=self.get_members_in_folder(folder_id),
        )
