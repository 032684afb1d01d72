"""
Session cache tier -- fast, disposable, per-account.

The cache never decides anything. It holds the latest merge output so
views can render without waiting on disk or relays, and it is always
overwritten by the next merge.

Keys are namespaced ``<account>:<key>`` so switching the active account
inside one process can never leak another account's list. A legacy
un-namespaced key can be read exactly once for migration.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional

from ..models import ListSnapshot
from ..schema import ListSchema

logger = logging.getLogger("relaylists.tiers.cache")


class SessionStore:
    """Process-local key/value store with per-account namespaces.

    Reads may happen from any thread; writes take a lock and the last
    write wins.
    """

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(account: str, key: str) -> str:
        return f"{account}:{key}"

    def get(self, account: str, key: str, default: Any = None) -> Any:
        return self._data.get(self._key(account, key), default)

    def set(self, account: str, key: str, value: Any) -> None:
        with self._lock:
            self._data[self._key(account, key)] = value

    def remove(self, account: str, key: str) -> None:
        with self._lock:
            self._data.pop(self._key(account, key), None)

    def set_legacy(self, legacy_key: str, value: Any) -> None:
        """Write an un-namespaced value (as older builds did)."""
        with self._lock:
            self._data[legacy_key] = value

    def migrate_legacy(self, account: str, legacy_key: str, key: str) -> bool:
        """Move a legacy single-account value into an account namespace.

        The legacy value is consumed: it is deleted whether or not the
        namespaced key already had data.

        Returns:
            bool: True if a legacy value was copied.
        """
        with self._lock:
            if legacy_key not in self._data:
                return False
            value = self._data.pop(legacy_key)
            namespaced = self._key(account, key)
            if namespaced in self._data:
                logger.debug("Legacy key %s dropped; %s already set", legacy_key, namespaced)
                return False
            self._data[namespaced] = value
            logger.info("Migrated legacy cache key %s for account %s", legacy_key, account[:12])
            return True

    def clear_account(self, account: str) -> int:
        """Drop every key of one account; returns how many were removed."""
        prefix = f"{account}:"
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for k in doomed:
                del self._data[k]
        return len(doomed)


class CacheAdapter:
    """Cache tier for one (account, list).

    Args:
        store: Shared session store.
        account: Owner pubkey.
        schema: List schema; its storage key names the cache slot.
        legacy_key: Optional pre-namespacing key to migrate on first use.
    """

    def __init__(
        self,
        store: SessionStore,
        account: str,
        schema: ListSchema,
        legacy_key: Optional[str] = None,
    ) -> None:
        self.store = store
        self.account = account
        self.schema = schema
        self._key = f"list:{schema.storage_key}"
        self._stamp_key = f"list-cached-at:{schema.storage_key}"
        if legacy_key:
            self._migrate(legacy_key)

    def _migrate(self, legacy_key: str) -> None:
        if self.store.migrate_legacy(self.account, legacy_key, self._key):
            raw = self.store.get(self.account, self._key)
            try:
                self.store.set(
                    self.account, self._key, ListSnapshot.model_validate(raw)
                )
            except ValueError as exc:
                logger.warning("Discarding unreadable legacy cache entry: %s", exc)
                self.store.remove(self.account, self._key)

    def get(self) -> Optional[ListSnapshot]:
        """Current cached snapshot, or None when nothing is cached."""
        snapshot = self.store.get(self.account, self._key)
        return snapshot.model_copy(deep=True) if snapshot is not None else None

    def set(self, snapshot: ListSnapshot) -> None:
        """Replace the cached snapshot."""
        self.store.set(self.account, self._key, snapshot.model_copy(deep=True))
        self.store.set(self.account, self._stamp_key, time.monotonic())

    def clear(self) -> None:
        self.store.remove(self.account, self._key)
        self.store.remove(self.account, self._stamp_key)

    def is_fresh(self, ttl_seconds: float) -> bool:
        """True when a snapshot was cached less than ``ttl_seconds`` ago."""
        stamp = self.store.get(self.account, self._stamp_key)
        if stamp is None or self.get() is None:
            return False
        return (time.monotonic() - stamp) < ttl_seconds
