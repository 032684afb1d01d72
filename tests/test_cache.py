"""Tests for the session cache tier."""

from __future__ import annotations

import threading

from relaylists.models import ListItem, ListSnapshot
from relaylists.schema import MUTES, TRIBES
from relaylists.tiers.cache import CacheAdapter, SessionStore

from fakes import OTHER_PUBKEY, PUBKEY


def _snapshot(*ids: str) -> ListSnapshot:
    return ListSnapshot(items=[ListItem(id=i) for i in ids])


class TestSessionStore:
    """Namespaced key/value storage."""

    def test_accounts_do_not_share_keys(self):
        store = SessionStore()
        store.set(PUBKEY, "k", 1)
        store.set(OTHER_PUBKEY, "k", 2)
        assert store.get(PUBKEY, "k") == 1
        assert store.get(OTHER_PUBKEY, "k") == 2

    def test_clear_account(self):
        store = SessionStore()
        store.set(PUBKEY, "a", 1)
        store.set(PUBKEY, "b", 2)
        store.set(OTHER_PUBKEY, "a", 3)
        assert store.clear_account(PUBKEY) == 2
        assert store.get(PUBKEY, "a") is None
        assert store.get(OTHER_PUBKEY, "a") == 3

    def test_legacy_key_is_consumed_once(self):
        store = SessionStore()
        store.set_legacy("old", "value")
        assert store.migrate_legacy(PUBKEY, "old", "new")
        assert store.get(PUBKEY, "new") == "value"
        assert not store.migrate_legacy(OTHER_PUBKEY, "old", "new")
        assert store.get(OTHER_PUBKEY, "new") is None

    def test_legacy_does_not_overwrite(self):
        store = SessionStore()
        store.set(PUBKEY, "new", "current")
        store.set_legacy("old", "stale")
        assert not store.migrate_legacy(PUBKEY, "old", "new")
        assert store.get(PUBKEY, "new") == "current"

    def test_concurrent_writers(self):
        """Parallel writers never lose a key."""
        store = SessionStore()

        def writer(n: int) -> None:
            for i in range(200):
                store.set(PUBKEY, f"{n}-{i}", i)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.clear_account(PUBKEY) == 800


class TestCacheAdapter:
    """Per-list cache view."""

    def test_empty(self):
        cache = CacheAdapter(SessionStore(), PUBKEY, TRIBES)
        assert cache.get() is None
        assert not cache.is_fresh(60)

    def test_set_get(self):
        cache = CacheAdapter(SessionStore(), PUBKEY, TRIBES)
        cache.set(_snapshot("a", "b"))
        assert cache.get().item_ids() == ["a", "b"]
        assert cache.is_fresh(60)
        assert not cache.is_fresh(0)

    def test_returns_copies(self):
        """Mutating a returned snapshot does not touch the cache."""
        cache = CacheAdapter(SessionStore(), PUBKEY, TRIBES)
        cache.set(_snapshot("a"))
        cache.get().items.append(ListItem(id="b"))
        assert cache.get().item_ids() == ["a"]

    def test_lists_are_separate(self):
        store = SessionStore()
        CacheAdapter(store, PUBKEY, TRIBES).set(_snapshot("a"))
        assert CacheAdapter(store, PUBKEY, MUTES).get() is None

    def test_legacy_migration(self):
        store = SessionStore()
        store.set_legacy("tribes_legacy", _snapshot("x").model_dump())
        cache = CacheAdapter(store, PUBKEY, TRIBES, legacy_key="tribes_legacy")
        assert cache.get().item_ids() == ["x"]
        assert CacheAdapter(store, OTHER_PUBKEY, TRIBES, legacy_key="tribes_legacy").get() is None

    def test_clear(self):
        cache = CacheAdapter(SessionStore(), PUBKEY, TRIBES)
        cache.set(_snapshot("a"))
        cache.clear()
        assert cache.get() is None
