"""Tests for the account registry and background schedulers."""

from __future__ import annotations

import asyncio

import pytest

from relaylists.accounts import Account, AccountRegistry, SyncScheduler
from relaylists.errors import NotAuthenticatedError
from relaylists.models import ListItem, ListSnapshot
from relaylists.protocols import Pausable

from fakes import OTHER_PUBKEY, PUBKEY, FakeRelay, list_event, relay_factory


def _registry(home, settings, relays=None) -> AccountRegistry:
    relays = relays or [FakeRelay("wss://a.test")]
    settings = settings.model_copy(update={"relays": [r.url for r in relays]})
    return AccountRegistry(home, settings, client_factory=relay_factory(relays))


class TestRegistry:
    """Explicit per-account ownership."""

    def test_requires_active_account(self, home, settings):
        registry = _registry(home, settings)
        with pytest.raises(NotAuthenticatedError):
            registry.orchestrator("tribes")

    def test_one_orchestrator_per_account_and_list(self, home, settings):
        registry = _registry(home, settings)
        registry.activate(Account(pubkey=PUBKEY))
        tribes = registry.orchestrator("tribes")
        assert registry.orchestrator("tribes") is tribes
        assert registry.orchestrator("mutes") is not tribes

        registry.switch(Account(pubkey=OTHER_PUBKEY))
        other = registry.orchestrator("tribes")
        assert other is not tribes
        assert other.account == OTHER_PUBKEY

    def test_unknown_list(self, home, settings):
        registry = _registry(home, settings)
        registry.activate(Account(pubkey=PUBKEY))
        with pytest.raises(KeyError):
            registry.orchestrator("pins")

    def test_accounts_have_separate_files(self, home, settings):
        registry = _registry(home, settings)
        registry.activate(Account(pubkey=PUBKEY))
        mine = registry.orchestrator("tribes").file.path
        registry.switch(Account(pubkey=OTHER_PUBKEY))
        theirs = registry.orchestrator("tribes").file.path
        assert mine != theirs
        assert PUBKEY in str(mine)

    @pytest.mark.asyncio
    async def test_switch_makes_old_orchestrator_unusable(self, home, settings):
        """An orchestrator only works while its account is active."""
        registry = _registry(home, settings)
        registry.activate(Account(pubkey=PUBKEY))
        old = registry.orchestrator("tribes")
        registry.switch(Account(pubkey=OTHER_PUBKEY))
        with pytest.raises(NotAuthenticatedError):
            await old.sync()

    def test_logout_clears_session_cache(self, home, settings):
        registry = _registry(home, settings)
        registry.activate(Account(pubkey=PUBKEY))
        tribes = registry.orchestrator("tribes")
        tribes.cache.set(ListSnapshot(items=[ListItem(id="x")]))

        registry.logout()

        assert registry.active is None
        assert tribes.cache.get() is None


class TestPausable:
    """Components are paused and resumed with their account."""

    def test_scheduler_is_pausable(self, home, settings):
        registry = _registry(home, settings)
        registry.activate(Account(pubkey=PUBKEY))
        assert isinstance(registry.scheduler("tribes"), Pausable)

    def test_switch_pauses_and_resumes(self, home, settings):
        registry = _registry(home, settings)
        registry.activate(Account(pubkey=PUBKEY))
        mine = registry.scheduler("tribes")

        registry.switch(Account(pubkey=OTHER_PUBKEY))
        theirs = registry.scheduler("tribes")
        assert mine.paused
        assert not theirs.paused

        registry.switch(Account(pubkey=PUBKEY))
        assert not mine.paused
        assert theirs.paused

    def test_non_pausable_components_are_skipped(self, home, settings):
        registry = _registry(home, settings)
        registry.activate(Account(pubkey=PUBKEY))
        registry.register(object())
        registry.switch(Account(pubkey=OTHER_PUBKEY))
        assert len(registry.components(PUBKEY)) == 1


class TestScheduler:
    """Periodic background sync."""

    @pytest.mark.asyncio
    async def test_runs_periodically(self, home, settings):
        relay = FakeRelay("wss://a.test", [list_event(30000, [["p", "a" * 64, ""]])])
        registry = _registry(home, settings, [relay])
        registry.activate(Account(pubkey=PUBKEY))
        scheduler = SyncScheduler(registry.orchestrator("tribes"), interval=0.01)

        scheduler.start()
        await asyncio.sleep(0.3)
        await scheduler.stop()

        assert scheduler.runs >= 1
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_paused_scheduler_is_idle(self, home, settings):
        relay = FakeRelay("wss://a.test")
        registry = _registry(home, settings, [relay])
        registry.activate(Account(pubkey=PUBKEY))
        scheduler = SyncScheduler(registry.orchestrator("tribes"), interval=0.01)
        scheduler.pause()

        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.runs == 0
        assert relay.filters == []
