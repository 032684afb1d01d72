"""
End-to-end tests for the list orchestrator: tiers, merge, folders and
publishing wired together through an account registry.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from relaylists.accounts import Account, AccountRegistry
from relaylists.errors import NetworkError, NotAuthenticatedError, StorageIOError
from relaylists.models import ROOT_FOLDER, ListItem, ListSnapshot
from relaylists.orchestrator import ListOrchestrator

from fakes import PUBKEY, FailingCipher, FakeCipher, FakeRelay, FakeSigner, list_event, relay_factory

A, B, C = "a" * 64, "b" * 64, "c" * 64


def _p(*pks: str) -> list[list[str]]:
    return [["p", pk, ""] for pk in pks]


def _orchestrator(home: Path, settings, relays, cipher=None, signer=None) -> ListOrchestrator:
    settings = settings.model_copy(update={"relays": [r.url for r in relays]})
    registry = AccountRegistry(home, settings, client_factory=relay_factory(relays))
    registry.activate(Account(pubkey=PUBKEY, signer=signer or FakeSigner(), cipher=cipher))
    return registry.orchestrator("tribes")


class TestSync:
    """The full synchronization pipeline."""

    @pytest.mark.asyncio
    async def test_first_sync_pulls_from_relays(self, home, settings):
        relay = FakeRelay("wss://a.test", [list_event(30000, _p(A, B))])
        orch = _orchestrator(home, settings, [relay])

        report = await orch.sync()

        assert report.item_count == 2
        assert report.added_from_network == [A, B]
        assert report.wrote_file
        assert (await orch.file.read()).item_ids() == [A, B]
        assert orch.items()[0].id == A
        assert orch.folders.get_members_in_folder(ROOT_FOLDER) == [A, B]

    @pytest.mark.asyncio
    async def test_no_silent_loss(self, home, settings):
        relay = FakeRelay("wss://a.test", [list_event(30000, _p(A))])
        orch = _orchestrator(home, settings, [relay])
        await orch.file.write(ListSnapshot(items=[ListItem(id=A), ListItem(id=B)]))

        report = await orch.sync()

        assert report.item_count == 2
        assert not report.wrote_file
        assert (await orch.file.read()).item_ids() == [A, B]

    @pytest.mark.asyncio
    async def test_tombstone_respected(self, home, settings):
        relay = FakeRelay("wss://a.test", [list_event(30000, _p(A, B))])
        orch = _orchestrator(home, settings, [relay])
        await orch.file.write(ListSnapshot(items=[ListItem(id=A)], tombstones=[B]))

        report = await orch.sync()

        assert report.suppressed_by_tombstone == [B]
        snapshot = await orch.file.read()
        assert snapshot.item_ids() == [A]
        assert snapshot.tombstones == []

    @pytest.mark.asyncio
    async def test_offline_sync_keeps_file_and_tombstones(self, home, settings):
        relay = FakeRelay("wss://a.test", fail=True)
        orch = _orchestrator(home, settings, [relay])
        await orch.file.write(ListSnapshot(items=[ListItem(id=A)], tombstones=[B]))

        report = await orch.sync()

        assert report.item_count == 1
        assert report.relays_ok == []
        assert (await orch.file.read()).tombstones == [B]

    @pytest.mark.asyncio
    async def test_partial_relays(self, home, settings):
        good = FakeRelay("wss://good.test", [list_event(30000, _p(A))])
        bad = FakeRelay("wss://bad.test", fail=True)
        orch = _orchestrator(home, settings, [good, bad])

        report = await orch.sync()

        assert report.relays_ok == ["wss://good.test"]
        assert report.relays_failed == ["wss://bad.test"]
        assert report.item_count == 1

    @pytest.mark.asyncio
    async def test_storage_failure_is_fatal(self, home, settings):
        relay = FakeRelay("wss://a.test", [list_event(30000, _p(A))], delay=0.2)
        orch = _orchestrator(home, settings, [relay])
        orch.file.directory.mkdir(parents=True)
        orch.file.path.write_text("{corrupt")

        with pytest.raises(StorageIOError):
            await orch.sync()
        assert orch.cache.get() is None

    @pytest.mark.asyncio
    async def test_reports_on_channel(self, home, settings):
        relay = FakeRelay("wss://a.test", [list_event(30000, _p(A))])
        orch = _orchestrator(home, settings, [relay])
        reports = []
        orch.events.sync_completed.subscribe(reports.append)

        await orch.sync()

        assert [r.item_count for r in reports] == [1]

    @pytest.mark.asyncio
    async def test_orphans_cleaned(self, home, settings):
        relay = FakeRelay("wss://a.test", [list_event(30000, _p(A))])
        orch = _orchestrator(home, settings, [relay])
        orch.folders.ensure_member_assignment("stale")

        report = await orch.sync()

        assert report.orphans_removed == 1
        assert orch.folders.get_members_in_folder(ROOT_FOLDER) == [A]

    @pytest.mark.asyncio
    async def test_many_new_items_write_folders_once(self, home, settings, monkeypatch):
        ids = [f"{i:064x}" for i in range(300)]
        relay = FakeRelay("wss://a.test", [list_event(30000, _p(*ids))])
        orch = _orchestrator(home, settings, [relay])
        store = orch.folders.store
        flushes = []
        original = store._flush

        def counting_flush():
            flushes.append(1)
            original()

        monkeypatch.setattr(store, "_flush", counting_flush)

        await orch.sync()

        assert len(flushes) == 1
        assert orch.folders.get_members_in_folder(ROOT_FOLDER) == ids

    @pytest.mark.asyncio
    async def test_cancel_tears_down_fetch(self, home, settings):
        """Cancelling a sync stops in-flight relay queries and writes nothing."""
        relay = FakeRelay("wss://a.test", [list_event(30000, _p(A))], delay=30)
        orch = _orchestrator(home, settings, [relay])

        task = asyncio.create_task(orch.sync())
        while not relay.filters:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert relay.cancelled == 1
        assert not orch.file.path.exists()
        assert orch.cache.get() is None


class TestOpaquePassThrough:
    """Ciphertext from another device survives a full cycle."""

    @pytest.mark.asyncio
    async def test_reemitted_unchanged(self, home, settings):
        original = "enc:written-by-another-device"
        relay = FakeRelay("wss://a.test", [list_event(30000, _p(A), content=original)])
        orch = _orchestrator(home, settings, [relay], cipher=FailingCipher())

        report = await orch.sync(publish=True)

        assert report.opaque_sets == [""]
        assert report.published is not None
        assert relay.published[-1]["content"] == original
        assert (await orch.file.read()).opaque[0].ciphertext == original


class TestLocalEdits:
    """Edits go to the file first and queue a publish."""

    @pytest.mark.asyncio
    async def test_add_then_publish(self, home, settings):
        relay = FakeRelay("wss://a.test")
        orch = _orchestrator(home, settings, [relay], cipher=FakeCipher())

        await orch.add_item(ListItem(id=A))
        await orch.add_item(ListItem(id=B, is_private=True))
        assert orch.has_pending_publish

        report = await orch.publish()

        assert report.any_accepted
        assert not orch.has_pending_publish
        event = relay.published[-1]
        assert ["p", A, ""] in event["tags"]
        assert json.loads(FakeCipher().decrypt(event["content"], PUBKEY)) == [["p", B, ""]]

    @pytest.mark.asyncio
    async def test_add_replaces_existing(self, home, settings):
        orch = _orchestrator(home, settings, [FakeRelay("wss://a.test")])
        await orch.add_item(ListItem(id=A, fields={"petname": "one"}))
        await orch.add_item(ListItem(id=A, fields={"petname": "two"}))
        snapshot = await orch.file.read()
        assert snapshot.item_ids() == [A]
        assert snapshot.get(A).fields == {"petname": "two"}

    @pytest.mark.asyncio
    async def test_add_to_new_set(self, home, settings):
        orch = _orchestrator(home, settings, [FakeRelay("wss://a.test")])
        await orch.add_item(ListItem(id=A, set_id="work"))
        assert (await orch.file.read()).get_set("work") is not None

    @pytest.mark.asyncio
    async def test_remove_survives_stale_relay(self, home, settings):
        """A removed item does not come back from a relay that still has it."""
        relay = FakeRelay("wss://a.test", [list_event(30000, _p(A, B))])
        orch = _orchestrator(home, settings, [relay])
        await orch.sync()

        assert await orch.remove_item(B)
        assert orch.folders.get_member_folder(B) == ROOT_FOLDER
        assert B not in [a.item_id for a in orch.folders.get_assignments()]

        await orch.sync()
        await orch.sync()
        assert (await orch.file.read()).item_ids() == [A]
        assert (await orch.file.read()).tombstones == [B]

        await orch.publish()
        await orch.sync()
        snapshot = await orch.file.read()
        assert snapshot.item_ids() == [A]
        assert snapshot.tombstones == []

    @pytest.mark.asyncio
    async def test_remove_unknown(self, home, settings):
        orch = _orchestrator(home, settings, [FakeRelay("wss://a.test")])
        assert not await orch.remove_item(C)

    @pytest.mark.asyncio
    async def test_set_private(self, home, settings):
        orch = _orchestrator(home, settings, [FakeRelay("wss://a.test")])
        await orch.add_item(ListItem(id=A))
        assert await orch.set_private(A, True)
        assert (await orch.file.read()).get(A).is_private
        assert not await orch.set_private(C, True)

    @pytest.mark.asyncio
    async def test_publish_failure_keeps_pending(self, home, settings):
        relay = FakeRelay("wss://a.test", accept=False)
        orch = _orchestrator(home, settings, [relay])
        await orch.add_item(ListItem(id=A))

        with pytest.raises(NetworkError):
            await orch.publish()
        assert (await orch.file.read()).pending_publish


class TestLoad:
    """Cache fast path."""

    @pytest.mark.asyncio
    async def test_cold_load_syncs(self, home, settings):
        relay = FakeRelay("wss://a.test", [list_event(30000, _p(A))])
        orch = _orchestrator(home, settings, [relay])

        snapshot = await orch.load()

        assert snapshot.item_ids() == [A]
        assert len(relay.filters) == 1

    @pytest.mark.asyncio
    async def test_warm_load_refreshes_in_background(self, home, settings):
        relay = FakeRelay("wss://a.test", [list_event(30000, _p(A))])
        orch = _orchestrator(home, settings, [relay])
        await orch.load()

        snapshot = await orch.load()
        await orch.wait_for_refresh()

        assert snapshot.item_ids() == [A]
        assert len(relay.filters) == 2


class TestAuthentication:
    """No I/O without an active account."""

    @pytest.mark.asyncio
    async def test_logged_out(self, home, settings):
        relay = FakeRelay("wss://a.test", [list_event(30000, _p(A))])
        settings = settings.model_copy(update={"relays": [relay.url]})
        registry = AccountRegistry(home, settings, client_factory=relay_factory([relay]))
        registry.activate(Account(pubkey=PUBKEY))
        orch = registry.orchestrator("tribes")
        registry.logout()

        with pytest.raises(NotAuthenticatedError):
            await orch.sync()
        with pytest.raises(NotAuthenticatedError):
            await orch.add_item(ListItem(id=A))
        assert relay.filters == []
        assert not orch.file.path.exists()

    @pytest.mark.asyncio
    async def test_publish_without_signer(self, home, settings):
        relay = FakeRelay("wss://a.test")
        settings = settings.model_copy(update={"relays": [relay.url]})
        registry = AccountRegistry(home, settings, client_factory=relay_factory([relay]))
        registry.activate(Account(pubkey=PUBKEY))

        with pytest.raises(NotAuthenticatedError):
            await registry.orchestrator("tribes").publish()
