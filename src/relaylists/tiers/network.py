"""
Network tier -- fetch and publish a list across the relay set.

Fetch queries every configured relay, a few at a time, each with its own
timeout. A relay that fails or times out is dropped from this cycle; the
rest are combined into a deduplicated union. Nothing here is
authoritative: an item missing from every relay is not a removal.

Publish writes one replaceable event per sub-list to every relay in
parallel. Ciphertext that could not be decrypted on this device is sent
back out exactly as it came in.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import aiohttp

from ..config import SyncSettings
from ..encryption import EncryptionPartition
from ..errors import ListSyncError, NetworkError, NotAuthenticatedError
from ..events import (
    RESERVED_TAGS,
    RelayEvent,
    build_list_event,
    event_d_tag,
    event_title,
    latest_per_d_tag,
    parse_event,
    verify_event_id,
)
from ..models import FetchResult, ListItem, ListSet, ListSnapshot, OpaquePrivateBlob, PublishReport
from ..protocols import Cipher, RelayClient, Signer
from ..schema import ListSchema
from .relay import RelayConnection

logger = logging.getLogger("relaylists.tiers.network")

RELAY_FAILURES = (NetworkError, asyncio.TimeoutError, aiohttp.ClientError, OSError)

ClientFactory = Callable[[str, aiohttp.ClientSession], RelayClient]


async def paginate(
    client: RelayClient,
    base_filter: dict[str, Any],
    page_size: int,
    max_pages: int,
    timeout: float,
) -> list[dict[str, Any]]:
    """Walk a relay backward in time, one bounded page at a time.

    Stops on a short page, a page without timestamps, a page that makes
    no progress, or after ``max_pages`` pages.

    Raises:
        NetworkError, asyncio.TimeoutError: If the first page fails. Later
            page failures keep what was already fetched.
    """
    events: list[dict[str, Any]] = []
    until: Optional[int] = None

    for page in range(max_pages):
        page_filter = dict(base_filter, limit=page_size)
        if until is not None:
            page_filter["until"] = until
        try:
            batch = await asyncio.wait_for(client.query(page_filter), timeout)
        except RELAY_FAILURES as exc:
            if page == 0:
                raise
            logger.warning("%s page %d failed, keeping %d events: %s", client.url, page + 1, len(events), exc)
            break

        events.extend(batch)
        if len(batch) < page_size:
            break

        stamps = [e["created_at"] for e in batch if isinstance(e.get("created_at"), int)]
        if not stamps:
            break
        oldest = min(stamps)
        if until is not None and oldest >= until:
            break
        until = oldest
        logger.debug("%s page %d full, continuing until=%d", client.url, page + 1, until)
    else:
        logger.warning("%s hit the %d page limit", client.url, max_pages)

    return events


class NetworkAdapter:
    """Network tier for one (account, list).

    Args:
        schema: List schema.
        account: Owner pubkey; the only author queried.
        settings: Relay set, timeouts and paging limits.
        cipher: Decrypts private partitions; optional.
        signer: Required for publish only.
        client_factory: Builds a relay client for a URL; defaults to
            ``RelayConnection``.
    """

    def __init__(
        self,
        schema: ListSchema,
        account: str,
        settings: SyncSettings,
        cipher: Optional[Cipher] = None,
        signer: Optional[Signer] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.schema = schema
        self.account = account
        self.settings = settings
        self.signer = signer
        self.partition = EncryptionPartition(schema, cipher)
        self._client_factory = client_factory or (
            lambda url, session: RelayConnection(url, session, settings.relay_timeout)
        )

    @property
    def relays(self) -> list[str]:
        return list(dict.fromkeys(self.settings.relays))

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(self) -> FetchResult:
        """Fetch the list from every relay and union the results.

        Raises:
            NetworkError: If no relay is configured or none answered.
        """
        relays = self.relays
        if not relays:
            raise NetworkError("No relays configured")

        semaphore = asyncio.Semaphore(self.settings.relay_concurrency)
        async with aiohttp.ClientSession() as session:

            async def run(url: str) -> Optional[dict[str, RelayEvent]]:
                async with semaphore:
                    client = self._client_factory(url, session)
                    try:
                        return await self._fetch_relay(client)
                    except RELAY_FAILURES as exc:
                        logger.warning("Relay %s failed for %s: %s", url, self.schema.name, exc or type(exc).__name__)
                        return None

            per_relay = await asyncio.gather(*(run(url) for url in relays))

        result = FetchResult()
        for url, latest in zip(relays, per_relay):
            if latest is None:
                result.relays_failed.append(url)
            else:
                result.relays_ok.append(url)

        if not result.relays_ok:
            raise NetworkError(f"All {len(relays)} relays failed for {self.schema.name}")

        self._combine(result, [latest for latest in per_relay if latest is not None])
        logger.info(
            "Fetched %d %s items from %d/%d relays",
            len(result.items),
            self.schema.name,
            len(result.relays_ok),
            len(relays),
        )
        return result

    async def _fetch_relay(self, client: RelayClient) -> dict[str, RelayEvent]:
        raw_events = await paginate(
            client,
            {"kinds": [self.schema.kind], "authors": [self.account]},
            self.settings.page_size,
            self.settings.max_pages,
            self.settings.relay_timeout,
        )
        events: list[RelayEvent] = []
        seen: set[str] = set()
        for raw in raw_events:
            event = parse_event(raw)
            if event is None or event.id in seen:
                continue
            if event.kind != self.schema.kind or event.pubkey != self.account:
                continue
            if not verify_event_id(event):
                logger.warning("Dropping event %s from %s: id mismatch", event.id[:12], client.url)
                continue
            seen.add(event.id)
            events.append(event)

        if not self.schema.parameterized:
            latest = latest_per_d_tag(
                e.model_copy(update={"tags": [t for t in e.tags if t[:1] != ["d"]]})
                for e in events
            )
            return {"": latest[""]} if "" in latest else {}
        return latest_per_d_tag(events)

    def _combine(self, result: FetchResult, per_relay: list[dict[str, RelayEvent]]) -> None:
        seen_items: set[str] = set()
        sets: dict[str, ListSet] = {}
        opaque: dict[str, OpaquePrivateBlob] = {}
        decrypted_at: dict[str, int] = {}

        for latest in per_relay:
            for d_tag, event in latest.items():
                list_set = sets.setdefault(d_tag, ListSet(d_tag=d_tag))
                if not list_set.title:
                    list_set.title = event_title(event)
                if not list_set.extra_tags:
                    list_set.extra_tags = [
                        t for t in event.tags
                        if t and t[0] not in RESERVED_TAGS and not self.schema.is_item_tag(t)
                    ]

                items = [
                    item.model_copy(update={"set_id": d_tag})
                    for item in self.schema.wire_tags_to_items(event.tags, event.created_at)
                ]
                if event.content and self.schema.encrypt_private_content:
                    private, blob = self.partition.decode_private_or_opaque(
                        event.content, self.account, event.created_at, d_tag
                    )
                    if blob is not None:
                        current = opaque.get(d_tag)
                        if current is None or blob.created_at > current.created_at:
                            opaque[d_tag] = blob
                    else:
                        items.extend(private)
                        decrypted_at[d_tag] = max(decrypted_at.get(d_tag, event.created_at), event.created_at)

                for item in items:
                    if item.id in seen_items:
                        continue
                    seen_items.add(item.id)
                    result.items.append(item)

        # a blob only matters if it is newer than every partition we could read
        for d_tag, blob in list(opaque.items()):
            if d_tag in decrypted_at and blob.created_at <= decrypted_at[d_tag]:
                logger.debug("Ignoring stale ciphertext for %s set %r", self.schema.name, d_tag)
                del opaque[d_tag]

        result.sets = list(sets.values())
        result.opaque = list(opaque.values())
        result.had_private_partition_but_could_not_decrypt = bool(opaque)
        result.decrypted_sets = [d for d in decrypted_at if d not in opaque]

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def build_events(self, snapshot: ListSnapshot) -> list[RelayEvent]:
        """Turn a snapshot into one signed event per sub-list.

        Raises:
            NotAuthenticatedError: If no signer is available.
        """
        if self.signer is None:
            raise NotAuthenticatedError(f"Publishing {self.schema.name} requires a signer")

        set_ids = snapshot.set_ids() if self.schema.parameterized else [""]
        if not set_ids:
            set_ids = [""]

        events: list[RelayEvent] = []
        for d_tag in set_ids:
            if self.schema.parameterized:
                members = [i for i in snapshot.items if i.set_id == d_tag]
            else:
                members = list(snapshot.items)
            if self.schema.encrypt_private_content:
                public, private = self.partition.partition(members)
            else:
                public, private = members, []

            content = self._private_content(snapshot, d_tag, private)
            list_set = snapshot.get_set(d_tag) or ListSet(d_tag=d_tag)
            events.append(
                build_list_event(
                    self.signer,
                    self.schema.kind,
                    self.partition.encode_tags(public),
                    content=content,
                    d_tag=d_tag if self.schema.parameterized else None,
                    title=list_set.title,
                    extra_tags=list_set.extra_tags,
                )
            )
        return events

    def _private_content(
        self, snapshot: ListSnapshot, d_tag: str, private: list[ListItem]
    ) -> str:
        blob = next((b for b in snapshot.opaque if b.set_id == d_tag), None)
        if blob is not None:
            if private:
                logger.warning(
                    "Withholding %d private %s items in '%s': existing ciphertext is unreadable here",
                    len(private),
                    self.schema.name,
                    d_tag,
                )
            return blob.ciphertext
        if not private:
            return ""
        try:
            return self.partition.serialize_private(private, self.account)
        except ListSyncError:
            raise
        except Exception as exc:
            raise ListSyncError(f"Encrypting private {self.schema.name} items failed: {exc}") from exc

    async def publish(self, snapshot: ListSnapshot) -> PublishReport:
        """Publish a snapshot to every relay.

        Returns:
            PublishReport: Event ids and per-relay acceptance.

        Raises:
            NetworkError: If no relay accepted every event.
        """
        events = self.build_events(snapshot)
        wire = [e.to_wire() for e in events]
        relays = self.relays
        if not relays:
            raise NetworkError("No relays configured")

        async with aiohttp.ClientSession() as session:

            async def run(url: str) -> bool:
                client = self._client_factory(url, session)
                try:
                    for event in wire:
                        ok = await asyncio.wait_for(
                            client.publish(event), self.settings.publish_timeout
                        )
                        if not ok:
                            return False
                    return True
                except RELAY_FAILURES as exc:
                    logger.warning("Publish to %s failed: %s", url, exc or type(exc).__name__)
                    return False

            outcomes = await asyncio.gather(*(run(url) for url in relays))

        report = PublishReport(
            event_ids=[e.id for e in events],
            accepted=dict(zip(relays, outcomes)),
        )
        if not report.any_accepted:
            raise NetworkError(f"No relay accepted the {self.schema.name} update")
        logger.info(
            "Published %d %s events to %d/%d relays",
            len(events),
            self.schema.name,
            sum(outcomes),
            len(relays),
        )
        return report
