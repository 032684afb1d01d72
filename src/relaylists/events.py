"""
Wire events -- the replaceable event that carries one list.

One list maps to one replaceable event per ``(author, kind, d)``.
Publishing a newer event replaces the older one entirely:

    tags     ["d", <set>], ["title", <name>], <public item tags>, <extra tags>
    content  encrypt(json(<private item tags>)) or ""

The event id is the sha256 of the canonical serialization, so it must be
byte-identical to what every other client computes.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field, ValidationError

from .models import unix_now
from .protocols import Signer

logger = logging.getLogger("relaylists.events")

RESERVED_TAGS = {"d", "title"}


class RelayEvent(BaseModel):
    """A signed relay event."""

    id: str = ""
    pubkey: str
    created_at: int
    kind: int
    tags: list[list[str]] = Field(default_factory=list)
    content: str = ""
    sig: str = ""

    def to_wire(self) -> dict[str, Any]:
        """Dict form sent inside an ``EVENT`` frame."""
        return self.model_dump()


def serialize_for_id(
    pubkey: str, created_at: int, kind: int, tags: list[list[str]], content: str
) -> str:
    """Canonical JSON serialization hashed into the event id."""
    return json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        separators=(",", ":"),
        ensure_ascii=False,
    )


def compute_event_id(
    pubkey: str, created_at: int, kind: int, tags: list[list[str]], content: str
) -> str:
    """Compute the hex sha256 event id."""
    payload = serialize_for_id(pubkey, created_at, kind, tags, content)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def verify_event_id(event: RelayEvent) -> bool:
    """Check that an event's id matches its content."""
    return event.id == compute_event_id(
        event.pubkey, event.created_at, event.kind, event.tags, event.content
    )


def parse_event(raw: Any) -> Optional[RelayEvent]:
    """Validate a raw relay payload, returning None when malformed."""
    try:
        return RelayEvent.model_validate(raw)
    except ValidationError as exc:
        logger.debug("Dropping malformed event: %s", exc.error_count())
        return None


def event_d_tag(event: RelayEvent) -> str:
    """The event's ``d`` tag value, ``""`` when absent."""
    for tag in event.tags:
        if len(tag) >= 2 and tag[0] == "d":
            return tag[1]
    return ""


def event_title(event: RelayEvent) -> str:
    """The event's ``title`` tag value, ``""`` when absent."""
    for tag in event.tags:
        if len(tag) >= 2 and tag[0] == "title":
            return tag[1]
    return ""


def latest_per_d_tag(events: Iterable[RelayEvent]) -> dict[str, RelayEvent]:
    """Keep the newest event per ``d`` tag.

    Ties on ``created_at`` go to the lexically lowest id so every client
    picks the same winner.
    """
    latest: dict[str, RelayEvent] = {}
    for event in events:
        d_tag = event_d_tag(event)
        current = latest.get(d_tag)
        if (
            current is None
            or event.created_at > current.created_at
            or (event.created_at == current.created_at and event.id < current.id)
        ):
            latest[d_tag] = event
    return latest


def build_list_event(
    signer: Signer,
    kind: int,
    item_tags: list[list[str]],
    content: str = "",
    d_tag: Optional[str] = "",
    title: str = "",
    extra_tags: Optional[list[list[str]]] = None,
    created_at: Optional[int] = None,
) -> RelayEvent:
    """Build and sign one list event.

    Args:
        signer: Signs on behalf of the list owner.
        kind: Wire kind from the schema.
        item_tags: Public item tags in list order.
        content: Encrypted private partition, or ``""``.
        d_tag: Sub-list identifier; ``None`` for kinds without a ``d`` tag.
        title: Display name, emitted only when non-empty.
        extra_tags: Unrecognized tags preserved from other clients.
        created_at: Override for the event timestamp.

    Returns:
        RelayEvent: The signed event.
    """
    tags: list[list[str]] = []
    if d_tag is not None:
        tags.append(["d", d_tag])
    if title:
        tags.append(["title", title])
    tags.extend(item_tags)
    for tag in extra_tags or []:
        if tag and tag[0] not in RESERVED_TAGS:
            tags.append(list(tag))

    timestamp = created_at if created_at is not None else unix_now()
    event_id = compute_event_id(signer.pubkey, timestamp, kind, tags, content)
    return RelayEvent(
        id=event_id,
        pubkey=signer.pubkey,
        created_at=timestamp,
        kind=kind,
        tags=tags,
        content=content,
        sig=signer.sign(event_id),
    )
