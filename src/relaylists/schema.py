"""
List schemas -- declarative descriptions of one list type.

A schema is a plain value: a name, a storage key, the wire kind, and the
conversion functions between ``ListItem`` and wire tags. Orchestrators
and adapters are parameterized by a schema instead of being subclassed
per list type.

    TRIBES     kind 30000  ["p", pubkey, relay, petname?]
    BOOKMARKS  kind 30003  ["e"|"a"|"t"|"r", value, relay?]
    MUTES      kind 10000  ["p"|"t"|"word"|"e", value]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Sequence

from .models import ListItem

TagList = list[list[str]]


@dataclass(frozen=True)
class ListSchema:
    """Immutable per-list-type declaration.

    Attributes:
        name: List name used by callers and the CLI.
        storage_key: File / cache key for this list.
        kind: Wire event kind.
        item_tag_types: Tag names that carry list items.
        get_item_id: Identity function for items.
        item_to_wire_tags: Encode one item as wire tags.
        wire_tags_to_items: Decode wire tags into items, ignoring
            anything unrecognized.
        encrypt_private_content: Whether private items go into the
            encrypted content field.
    """

    name: str
    storage_key: str
    kind: int
    item_tag_types: tuple[str, ...]
    get_item_id: Callable[[ListItem], str]
    item_to_wire_tags: Callable[[ListItem], TagList]
    wire_tags_to_items: Callable[[Sequence, int], list[ListItem]]
    encrypt_private_content: bool = True
    description: str = field(default="", compare=False)

    @property
    def parameterized(self) -> bool:
        """Parameterized replaceable kinds carry a ``d`` tag per sub-list."""
        return 30000 <= self.kind < 40000

    def is_item_tag(self, tag: object) -> bool:
        """Check whether a raw wire tag encodes a list item."""
        return (
            isinstance(tag, (list, tuple))
            and len(tag) >= 2
            and tag[0] in self.item_tag_types
            and isinstance(tag[1], str)
            and bool(tag[1])
        )


def reference_schema(
    name: str,
    kind: int,
    tag_types: Sequence[str],
    field_names: Sequence[str] = ("relay",),
    min_length: int = 2,
    encrypt_private_content: bool = True,
    storage_key: str | None = None,
    description: str = "",
) -> ListSchema:
    """Build a schema for lists of ``[type, value, *fields]`` reference tags.

    Args:
        name: List name.
        kind: Wire event kind.
        tag_types: Accepted tag names. With more than one, the tag name is
            kept in ``fields["type"]``.
        field_names: Positional tag elements after the value.
        min_length: Shortest tag to emit; trailing empty elements are
            trimmed down to this length.
        encrypt_private_content: Encrypt private items into content.
        storage_key: Defaults to ``name``.
        description: Human-readable summary for the CLI.

    Returns:
        ListSchema: The schema value.
    """
    types = tuple(tag_types)
    names = tuple(field_names)
    multi_type = len(types) > 1

    def get_item_id(item: ListItem) -> str:
        return item.id

    def item_to_wire_tags(item: ListItem) -> TagList:
        tag_type = item.fields.get("type", types[0]) if multi_type else types[0]
        tag = [tag_type, item.id] + [item.fields.get(n, "") for n in names]
        while len(tag) > min_length and tag[-1] == "":
            tag.pop()
        return [tag]

    def wire_tags_to_items(tags: Sequence, timestamp: int) -> list[ListItem]:
        items: list[ListItem] = []
        seen: set[str] = set()
        for tag in tags:
            if not (
                isinstance(tag, (list, tuple))
                and len(tag) >= 2
                and tag[0] in types
                and isinstance(tag[1], str)
                and tag[1]
            ):
                continue
            if tag[1] in seen:
                continue
            seen.add(tag[1])
            fields: dict[str, str] = {}
            if multi_type:
                fields["type"] = tag[0]
            for index, field_name in enumerate(names, start=2):
                if index < len(tag) and isinstance(tag[index], str) and tag[index]:
                    fields[field_name] = tag[index]
            items.append(ListItem(id=tag[1], fields=fields, added_at=timestamp))
        return items

    return ListSchema(
        name=name,
        storage_key=storage_key or name,
        kind=kind,
        item_tag_types=types,
        get_item_id=get_item_id,
        item_to_wire_tags=item_to_wire_tags,
        wire_tags_to_items=wire_tags_to_items,
        encrypt_private_content=encrypt_private_content,
        description=description,
    )


TRIBES = reference_schema(
    "tribes",
    kind=30000,
    tag_types=("p",),
    field_names=("relay", "petname"),
    min_length=3,
    description="Follow sets: curated groups of people",
)

BOOKMARKS = reference_schema(
    "bookmarks",
    kind=30003,
    tag_types=("e", "a", "t", "r"),
    field_names=("relay",),
    description="Bookmark sets: notes, articles, hashtags and links",
)

MUTES = reference_schema(
    "mutes",
    kind=10000,
    tag_types=("p", "t", "word", "e"),
    field_names=(),
    description="Mute list: people, hashtags, words and threads",
)

SCHEMAS: dict[str, ListSchema] = {s.name: s for s in (TRIBES, BOOKMARKS, MUTES)}


def get_schema(name: str) -> ListSchema:
    """Look up a built-in schema by list name.

    Raises:
        KeyError: If no schema is registered under ``name``.
    """
    try:
        return SCHEMAS[name]
    except KeyError:
        known = ", ".join(sorted(SCHEMAS))
        raise KeyError(f"Unknown list '{name}' (known: {known})") from None
