"""
Encryption partition -- public tags vs. encrypted private content.

Before publish, a list is split on each item's ``is_private`` flag. The
private half is encoded as a JSON tag array and encrypted to the owner's
own key. On fetch the process reverses: a failure to decrypt is never
fatal, it turns the ciphertext into an opaque blob that travels on
unchanged.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from .errors import DecryptionError, ListSyncError
from .models import ListItem, OpaquePrivateBlob
from .protocols import Cipher
from .schema import ListSchema

logger = logging.getLogger("relaylists.encryption")


class EncryptionPartition:
    """Splits, encrypts, and decrypts a list's private partition.

    Args:
        schema: Wire encoding for items.
        cipher: Encryption capability; ``None`` means nothing private can
            be read or written on this device.
    """

    def __init__(self, schema: ListSchema, cipher: Optional[Cipher] = None) -> None:
        self.schema = schema
        self.cipher = cipher

    @property
    def can_decrypt(self) -> bool:
        return self.cipher is not None

    @staticmethod
    def partition(items: list[ListItem]) -> tuple[list[ListItem], list[ListItem]]:
        """Split items into (public, private), preserving order."""
        public = [item for item in items if not item.is_private]
        private = [item for item in items if item.is_private]
        return public, private

    def encode_tags(self, items: list[ListItem]) -> list[list[str]]:
        """Flatten items into wire tags in list order."""
        tags: list[list[str]] = []
        for item in items:
            tags.extend(self.schema.item_to_wire_tags(item))
        return tags

    def serialize_private(self, items: list[ListItem], recipient_key: str) -> str:
        """Encrypt private items into an event content string.

        Raises:
            ListSyncError: If no cipher is available.
        """
        if self.cipher is None:
            raise ListSyncError(
                f"Cannot encrypt private {self.schema.name} items without a cipher"
            )
        plaintext = json.dumps(self.encode_tags(items), ensure_ascii=False)
        return self.cipher.encrypt(plaintext, recipient_key)

    def deserialize_private(
        self,
        ciphertext: str,
        key: str,
        timestamp: int = 0,
        set_id: str = "",
    ) -> list[ListItem]:
        """Decrypt and decode a private partition.

        Args:
            ciphertext: Event content.
            key: Counterparty key for decryption (the owner's own pubkey).
            timestamp: Event ``created_at`` injected as ``added_at``.
            set_id: Sub-list the items belong to.

        Returns:
            list[ListItem]: Private items, all flagged ``is_private``.

        Raises:
            DecryptionError: On cipher failure or a malformed plaintext.
        """
        if self.cipher is None:
            raise DecryptionError("No cipher available on this device")
        try:
            plaintext = self.cipher.decrypt(ciphertext, key)
        except Exception as exc:
            raise DecryptionError(f"Decryption failed: {exc}") from exc

        try:
            tags = json.loads(plaintext)
        except (json.JSONDecodeError, TypeError) as exc:
            raise DecryptionError(f"Private content is not JSON: {exc}") from exc
        if not isinstance(tags, list):
            raise DecryptionError("Private content is not a tag array")

        items = self.schema.wire_tags_to_items(tags, timestamp)
        return [
            item.model_copy(update={"is_private": True, "set_id": set_id})
            for item in items
        ]

    def decode_private_or_opaque(
        self,
        ciphertext: str,
        key: str,
        timestamp: int = 0,
        set_id: str = "",
    ) -> tuple[list[ListItem], Optional[OpaquePrivateBlob]]:
        """Decode a private partition, falling back to an opaque blob.

        Returns:
            tuple: (items, None) on success, ([], blob) when the content
            cannot be read on this device.
        """
        if not ciphertext:
            return [], None
        try:
            return self.deserialize_private(ciphertext, key, timestamp, set_id), None
        except DecryptionError as exc:
            logger.warning(
                "Keeping undecryptable %s partition '%s' as opaque: %s",
                self.schema.name,
                set_id,
                exc,
            )
            blob = OpaquePrivateBlob(
                set_id=set_id, ciphertext=ciphertext, created_at=timestamp
            )
            return [], blob
