"""Tests for the public/private encryption partition."""

from __future__ import annotations

import json

import pytest

from relaylists.encryption import EncryptionPartition
from relaylists.errors import DecryptionError, ListSyncError
from relaylists.models import ListItem
from relaylists.schema import TRIBES

from fakes import PUBKEY, FailingCipher, FakeCipher


def _items():
    return [
        ListItem(id="a" * 64),
        ListItem(id="b" * 64, is_private=True, fields={"petname": "bee"}),
        ListItem(id="c" * 64),
    ]


class TestPartition:
    """Splitting on is_private."""

    def test_partition_preserves_order(self):
        public, private = EncryptionPartition.partition(_items())
        assert [i.id[0] for i in public] == ["a", "c"]
        assert [i.id[0] for i in private] == ["b"]


class TestSerializePrivate:
    """Private items are a JSON tag array, encrypted."""

    def test_plaintext_is_tag_array(self):
        cipher = FakeCipher()
        partition = EncryptionPartition(TRIBES, cipher)
        ciphertext = partition.serialize_private([_items()[1]], PUBKEY)
        assert json.loads(cipher.decrypt(ciphertext, PUBKEY)) == [["p", "b" * 64, "", "bee"]]

    def test_requires_cipher(self):
        with pytest.raises(ListSyncError):
            EncryptionPartition(TRIBES).serialize_private(_items(), PUBKEY)

    def test_roundtrip_marks_private(self):
        partition = EncryptionPartition(TRIBES, FakeCipher())
        ciphertext = partition.serialize_private([_items()[1]], PUBKEY)
        items = partition.deserialize_private(ciphertext, PUBKEY, timestamp=7, set_id="s")
        assert len(items) == 1
        assert items[0].is_private
        assert items[0].set_id == "s"
        assert items[0].added_at == 7
        assert items[0].fields == {"petname": "bee"}


class TestDeserializeFailures:
    """Every failure is a DecryptionError."""

    def test_cipher_failure(self):
        with pytest.raises(DecryptionError):
            EncryptionPartition(TRIBES, FailingCipher()).deserialize_private("enc:xx", PUBKEY)

    def test_not_json(self):
        cipher = FakeCipher()
        bad = cipher.encrypt("{not json", PUBKEY)
        with pytest.raises(DecryptionError, match="not JSON"):
            EncryptionPartition(TRIBES, cipher).deserialize_private(bad, PUBKEY)

    def test_not_a_list(self):
        cipher = FakeCipher()
        bad = cipher.encrypt('{"p": 1}', PUBKEY)
        with pytest.raises(DecryptionError, match="tag array"):
            EncryptionPartition(TRIBES, cipher).deserialize_private(bad, PUBKEY)

    def test_no_cipher(self):
        with pytest.raises(DecryptionError):
            EncryptionPartition(TRIBES).deserialize_private("enc:xx", PUBKEY)


class TestOpaqueFallback:
    """Undecryptable content becomes an opaque blob."""

    def test_blob_keeps_ciphertext(self):
        items, blob = EncryptionPartition(TRIBES, FailingCipher()).decode_private_or_opaque(
            "enc:secret", PUBKEY, timestamp=9, set_id="s"
        )
        assert items == []
        assert blob is not None
        assert blob.ciphertext == "enc:secret"
        assert blob.set_id == "s"
        assert blob.created_at == 9

    def test_empty_content_is_nothing(self):
        assert EncryptionPartition(TRIBES).decode_private_or_opaque("", PUBKEY) == ([], None)
