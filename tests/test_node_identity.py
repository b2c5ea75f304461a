"""Tests for identity decoding and rendezvous key derivation."""

import hashlib

import pytest

from dhtmsg.errors import IdentityError
from dhtmsg.networking.node_identity import (
    IDENTITY_BYTES,
    RendezvousKey,
    decode_identity,
    derive_rendezvous_key,
    random_hex_id,
)


class TestDeriveRendezvousKey:
    """Tests for derive_rendezvous_key."""

    def test_known_vector(self):
        """'ab01' decodes to two bytes whose SHA-1 is a fixed key."""
        assert decode_identity("ab01") == bytes([0xAB, 0x01])
        key = derive_rendezvous_key("ab01")
        assert key.hex() == "188f71aaebe6b2883dc169844feb7133fa5a0d24"

    def test_deterministic(self):
        """Deriving twice yields identical keys."""
        identity = "00112233445566778899aabbccddeeff"
        assert derive_rendezvous_key(identity) == derive_rendezvous_key(identity)

    def test_key_is_sha1_of_raw_bytes(self):
        """The key is the digest of the decoded bytes, not of the hex text."""
        identity = "deadbeef"
        expected = hashlib.sha1(bytes.fromhex(identity)).digest()
        assert bytes(derive_rendezvous_key(identity)) == expected
        assert bytes(derive_rendezvous_key(identity)) != hashlib.sha1(identity.encode()).digest()

    def test_case_insensitive(self):
        """Upper and lower case hex decode to the same bytes."""
        assert derive_rendezvous_key("AB01") == derive_rendezvous_key("ab01")

    def test_empty_identity(self):
        """The empty string is zero bytes and hashes to the empty digest."""
        assert derive_rendezvous_key("").hex() == "da39a3ee5e6b4b0d3255bfef95601890afd80709"

    def test_key_size(self):
        """Keys are 160 bits."""
        key = derive_rendezvous_key("ab01")
        assert isinstance(key, RendezvousKey)
        assert len(key) == 20

    @pytest.mark.parametrize("bad", ["abc", "zz", "ab 01", "0x01", "g0", "é0"])
    def test_invalid_hex_rejected(self, bad):
        """Odd-length or non-hex strings fail with IdentityError."""
        with pytest.raises(IdentityError) as excinfo:
            derive_rendezvous_key(bad)
        assert excinfo.value.identity_hex == bad
        assert excinfo.value.__cause__ is not None

    def test_identity_error_is_value_error(self):
        """Callers can catch decoding failures as ValueError."""
        with pytest.raises(ValueError):
            derive_rendezvous_key("xyz")


class TestRendezvousKey:
    """Tests for the RendezvousKey bytes type."""

    def test_wrong_length_rejected(self):
        """Only 20-byte values are keys."""
        with pytest.raises(ValueError):
            RendezvousKey(b"\x00" * 19)

    def test_str_is_hex(self):
        """Keys format as hex."""
        key = RendezvousKey(b"\x01" * 20)
        assert str(key) == "01" * 20
        assert "01" * 20 in repr(key)


class TestRandomHexId:
    """Tests for random identity generation."""

    def test_shape(self):
        """Generated identities are 16 bytes of lowercase hex."""
        identity = random_hex_id()
        assert len(identity) == IDENTITY_BYTES * 2
        assert identity == identity.lower()
        assert len(bytes.fromhex(identity)) == IDENTITY_BYTES

    def test_usable_for_derivation(self):
        """A generated identity always derives a key."""
        assert len(derive_rendezvous_key(random_hex_id())) == 20

    def test_distinct(self):
        """Consecutive identities differ."""
        assert len({random_hex_id() for _ in range(32)}) == 32
