"""
Node identity and rendezvous key derivation.

A node is identified by a hex string. The rendezvous key other nodes look
up in the directory is the SHA-1 digest of the raw identity bytes, so any
host that knows the identity string computes the same key.
"""

import binascii
import hashlib
import logging
import secrets

from ..errors import IdentityError

logger = logging.getLogger(__name__)

# Number of random bytes in a generated identity.
IDENTITY_BYTES = 16


class RendezvousKey(bytes):
    """A 160-bit directory lookup key.

    Behaves like the raw 20 digest bytes everywhere bytes are accepted;
    formats as lowercase hex in logs.
    """

    SIZE = 20

    def __new__(cls, value: bytes) -> "RendezvousKey":
        if len(value) != cls.SIZE:
            raise ValueError(f"Rendezvous key must be {cls.SIZE} bytes, got {len(value)}")
        return super().__new__(cls, value)

    def __str__(self) -> str:
        return self.hex()

    def __repr__(self) -> str:
        return f"RendezvousKey({self.hex()})"


def random_hex_id() -> str:
    """Generate a random identity.

    Returns:
        16 random bytes encoded as 32 lowercase hex characters
    """
    return secrets.token_bytes(IDENTITY_BYTES).hex()


def decode_identity(identity_hex: str) -> bytes:
    """Decode an identity string into its raw bytes.

    Args:
        identity_hex: The identity as a hex string

    Returns:
        The raw identity bytes

    Raises:
        IdentityError: If the string has odd length or non-hex characters
    """
    try:
        return binascii.unhexlify(identity_hex)
    except (binascii.Error, ValueError, TypeError) as e:
        raise IdentityError(identity_hex) from e


def derive_rendezvous_key(identity_hex: str) -> RendezvousKey:
    """Derive the rendezvous key for an identity.

    Args:
        identity_hex: The identity as a hex string

    Returns:
        SHA-1 digest of the decoded identity bytes

    Raises:
        IdentityError: If the identity is not valid hex
    """
    raw_id = decode_identity(identity_hex)
    return RendezvousKey(hashlib.sha1(raw_id).digest())
