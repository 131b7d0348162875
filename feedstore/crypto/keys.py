"""
Key material for feeds, using PyNaCl.

Feeds are identified by Ed25519 public keys. The discovery key is a
keyed BLAKE2b hash of a fixed label, so it can be shared on the network
without revealing the public key it was derived from.
"""

from dataclasses import dataclass

import nacl.encoding
import nacl.hash
import nacl.signing

DISCOVERY_LABEL = b"hypercore"
DISCOVERY_KEY_BYTES = 32


@dataclass(frozen=True)
class KeyPair:
    """Ed25519 key pair. `secret_key` is the 32-byte seed followed by the public key."""
    public_key: bytes
    secret_key: bytes


def generate_keypair() -> KeyPair:
    """Generate a fresh Ed25519 key pair."""
    signing_key = nacl.signing.SigningKey.generate()
    public_key = bytes(signing_key.verify_key)
    return KeyPair(public_key=public_key, secret_key=bytes(signing_key) + public_key)


def discovery_key(public_key: bytes) -> bytes:
    """Derive the discovery key for a public key."""
    return nacl.hash.blake2b(
        DISCOVERY_LABEL,
        digest_size=DISCOVERY_KEY_BYTES,
        key=public_key,
        encoder=nacl.encoding.RawEncoder,
    )
