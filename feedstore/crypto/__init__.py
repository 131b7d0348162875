"""Key pairs and discovery keys."""

from feedstore.crypto.keys import KeyPair, discovery_key, generate_keypair

__all__ = ["KeyPair", "discovery_key", "generate_keypair"]
