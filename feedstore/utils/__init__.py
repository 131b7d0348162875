"""Identifier helpers and synchronization primitives."""

from feedstore.utils.ids import FeedId, IdKind, classify_identifier, key_to_bytes, key_to_hex
from feedstore.utils.latch import JoinLatch

__all__ = [
    "FeedId",
    "IdKind",
    "JoinLatch",
    "classify_identifier",
    "key_to_bytes",
    "key_to_hex",
]
