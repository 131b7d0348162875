"""
Identifier classification.

A caller can name a feed by its raw public key, by the key's hex form,
or by a local name. The shape is decided once, here, and the registry
dispatches on the result.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

KEY_BYTES = 32
HEX_KEY_RE = re.compile(r"^[0-9A-Fa-f]{64}$")

Identifier = Union[bytes, bytearray, str]


class IdKind(Enum):
    """Shape of a feed identifier."""
    KEY = "key"
    NAME = "name"


@dataclass(frozen=True)
class FeedId:
    """A classified identifier: either a public key or a local name."""
    kind: IdKind
    key: Optional[bytes] = None
    name: Optional[str] = None

    @property
    def hex(self) -> Optional[str]:
        return self.key.hex() if self.key is not None else None


def classify_identifier(identifier: Identifier) -> FeedId:
    """
    Classify an identifier of unknown shape.

    - 32 raw bytes: a public key
    - 64 hex characters: a public key in hex form
    - any other non-empty string: a local name

    Raises:
        ValueError: bytes of the wrong length, or an empty name
        TypeError: anything that is neither bytes nor str
    """
    if isinstance(identifier, (bytes, bytearray)):
        if len(identifier) != KEY_BYTES:
            raise ValueError(
                f"public keys are {KEY_BYTES} bytes, got {len(identifier)}"
            )
        return FeedId(IdKind.KEY, key=bytes(identifier))

    if isinstance(identifier, str):
        if HEX_KEY_RE.match(identifier):
            return FeedId(IdKind.KEY, key=bytes.fromhex(identifier))
        if not identifier:
            raise ValueError("local names must not be empty")
        return FeedId(IdKind.NAME, name=identifier)

    raise TypeError(f"unsupported feed identifier type: {type(identifier).__name__}")


def key_to_hex(value: Identifier) -> Optional[str]:
    """Canonical lowercase hex of a 32-byte key given as bytes or hex, else None."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex() if len(value) == KEY_BYTES else None
    if isinstance(value, str) and HEX_KEY_RE.match(value):
        return value.lower()
    return None


def key_to_bytes(value: Identifier) -> bytes:
    """Raw bytes of a key given as bytes or hex."""
    if isinstance(value, (bytes, bytearray)) and len(value) == KEY_BYTES:
        return bytes(value)
    if isinstance(value, str) and HEX_KEY_RE.match(value):
        return bytes.fromhex(value)
    raise ValueError(f"not a public key: {value!r}")
