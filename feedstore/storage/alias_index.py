"""
Alias index over the index store.

Four independent relations share one flat key space, each under its own
fixed prefix so they can never collide:

- d!{hex discovery key} -> public key
- l!{local name}        -> public key
- L!{hex public key}    -> local name (inverse of l!)
- k!{hex public key}    -> empty existence marker

Lookups return None when a record is absent; that is not an error.
"""

from typing import Optional
import structlog

from feedstore.storage.index_store import IndexStore

logger = structlog.get_logger(__name__)


class AliasIndex:
    """
    Namespaced façade over an IndexStore.

    Writes are buffered by the store; call `flush()` to make them durable.
    """

    # Key prefixes
    DKEY_PREFIX = "d!"
    LNAME_PREFIX = "l!"
    INV_LNAME_PREFIX = "L!"
    KEY_PREFIX = "k!"

    def __init__(self, store: IndexStore):
        self.store = store

    # =========================================================================
    # Discovery keys
    # =========================================================================

    async def by_discovery_key(self, hex_dkey: str) -> Optional[bytes]:
        """Public key for a discovery key."""
        return await self.store.get(f"{self.DKEY_PREFIX}{hex_dkey}")

    def put_discovery_key(self, hex_dkey: str, key: bytes) -> None:
        self.store.put(f"{self.DKEY_PREFIX}{hex_dkey}", key)

    # =========================================================================
    # Local names
    # =========================================================================

    async def by_local_name(self, local_name: str) -> Optional[bytes]:
        """Public key bound to a local name."""
        return await self.store.get(f"{self.LNAME_PREFIX}{local_name}")

    async def local_name_of(self, hex_key: str) -> Optional[str]:
        """Local name bound to a public key (inverse relation)."""
        value = await self.store.get(f"{self.INV_LNAME_PREFIX}{hex_key}")
        return value.decode("utf-8") if value is not None else None

    def put_local_name(self, local_name: str, key: bytes) -> None:
        """Bind a local name to a key, writing both directions."""
        self.store.put(f"{self.LNAME_PREFIX}{local_name}", key)
        self.store.put(f"{self.INV_LNAME_PREFIX}{key.hex()}", local_name.encode("utf-8"))
        logger.debug("local_name_buffered", local_name=local_name, key=key.hex())

    # =========================================================================
    # Existence markers
    # =========================================================================

    async def exists(self, hex_key: str) -> bool:
        """Whether a feed has ever been created or loaded in this registry."""
        return await self.store.get(f"{self.KEY_PREFIX}{hex_key}") is not None

    def mark_exists(self, hex_key: str) -> None:
        self.store.put(f"{self.KEY_PREFIX}{hex_key}", b"")

    async def keys(self) -> list[str]:
        """Hex public keys of every known feed, in key order."""
        entries = await self.store.scan(self.KEY_PREFIX)
        return [key[len(self.KEY_PREFIX):] for key, _ in entries]

    # =========================================================================
    # Durability
    # =========================================================================

    async def flush(self) -> None:
        """Commit buffered alias writes."""
        await self.store.flush()
