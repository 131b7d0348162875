"""
Feed registry.

The registry owns every open feed handle and the aliases that lead to
them. A feed can be reached by:
- its public key (32 raw bytes or 64 hex characters)
- its discovery key (via `from_discovery_key`)
- a local name chosen by the caller (never shared)

In-memory caches answer the common case without I/O; the alias index
answers everything else and survives restarts. Feed data itself lives
in one namespace per feed under the storage root (f_{hex key}).

All I/O goes through one asyncio event loop. Creation schedules work on
the running loop, so the registry must be used from inside one.
"""

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union
import structlog

from feedstore.crypto.keys import discovery_key, generate_keypair
from feedstore.engine.feed import Feed
from feedstore.errors import (
    FeedNotFoundError,
    FeedNotLoadedError,
    LocalNameConflictError,
)
from feedstore.registry.creation import PendingCreation
from feedstore.storage.alias_index import AliasIndex
from feedstore.storage.index_store import IndexStore
from feedstore.storage.namespace import DeferredStorage, FeedStorage, StorageRoot
from feedstore.utils.ids import Identifier, IdKind, classify_identifier, key_to_bytes, key_to_hex
from feedstore.utils.latch import JoinLatch

if TYPE_CHECKING:
    from feedstore.config import RegistryConfig

logger = structlog.get_logger(__name__)

FEED_PREFIX = "f_"
INDEX_SEGMENT = "db"
INDEX_FILE = "index.duckdb"

# Flush, ready, and the synchronous checkpoint after both are scheduled
CREATION_SIGNALS = 3


class FeedRegistry:
    """
    Registry of append-only feeds over one storage root.

    Caches (owned exclusively by this instance):
    - _feeds: hex public key -> open Feed handle
    - _dkeys: hex discovery key -> public key, for open feeds
    - _local_names: local name -> public key, for open feeds
    - _pending_names: local name -> handle still waiting on the index

    A handle that closes itself (or is closed by someone else) is evicted
    from all caches by the close listener installed when it was opened.
    """

    def __init__(
        self,
        storage_root: Union[StorageRoot, str, Path],
        index_store: Optional[IndexStore] = None,
    ):
        """
        Initialize the registry.

        Args:
            storage_root: Root directory (or provider) for feed namespaces
            index_store: Alias index store; defaults to db/index.duckdb
                under the storage root
        """
        if not isinstance(storage_root, StorageRoot):
            storage_root = StorageRoot(storage_root)
        self.root = storage_root
        self.store = index_store or IndexStore(
            self.root.file(INDEX_SEGMENT) / INDEX_FILE
        )
        self.aliases = AliasIndex(self.store)

        self._feeds: dict[str, Feed] = {}
        self._dkeys: dict[str, bytes] = {}
        self._local_names: dict[str, bytes] = {}
        self._pending_names: dict[str, Feed] = {}
        self._background: set[asyncio.Future] = set()

        logger.info(
            "feed_registry_initialized",
            root=str(self.root.root_path),
            index=self.store.db_path,
        )

    @classmethod
    def from_config(cls, config: "RegistryConfig") -> "FeedRegistry":
        """Build a registry from loaded settings."""
        index_store = IndexStore(config.index_path) if config.index_path else None
        return cls(config.storage_root, index_store)

    # =========================================================================
    # Creation
    # =========================================================================

    def create_local(self, local_name: Optional[str] = None) -> PendingCreation:
        """
        Create a feed owned by this instance, with a fresh key pair.

        Returns at once; `.feed` is usable immediately and awaiting the
        result waits until the aliases are durable and the feed is ready.
        Every failure, a local name conflict included, is raised by the
        awaitable rather than by this call.
        """
        keypair = generate_keypair()
        return self._create(keypair.public_key, keypair.secret_key, local_name)

    def create_remote(
        self,
        key: Identifier,
        local_name: Optional[str] = None,
        secret_key: Optional[bytes] = None,
    ) -> PendingCreation:
        """
        Register a feed known by its public key.

        Same protocol as `create_local`. Creating a key that is already
        open reuses the open handle.
        """
        return self._create(key_to_bytes(key), secret_key, local_name)

    def _create(
        self,
        key: bytes,
        secret_key: Optional[bytes],
        local_name: Optional[str],
    ) -> PendingCreation:
        hkey = key.hex()
        hdkey = discovery_key(key).hex()

        feed = self._feeds.get(hkey)
        reused = feed is not None

        if local_name is not None:
            bound = self._local_names.get(local_name)
            if bound is not None and bound != key:
                # The losing handle is never tracked
                if feed is None:
                    feed = Feed(self._storage_for(hkey), key, secret_key=secret_key)
                return PendingCreation(
                    feed, self._reject_name(feed, local_name, bound, reused)
                )

        if feed is None:
            feed = Feed(self._storage_for(hkey), key, secret_key=secret_key)
            self._track(hkey, feed)

        self._dkeys[hdkey] = key
        if local_name is not None:
            self._local_names[local_name] = key

        logger.info(
            "feed_creating",
            key=hkey,
            local_name=local_name,
            owned=secret_key is not None,
            reused=reused,
        )

        return PendingCreation(
            feed, self._persist_and_join(feed, key, hdkey, local_name, reused)
        )

    async def _persist_and_join(
        self,
        feed: Feed,
        key: bytes,
        hdkey: str,
        local_name: Optional[str],
        reused: bool,
    ) -> Feed:
        """Write the aliases, then wait for both the flush and the feed."""
        hkey = key.hex()

        if local_name is not None:
            bound = await self.aliases.by_local_name(local_name)
            if bound is not None and bound != key:
                if self._local_names.get(local_name) == key:
                    del self._local_names[local_name]
                if not reused:
                    self._evict(hkey, feed)
                await self._reject_name(feed, local_name, bound, reused)

        self.aliases.put_discovery_key(hdkey, key)
        self.aliases.mark_exists(hkey)
        if local_name is not None:
            self.aliases.put_local_name(local_name, key)

        latch = JoinLatch(CREATION_SIGNALS)
        self._spawn(self._flush_into(latch))
        self._spawn(self._ready_into(feed, latch))
        latch.signal()

        try:
            await latch.wait()
        except Exception as e:
            logger.error("feed_create_failed", key=hkey, error=str(e))
            raise

        logger.info("feed_created", key=hkey, local_name=local_name)
        return feed

    async def _reject_name(
        self, feed: Feed, local_name: str, bound: bytes, reused: bool
    ) -> Feed:
        """Fail a creation whose local name belongs to another key."""
        logger.warning(
            "local_name_conflict",
            local_name=local_name,
            key=feed.key.hex(),
            existing=bound.hex(),
        )
        if not reused:
            await feed.close()
        raise LocalNameConflictError(local_name, bound.hex())

    async def _flush_into(self, latch: JoinLatch) -> None:
        try:
            await self.aliases.flush()
        except Exception as e:
            latch.fail(e)
        else:
            latch.signal()

    async def _ready_into(self, feed: Feed, latch: JoinLatch) -> None:
        try:
            await feed.ready()
        except Exception as e:
            latch.fail(e)
        else:
            latch.signal()

    # =========================================================================
    # Alias Resolution
    # =========================================================================

    async def from_discovery_key(self, dkey: Identifier) -> Optional[bytes]:
        """Public key for a discovery key, or None if unknown."""
        hdkey = key_to_hex(dkey)
        if hdkey is None:
            raise ValueError(f"not a discovery key: {dkey!r}")
        if hdkey in self._dkeys:
            return self._dkeys[hdkey]
        return await self.aliases.by_discovery_key(hdkey)

    async def from_local_name(self, local_name: str) -> Optional[bytes]:
        """Public key bound to a local name, or None if unknown."""
        if local_name in self._local_names:
            return self._local_names[local_name]
        return await self.aliases.by_local_name(local_name)

    async def local_name_of(self, key: Identifier) -> Optional[str]:
        """Local name bound to a public key, or None."""
        return await self.aliases.local_name_of(key_to_bytes(key).hex())

    async def list_keys(self) -> list[bytes]:
        """Public keys of every feed this registry has created or loaded."""
        return [bytes.fromhex(hkey) for hkey in await self.aliases.keys()]

    # =========================================================================
    # Lookup
    # =========================================================================

    def get(self, identifier: Identifier) -> Feed:
        """
        Resolve a key, hex key or local name to a feed handle.

        Never blocks: known feeds come from the cache, unknown keys are
        loaded lazily, and unknown names return a handle whose storage is
        resolved through the alias index on first use. If the name turns
        out not to exist, every operation on that handle raises
        FeedNotFoundError.
        """
        cached = self._cached_feed(identifier)
        if cached is not None:
            return cached

        feed_id = classify_identifier(identifier)
        if feed_id.kind is IdKind.KEY:
            return self._load_key(feed_id.key)
        if feed_id.name in self._local_names:
            return self._load_key(self._local_names[feed_id.name])
        return self._load_deferred_name(feed_id.name)

    def _cached_feed(self, identifier: Identifier) -> Optional[Feed]:
        if isinstance(identifier, str) and identifier in self._feeds:
            return self._feeds[identifier]
        hkey = key_to_hex(identifier)
        return self._feeds.get(hkey) if hkey is not None else None

    def _load_key(self, key: bytes) -> Feed:
        hkey = key.hex()
        feed = self._feeds.get(hkey)
        if feed is not None:
            return feed

        feed = Feed(self._storage_for(hkey), key)
        self._track(hkey, feed)

        hdkey = discovery_key(key).hex()
        self._dkeys[hdkey] = key
        self.aliases.put_discovery_key(hdkey, key)
        self.aliases.mark_exists(hkey)

        logger.debug("feed_loaded", key=hkey)
        return feed

    def _load_deferred_name(self, local_name: str) -> Feed:
        pending = self._pending_names.get(local_name)
        if pending is not None:
            return pending

        async def resolve() -> FeedStorage:
            key = await self.aliases.by_local_name(local_name)
            self._drop_pending(local_name, feed)
            if key is None:
                logger.warning("local_name_not_found", local_name=local_name)
                raise FeedNotFoundError(local_name)

            hkey = key.hex()
            existing = self._feeds.get(hkey)
            if existing is not None:
                feed.follow(existing)
            else:
                feed.bind_key(key)

            if not feed.closed:
                self._local_names[local_name] = key
                self._dkeys[discovery_key(key).hex()] = key
                if existing is None:
                    self._track(hkey, feed)

            logger.debug(
                "local_name_resolved",
                local_name=local_name,
                key=hkey,
                shared=existing is not None,
            )
            return self._storage_for(hkey)

        feed = Feed(DeferredStorage(resolve))
        self._pending_names[local_name] = feed
        feed.on_close(lambda closed: self._drop_pending(local_name, closed))
        return feed

    # =========================================================================
    # Existence and Open State
    # =========================================================================

    async def has(self, key: Identifier) -> bool:
        """Whether a feed exists in this registry, open or not."""
        hkey = key_to_hex(key)
        if hkey is None:
            raise ValueError(f"not a public key: {key!r}")
        if hkey in self._feeds:
            return True
        return await self.aliases.exists(hkey)

    def is_open(self, identifier: Identifier) -> bool:
        """Whether a feed currently has an open handle. No I/O."""
        return self._cached_hex(identifier) in self._feeds

    def _cached_hex(self, identifier: Identifier) -> Optional[str]:
        if isinstance(identifier, str) and identifier in self._feeds:
            return identifier
        hkey = key_to_hex(identifier)
        if hkey is not None:
            return hkey
        if isinstance(identifier, str) and identifier in self._local_names:
            return self._local_names[identifier].hex()
        return None

    # =========================================================================
    # Close and Delete
    # =========================================================================

    async def close(self, identifier: Identifier) -> None:
        """
        Close an open feed.

        Raises:
            FeedNotLoadedError: no open handle for this identifier
        """
        hkey = self._cached_hex(identifier)
        feed = self._feeds.get(hkey) if hkey is not None else None
        if feed is None:
            raise FeedNotLoadedError(identifier)

        self._evict(hkey, feed)
        await feed.close()
        logger.info("feed_closed", key=hkey)

    async def close_all(self) -> None:
        """
        Close every open feed concurrently, along with handles whose local
        name has not been resolved yet.

        The first failure is raised as soon as it is seen; the remaining
        closes are not waited for.
        """
        feeds = list(self._feeds.items())
        pending = list(self._pending_names.values())
        self._pending_names.clear()
        if not feeds and not pending:
            return

        for hkey, feed in feeds:
            self._evict(hkey, feed)

        await asyncio.gather(
            *(feed.close() for _, feed in feeds),
            *(feed.close() for feed in pending),
        )
        logger.info("feeds_closed", count=len(feeds), unresolved=len(pending))

    async def delete(self, identifier: Identifier) -> None:
        """
        Close a feed if it is open, then erase its storage namespace.

        The namespace is erased whether or not the feed was open. The
        aliases stay in the index.
        """
        hkey = self._cached_hex(identifier)
        if hkey is None:
            feed_id = classify_identifier(identifier)
            key = await self.from_local_name(feed_id.name)
            if key is None:
                raise FeedNotFoundError(identifier)
            hkey = key.hex()

        if hkey in self._feeds:
            await self.close(hkey)

        await self.root.erase(f"{FEED_PREFIX}{hkey}")
        logger.info("feed_deleted", key=hkey)

    async def shutdown(self) -> None:
        """Close every feed, flush the index and release it."""
        try:
            await self.close_all()
            await self.aliases.flush()
        finally:
            self.store.close()
        logger.info("feed_registry_shutdown", root=str(self.root.root_path))

    # =========================================================================
    # Internals
    # =========================================================================

    def _storage_for(self, hkey: str) -> FeedStorage:
        return self.root.namespace(f"{FEED_PREFIX}{hkey}")

    def _track(self, hkey: str, feed: Feed) -> None:
        self._feeds[hkey] = feed
        feed.on_close(lambda closed: self._evict(hkey, closed))

    def _evict(self, hkey: str, feed: Feed) -> None:
        """Drop a handle and its aliases from the caches. Safe to repeat."""
        if self._feeds.get(hkey) is not feed:
            return
        del self._feeds[hkey]

        key = bytes.fromhex(hkey)
        self._dkeys.pop(discovery_key(key).hex(), None)
        for name in [name for name, bound in self._local_names.items() if bound == key]:
            del self._local_names[name]

        logger.debug("feed_evicted", key=hkey)

    def _drop_pending(self, local_name: str, feed: Feed) -> None:
        if self._pending_names.get(local_name) is feed:
            del self._pending_names[local_name]

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
