"""
Append-only feed handle.

A feed is an append-only sequence of binary entries, identified by a
public key and stored in its own namespace:

- key         the public key (written on first open, checked afterwards)
- secret_key  present only for feeds this instance can append to
- data.jsonl  one JSON record per entry

A handle is usable as soon as it is constructed. It opens lazily: every
operation waits for `ready()` first, which in turn waits for the storage
namespace to resolve. If that resolution fails, every queued operation
raises the same failure.
"""

import asyncio
import base64
import json
from typing import Callable, Optional, Union
import structlog

from feedstore.crypto.keys import discovery_key
from feedstore.errors import EngineFailureError, FeedNotWritableError, KeyMismatchError
from feedstore.storage.namespace import DeferredStorage, FeedStorage

logger = structlog.get_logger(__name__)

CloseListener = Callable[["Feed"], None]


class Feed:
    """
    Live handle on one append-only feed.

    Design principles:
    - Append-only: entries are never updated or removed
    - Lazy open: construction does no I/O
    - Close is idempotent and notifies listeners exactly once,
      whoever initiated it
    """

    DATA_FILE = "data.jsonl"
    KEY_FILE = "key"
    SECRET_KEY_FILE = "secret_key"

    def __init__(
        self,
        storage: Union[FeedStorage, DeferredStorage],
        key: Optional[bytes] = None,
        secret_key: Optional[bytes] = None,
    ):
        """
        Initialize a feed handle.

        Args:
            storage: Namespace holding the feed, possibly not resolved yet
            key: Public key, or None until a deferred namespace resolves
            secret_key: Secret key for feeds this instance owns
        """
        self._storage = storage
        self._key = key
        self._secret_key = secret_key
        self._files: Optional[FeedStorage] = None
        self._entries: list[bytes] = []
        self._open_task: Optional[asyncio.Task] = None
        self._close_listeners: list[CloseListener] = []
        self._target: Optional["Feed"] = None
        self.opened = False
        self.closed = False

    @property
    def key(self) -> Optional[bytes]:
        return self._key

    @property
    def discovery_key(self) -> Optional[bytes]:
        return discovery_key(self._key) if self._key is not None else None

    @property
    def writable(self) -> bool:
        if self._target is not None:
            return self._target.writable
        return self._secret_key is not None

    @property
    def length(self) -> int:
        if self._target is not None:
            return self._target.length
        return len(self._entries)

    def bind_key(self, key: bytes) -> None:
        """Attach the public key once a deferred namespace has resolved."""
        if self._key is not None and self._key != key:
            raise KeyMismatchError(
                f"handle bound to {self._key.hex()}, cannot rebind to {key.hex()}"
            )
        self._key = key

    def follow(self, other: "Feed") -> None:
        """
        Serve every operation from another open handle on the same feed.

        Used when a deferred namespace resolves to a feed that already has
        a live handle: both handles then share one set of entries. The
        follower closes when the handle it follows closes.
        """
        self.bind_key(other.key)
        self._target = other
        other.on_close(lambda _: self._mark_closed())

    def on_close(self, listener: CloseListener) -> None:
        """Register a one-shot close listener."""
        if self.closed:
            listener(self)
        else:
            self._close_listeners.append(listener)

    async def ready(self) -> None:
        """Open the feed if needed and wait until it is usable."""
        if self.closed:
            raise EngineFailureError("feed is closed")
        if self._open_task is None:
            self._open_task = asyncio.ensure_future(self._open())
        await asyncio.shield(self._open_task)

    async def append(self, data: bytes) -> int:
        """Append an entry and return its sequence number."""
        return (await self.append_batch([data]))[0]

    async def append_batch(self, items: list[bytes]) -> list[int]:
        """
        Append several entries in a single write.

        More efficient than individual appends for bulk imports.
        """
        await self.ready()
        self._check_open()
        if self._target is not None:
            return await self._target.append_batch(items)
        if not self.writable:
            raise FeedNotWritableError(f"feed {self._key.hex()} has no secret key")

        start = len(self._entries)
        lines = [
            self._encode(start + offset, data) for offset, data in enumerate(items)
        ]

        try:
            with open(self._files.file(self.DATA_FILE), "a") as f:
                f.writelines(lines)
        except OSError as e:
            logger.error("feed_append_error", key=self._key.hex(), error=str(e))
            await self.close()
            raise

        self._entries.extend(bytes(data) for data in items)
        logger.debug("feed_appended", key=self._key.hex(), count=len(items))
        return list(range(start, start + len(items)))

    async def get(self, index: int) -> bytes:
        """Get the entry at a sequence number."""
        await self.ready()
        self._check_open()
        if self._target is not None:
            return await self._target.get(index)
        if not 0 <= index < len(self._entries):
            raise IndexError(f"entry {index} out of range (length {len(self._entries)})")
        return self._entries[index]

    async def close(self) -> None:
        """Close the handle. Calling it again is a no-op."""
        self._mark_closed()

    def _mark_closed(self) -> None:
        if self.closed:
            return
        self.closed = True

        listeners, self._close_listeners = self._close_listeners, []
        for listener in listeners:
            listener(self)

        logger.debug(
            "feed_closed",
            key=self._key.hex() if self._key is not None else None,
        )

    async def _open(self) -> None:
        files = await self._storage.resolve()

        if self._target is not None:
            await self._target.ready()
            self.opened = True
            logger.debug("feed_following", key=self._key.hex())
            return

        key_path = files.file(self.KEY_FILE)
        if key_path.exists():
            stored = key_path.read_bytes()
            if self._key is None:
                self._key = stored
            elif stored != self._key:
                raise KeyMismatchError(
                    f"{files.path} holds feed {stored.hex()}, not {self._key.hex()}"
                )
        elif self._key is None:
            raise EngineFailureError(f"{files.path} holds no feed and no key was given")
        else:
            key_path.write_bytes(self._key)

        secret_path = files.file(self.SECRET_KEY_FILE)
        if self._secret_key is not None:
            if not secret_path.exists():
                secret_path.write_bytes(self._secret_key)
        elif secret_path.exists():
            self._secret_key = secret_path.read_bytes()

        self._entries = self._load_entries(files)
        self._files = files
        self.opened = True

        logger.debug(
            "feed_opened",
            key=self._key.hex(),
            length=len(self._entries),
            writable=self.writable,
        )

    def _load_entries(self, files: FeedStorage) -> list[bytes]:
        data_path = files.file(self.DATA_FILE)
        entries: list[bytes] = []

        if not data_path.exists():
            return entries

        with open(data_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                    entries.append(base64.b64decode(record["data"]))
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.warning("invalid_feed_line", path=str(data_path), error=str(e))

        return entries

    def _check_open(self) -> None:
        if self.closed:
            raise EngineFailureError("feed is closed")

    @staticmethod
    def _encode(seq: int, data: bytes) -> str:
        return json.dumps({
            "seq": seq,
            "data": base64.b64encode(data).decode("ascii"),
        }) + "\n"

    def __repr__(self) -> str:
        key = self._key.hex() if self._key is not None else "<pending>"
        return f"Feed(key={key}, length={len(self._entries)}, closed={self.closed})"
