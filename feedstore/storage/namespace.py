"""
Per-feed storage namespaces.

Every feed keeps its data in its own directory under a single storage
root. A namespace may also be deferred: the handle exists before the
registry knows which directory backs it (a local name that still has to
be looked up in the index).
"""

import asyncio
import shutil
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union
import structlog

logger = structlog.get_logger(__name__)


class FeedStorage:
    """Storage scoped to one feed: a directory and the files in it."""

    def __init__(self, path: Path, segment: str):
        self.path = path
        self.segment = segment

    def file(self, name: str) -> Path:
        """Path of a file in this namespace; the directory is created on demand."""
        self.path.mkdir(parents=True, exist_ok=True)
        return self.path / name

    async def resolve(self) -> "FeedStorage":
        return self

    def __repr__(self) -> str:
        return f"FeedStorage({str(self.path)!r})"


class StorageRoot:
    """
    Root storage provider.

    Carves scoped namespaces out of one directory and erases them.
    """

    def __init__(self, root_path: Union[str, Path]):
        self.root_path = Path(root_path)
        self.root_path.mkdir(parents=True, exist_ok=True)
        logger.debug("storage_root_initialized", path=str(self.root_path))

    def namespace(self, segment: str) -> FeedStorage:
        """Storage scoped to a single path segment."""
        return FeedStorage(self.root_path / segment, segment)

    def file(self, name: str) -> Path:
        """Path of a file directly under the root."""
        return self.root_path / name

    async def erase(self, segment: str) -> None:
        """Erase a namespace entirely. Missing namespaces are not an error."""
        target = self.root_path / segment
        if target.exists():
            shutil.rmtree(target)
            logger.info("namespace_erased", segment=segment)


class StorageState(Enum):
    """Lifecycle of a deferred namespace."""
    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


class DeferredStorage:
    """
    A namespace that is not known yet.

    The resolver runs once, on first use. Every caller of `resolve()`
    waits for that single run: while pending, callers queue on it; once
    settled, they get the same storage or the same failure.
    """

    def __init__(self, resolver: Callable[[], Awaitable[FeedStorage]]):
        self._resolver = resolver
        self._task: Optional[asyncio.Task] = None
        self._storage: Optional[FeedStorage] = None
        self._error: Optional[BaseException] = None

    @property
    def state(self) -> StorageState:
        if self._storage is not None:
            return StorageState.RESOLVED
        if self._error is not None:
            return StorageState.FAILED
        return StorageState.PENDING

    async def resolve(self) -> FeedStorage:
        if self._storage is not None:
            return self._storage
        if self._error is not None:
            raise self._error
        if self._task is None:
            self._task = asyncio.ensure_future(self._run())
        return await asyncio.shield(self._task)

    async def _run(self) -> FeedStorage:
        try:
            self._storage = await self._resolver()
        except Exception as e:
            self._error = e
            raise
        return self._storage
