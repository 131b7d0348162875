"""
Pending feed creation.

Creating a feed hands back its handle at once, so callers can attach
listeners or queue appends, while the creation itself completes later:
after the alias index has been flushed and the feed is ready.
"""

import asyncio
from typing import Awaitable, Callable, Generator, Optional

from feedstore.engine.feed import Feed


class PendingCreation:
    """
    A feed whose creation is still in flight.

    `feed` is usable immediately. Await the object itself (or register a
    done callback) to learn when the creation has completed:

        creation = registry.create_local("notes")
        creation.feed.on_close(...)
        feed = await creation
    """

    def __init__(self, feed: Feed, completion: Awaitable[Feed]):
        self.feed = feed
        self._task = asyncio.ensure_future(completion)

    def done(self) -> bool:
        return self._task.done()

    def exception(self) -> Optional[BaseException]:
        """The creation failure, once done; None on success."""
        return self._task.exception()

    def add_done_callback(
        self, callback: Callable[[Optional[BaseException], Optional[Feed]], None]
    ) -> None:
        """Call `callback(error, feed)` exactly once when the creation settles."""

        def _on_done(task: asyncio.Task) -> None:
            error = task.exception()
            callback(error, None if error is not None else task.result())

        self._task.add_done_callback(_on_done)

    def __await__(self) -> Generator[None, None, Feed]:
        return self._task.__await__()
