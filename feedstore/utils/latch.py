"""
Countdown latch used to join independent completion signals.

Feed creation waits on an index flush and on the feed becoming ready.
Either may finish first, and the creation must complete exactly once.
"""

import asyncio
from typing import Callable, Optional


class JoinLatch:
    """
    Settles once after `count` signals, or at once on the first failure.

    Callbacks registered with `add_done_callback` run exactly once with
    the failure (or None). Signals and failures arriving after the latch
    has settled are ignored.
    """

    def __init__(self, count: int):
        if count < 1:
            raise ValueError("count must be at least 1")
        self._remaining = count
        self._error: Optional[BaseException] = None
        self._settled = False
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[Optional[BaseException]], None]] = []

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def settled(self) -> bool:
        return self._settled

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def signal(self) -> None:
        """Count down one signal."""
        if self._settled:
            return
        self._remaining -= 1
        if self._remaining == 0:
            self._settle(None)

    def fail(self, error: BaseException) -> None:
        """Settle with a failure, regardless of outstanding signals."""
        if self._settled:
            return
        self._settle(error)

    def add_done_callback(self, callback: Callable[[Optional[BaseException]], None]) -> None:
        if self._settled:
            callback(self._error)
        else:
            self._callbacks.append(callback)

    async def wait(self) -> None:
        """Wait for the latch to settle; raise its failure if it has one."""
        await self._event.wait()
        if self._error is not None:
            raise self._error

    def _settle(self, error: Optional[BaseException]) -> None:
        self._settled = True
        self._error = error
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(error)
