"""Single-slot, latest-wins update channel.

Settings updates are coalesced: configuration is a pure function of the
latest snapshot, so an unconsumed update is worthless once a newer one
arrives.  The channel therefore holds at most one pending value and a
``put`` on a full channel replaces it instead of blocking or queueing.
"""

from __future__ import annotations

import asyncio
from typing import Generic, TypeVar

T = TypeVar("T")


class LatestValueChannel(Generic[T]):
    """An asyncio channel with a single overwrite-on-full slot.

    ``put`` never blocks and may be called from any coroutine running on
    the same event loop.  ``get`` waits for the next value.
    """

    def __init__(self) -> None:
        self._slot: asyncio.Queue[T] = asyncio.Queue(maxsize=1)
        self.superseded = 0

    @property
    def pending(self) -> bool:
        """True when a value is waiting to be consumed."""
        return self._slot.full()

    def put(self, value: T) -> None:
        """Store *value*, replacing any value that has not been consumed yet."""
        if self._slot.full():
            self._slot.get_nowait()
            self.superseded += 1
        self._slot.put_nowait(value)

    async def get(self) -> T:
        """Wait for and remove the pending value."""
        return await self._slot.get()
