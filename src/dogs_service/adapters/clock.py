import asyncio
import heapq
import itertools
import time
from typing import List, Tuple


class SystemClock:
    """ClockPort backed by `time.monotonic` and `asyncio.sleep`."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class VirtualClock:
    """ClockPort whose time only moves when a test calls `advance()`.

    Sleepers are parked on futures ordered by deadline; `advance()` wakes
    them in deadline order and yields to the loop so woken tasks can run.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._seq = itertools.count()
        self._sleepers: List[Tuple[float, int, asyncio.Future[None]]] = []

    def monotonic(self) -> float:
        return self._now

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, fut in self._sleepers if not fut.done())

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds, next(self._seq), fut))
        try:
            await fut
        finally:
            if not fut.done():
                fut.cancel()

    async def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, fut = heapq.heappop(self._sleepers)
            self._now = deadline
            if not fut.done():
                fut.set_result(None)
                await asyncio.sleep(0)
        self._now = target
        await asyncio.sleep(0)

    async def wait_for_sleepers(self, count: int = 1, max_spins: int = 10_000) -> None:
        """Yield to the loop until at least ``count`` tasks are sleeping."""
        for _ in range(max_spins):
            if self.pending_sleepers >= count:
                return
            await asyncio.sleep(0)
        raise RuntimeError(f"expected {count} sleepers, found {self.pending_sleepers}")
