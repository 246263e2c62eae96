import asyncio
from typing import Protocol

from resource_waiter.cancellation import CancellationSignal, wait_for_cancellation


class Clock(Protocol):
    def now(self) -> float: ...

    async def sleep(self, delay: float, token: CancellationSignal) -> bool: ...


class SystemClock:
    """Event loop time, with sleeps that end early on cancellation"""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    async def sleep(self, delay: float, token: CancellationSignal) -> bool:
        """Sleep for ``delay`` seconds. Returns True if the token was cancelled meanwhile."""
        return await wait_for_cancellation(token, max(delay, 0.0))
