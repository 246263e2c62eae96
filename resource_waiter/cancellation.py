import asyncio
import threading
from typing import Optional, Protocol


POLL_INTERVAL = 0.05


class CancellationSignal(Protocol):
    """Anything with ``is_cancelled()``. An async ``wait(timeout)`` is used when present."""

    def is_cancelled(self) -> bool: ...


async def wait_for_cancellation(
    token: CancellationSignal,
    timeout: Optional[float] = None,
    interval: float = POLL_INTERVAL,
) -> bool:
    """Block until the token is cancelled or ``timeout`` seconds pass. Returns is_cancelled().

    Tokens without a ``wait`` coroutine are polled every ``interval`` seconds.
    """
    wait = getattr(token, "wait", None)
    if wait is not None:
        return await wait(timeout)

    loop = asyncio.get_running_loop()
    deadline = None if timeout is None else loop.time() + timeout
    while not token.is_cancelled():
        if deadline is None:
            await asyncio.sleep(interval)
            continue
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await asyncio.sleep(min(interval, remaining))
    return token.is_cancelled()


class CancellationToken:
    """Cooperative, idempotent cancellation flag shared between a caller and its waits.

    ``cancel()`` may be called from any thread or task, any number of times.
    Coroutines blocked in ``wait()`` are woken on their own event loop.
    """

    def __init__(self):
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Event]] = []

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            waiters = list(self._waiters)

        for loop, event in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(event.set)

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or until ``timeout`` seconds pass. Returns is_cancelled()."""
        waiter = (asyncio.get_running_loop(), asyncio.Event())
        with self._lock:
            if self._cancelled.is_set():
                return True
            self._waiters.append(waiter)

        try:
            await asyncio.wait_for(waiter[1].wait(), timeout)
        except asyncio.TimeoutError:
            pass
        finally:
            with self._lock:
                self._waiters.remove(waiter)

        return self.is_cancelled()
