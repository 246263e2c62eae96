from typing import Callable, Optional

import pytest
from resource_waiter.models import ResourceSnapshot, ResourceStatus


class FakeClock:
    """Clock that never really sleeps: sleeping just advances ``current``."""

    def __init__(self, start: float = 0.0):
        self.current = start
        self.sleeps: list[float] = []
        self.on_sleep: Optional[Callable[[int], None]] = None

    def now(self) -> float:
        return self.current

    async def sleep(self, delay, token) -> bool:
        self.sleeps.append(delay)
        if self.on_sleep is not None:
            self.on_sleep(len(self.sleeps))
        self.current += delay
        return token.is_cancelled()


class ScriptedClient:
    """Resource client replaying a script of snapshots, statuses and exceptions.

    The last entry repeats once the script runs out.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.calls: list[str] = []

    async def fetch(self, resource_id):
        self.calls.append(resource_id)
        step = self.script[min(len(self.calls), len(self.script)) - 1]
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, ResourceSnapshot):
            return step
        return snapshot(step, resource_id=resource_id)


def snapshot(status: ResourceStatus, resource_id: str = "orders", **payload) -> ResourceSnapshot:
    return ResourceSnapshot(resource_id=resource_id, status=status, payload=payload)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
