import asyncio

from resource_server import ResourceServer
from resource_waiter.clients import HttpResourceClient
from resource_waiter.errors import WaitOutcomeError
from resource_waiter.models import BackoffConfig, BackoffStrategy
from resource_waiter.waiter import Waiter


async def status_changed(snapshot):
    print(f"{snapshot.resource_id} is now {snapshot.status.value} ({snapshot.payload.get('status')})")


async def main():
    PORT = 8000
    server = ResourceServer(ready_after=8.0, delete_after=4.0, error_rate=0.1)
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    config = BackoffConfig(
        strategy=BackoffStrategy.exponential_jitter,
        initial_delay=0.5,
        max_delay=4.0,
        multiplier=2.0,
        max_attempts=None,
        max_elapsed=60.0,
        fetch_timeout=5.0,
    )

    async with HttpResourceClient(f"http://localhost:{PORT}") as client:
        waiter = Waiter(client, on_status_change=status_changed)

        server.create("orders")
        try:
            outcome = await waiter.wait_until_ready("orders", config)
            snapshot = outcome.raise_for_outcome()
            print(f"Ready after {outcome.attempts} attempts, {outcome.elapsed:.2f}s: {snapshot.payload}")

            server.delete("orders")
            outcome = await waiter.wait_until_absent("orders", config)
            outcome.raise_for_outcome()
            print(f"Deleted after {outcome.attempts} attempts, {outcome.elapsed:.2f}s")
        except WaitOutcomeError as e:
            print(f"Wait did not succeed: {e}")
        finally:
            await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
