import asyncio
from typing import AsyncGenerator

import aiohttp
import pytest
import pytest_asyncio
from aiohttp.test_utils import unused_port
from resource_server import ResourceServer
from resource_waiter.cancellation import CancellationToken
from resource_waiter.clients import HttpResourceClient
from resource_waiter.errors import (
    NonRetryableFetchError,
    ResourceNotFoundError,
    TransientFetchError,
)
from resource_waiter.models import (
    BackoffConfig,
    BackoffStrategy,
    OutcomeKind,
    ResourceStatus,
)
from resource_waiter.waiter import Waiter

BASE_URL_TEMPLATE = "http://localhost:{}"


@pytest_asyncio.fixture
async def server() -> AsyncGenerator[tuple[ResourceServer, int], None]:
    """Start and yield a test ResourceServer instance on a free port."""
    port = unused_port()
    server_instance = ResourceServer(ready_after=0.3, delete_after=0.3, error_rate=0.0)
    await server_instance.start(port=port)
    try:
        yield server_instance, port
    finally:
        await server_instance.stop()


@pytest_asyncio.fixture
async def client(server) -> AsyncGenerator[HttpResourceClient, None]:
    _, port = server
    async with HttpResourceClient(BASE_URL_TEMPLATE.format(port)) as http_client:
        yield http_client


@pytest.fixture
def config() -> BackoffConfig:
    """Provide a fast polling configuration."""
    return BackoffConfig(
        strategy=BackoffStrategy.exponential_jitter,
        initial_delay=0.05,
        max_delay=0.2,
        multiplier=2.0,
        max_attempts=None,
        max_elapsed=5.0,
        fetch_timeout=2.0,
    )


@pytest.mark.asyncio
async def test_fetch_maps_server_states(server, client):
    server_instance, _ = server
    server_instance.create("orders")

    snapshot = await client.fetch("orders")

    assert snapshot.status == ResourceStatus.pending
    assert snapshot.payload == {"resource_id": "orders", "status": "CREATING"}


@pytest.mark.asyncio
async def test_fetch_errors(server, client):
    server_instance, _ = server

    with pytest.raises(ResourceNotFoundError):
        await client.fetch("missing")

    server_instance.create("secret")
    server_instance.denied.add("secret")
    with pytest.raises(NonRetryableFetchError):
        await client.fetch("secret")

    server_instance.error_rate = 1.0
    with pytest.raises(TransientFetchError):
        await client.fetch("orders")


@pytest.mark.asyncio
async def test_successful_creation(server, client, config):
    """Test normal wait until a created resource becomes active."""
    status_changes = []
    server_instance, _ = server
    server_instance.create("orders")

    async def status_callback(snapshot):
        status_changes.append(snapshot.status)

    waiter = Waiter(client, on_status_change=status_callback)
    outcome = await waiter.wait_until_ready("orders", config)

    assert outcome.kind == OutcomeKind.succeeded
    assert outcome.snapshot.payload["status"] == "ACTIVE"
    assert outcome.elapsed > 0
    assert ResourceStatus.pending in status_changes
    assert ResourceStatus.ready in status_changes


@pytest.mark.asyncio
async def test_resource_created_after_wait_starts(server, client, config):
    server_instance, _ = server
    asyncio.get_running_loop().call_later(0.1, server_instance.create, "orders")

    outcome = await Waiter(client).wait_until_ready("orders", config)

    assert outcome.kind == OutcomeKind.succeeded


@pytest.mark.asyncio
async def test_deletion(server, client, config):
    server_instance, _ = server
    server_instance.create("orders")
    server_instance.delete("orders")

    outcome = await Waiter(client).wait_until_absent("orders", config)

    assert outcome.kind == OutcomeKind.succeeded
    assert outcome.snapshot.status == ResourceStatus.absent
    assert outcome.attempts > 1


@pytest.mark.asyncio
async def test_failed_resource(server, client, config):
    """Test that a resource reporting its own failure is not polled again."""
    server_instance, _ = server
    server_instance.create("orders")
    server_instance.fail("orders", "KMS key disabled")

    outcome = await Waiter(client).wait_until_ready("orders", config)

    assert outcome.kind == OutcomeKind.permanent_failure
    assert "KMS key disabled" in outcome.reason
    assert outcome.attempts == 1


@pytest.mark.asyncio
async def test_access_denied(server, client, config):
    server_instance, _ = server
    server_instance.denied.add("orders")

    outcome = await Waiter(client).wait_until_ready("orders", config)

    assert outcome.kind == OutcomeKind.permanent_failure
    assert "403" in outcome.reason


@pytest.mark.asyncio
async def test_throttling_scenario(server, client, config):
    """Test that server errors are retried until the budget runs out."""
    server_instance, _ = server
    server_instance.create("orders")
    server_instance.error_rate = 1.0

    outcome = await Waiter(client).wait_until_ready(
        "orders", config.model_copy(update={"max_attempts": 3})
    )

    assert outcome.kind == OutcomeKind.timed_out
    assert outcome.attempts == 3
    assert "503" in outcome.last_error


@pytest.mark.asyncio
async def test_timeout_scenario(server, client, config):
    """Test timeout handling."""
    server_instance, _ = server
    server_instance.ready_after = 30.0
    server_instance.create("orders")

    outcome = await Waiter(client).wait_until_ready(
        "orders", config.model_copy(update={"max_elapsed": 0.5})
    )

    assert outcome.kind == OutcomeKind.timed_out
    assert outcome.elapsed < 2.0


@pytest.mark.asyncio
async def test_cancellation(server, client, config):
    server_instance, _ = server
    server_instance.ready_after = 30.0
    server_instance.create("orders")
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.2, token.cancel)

    outcome = await Waiter(client).wait_until_ready("orders", config, token)

    assert outcome.kind == OutcomeKind.cancelled
    assert outcome.attempts >= 1


@pytest.mark.asyncio
async def test_server_unavailable(config):
    """Test that connection errors are retried and end in a timeout."""
    async with HttpResourceClient(BASE_URL_TEMPLATE.format(unused_port())) as client:
        outcome = await Waiter(client).wait_until_ready(
            "orders", config.model_copy(update={"max_attempts": 2})
        )

    assert outcome.kind == OutcomeKind.timed_out
    assert outcome.attempts == 2
    assert outcome.last_error is not None


@pytest.mark.asyncio
async def test_multiple_waiters(server, config):
    """Test multiple waiters polling simultaneously with a shared session."""
    server_instance, port = server
    for name in ("orders", "customers", "invoices"):
        server_instance.create(name)

    async with aiohttp.ClientSession() as session:
        client = HttpResourceClient(BASE_URL_TEMPLATE.format(port), session=session)
        waiter = Waiter(client)
        outcomes = await asyncio.gather(
            *[waiter.wait_until_ready(name, config) for name in ("orders", "customers", "invoices")]
        )

    assert [outcome.resource_id for outcome in outcomes] == ["orders", "customers", "invoices"]
    assert all(outcome.kind == OutcomeKind.succeeded for outcome in outcomes)


def test_fetch_requires_a_session():
    client = HttpResourceClient("http://localhost:1")
    with pytest.raises(RuntimeError):
        asyncio.run(client.fetch("orders"))
