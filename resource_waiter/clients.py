import asyncio
from typing import Any, Callable, Optional, Protocol
from urllib.parse import quote

import aiohttp
from loguru import logger
from resource_waiter.errors import (
    NonRetryableFetchError,
    ResourceNotFoundError,
    TransientFetchError,
)
from resource_waiter.models import ResourceSnapshot, ResourceStatus

# DynamoDB table/index states plus the generic names of ResourceStatus
DEFAULT_STATUS_MAP: dict[str, ResourceStatus] = {
    "ACTIVE": ResourceStatus.ready,
    "AVAILABLE": ResourceStatus.ready,
    "READY": ResourceStatus.ready,
    "CREATING": ResourceStatus.pending,
    "UPDATING": ResourceStatus.pending,
    "DELETING": ResourceStatus.pending,
    "PENDING": ResourceStatus.pending,
    "ARCHIVING": ResourceStatus.pending,
    "DELETED": ResourceStatus.absent,
    "ABSENT": ResourceStatus.absent,
    "FAILED": ResourceStatus.failed,
    "ERROR": ResourceStatus.failed,
    "INACCESSIBLE_ENCRYPTION_CREDENTIALS": ResourceStatus.failed,
}

RETRYABLE_HTTP_STATUSES = {408, 429}


class ResourceClient(Protocol):
    async def fetch(self, resource_id: str) -> ResourceSnapshot:
        """Read the current state of a resource.

        Raises ResourceNotFoundError, TransientFetchError or NonRetryableFetchError.
        """
        ...


def map_status(
    raw_status: Any, status_map: Optional[dict[str, ResourceStatus]] = None
) -> ResourceStatus:
    if raw_status is None:
        return ResourceStatus.unknown
    return (status_map or DEFAULT_STATUS_MAP).get(
        str(raw_status).upper(), ResourceStatus.unknown
    )


def normalize_status_map(
    status_map: Optional[dict[str, ResourceStatus]],
) -> dict[str, ResourceStatus]:
    """Upper-case the keys of a caller's map so lookups match map_status()"""
    if not status_map:
        return DEFAULT_STATUS_MAP
    return {str(raw).upper(): status for raw, status in status_map.items()}


class HttpResourceClient:
    """Fetches resource state as JSON from ``GET {base_url}/resources/{resource_id}``"""

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        path: str = "/resources/{resource_id}",
        status_field: str = "status",
        status_map: Optional[dict[str, ResourceStatus]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.path = path
        self.status_field = status_field
        self.status_map = normalize_status_map(status_map)
        self.clock = clock or (lambda: asyncio.get_running_loop().time())
        self.logger = logger
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "HttpResourceClient":
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def url_for(self, resource_id: str) -> str:
        return self.base_url + self.path.format(resource_id=quote(resource_id, safe=""))

    async def fetch(self, resource_id: str) -> ResourceSnapshot:
        """Fetches the current state of a resource from the server"""
        if self._session is None:
            raise RuntimeError(
                "HttpResourceClient has no session, use it as 'async with HttpResourceClient(...)'"
            )
        url = self.url_for(resource_id)

        try:
            async with self._session.get(url) as response:
                if response.status == 404:
                    raise ResourceNotFoundError(f"Resource {resource_id!r} not found at {url}")
                response.raise_for_status()
                data = await response.json()
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {url}: {e.message}")
            if e.status in RETRYABLE_HTTP_STATUSES or e.status >= 500:
                raise TransientFetchError(f"HTTP {e.status} from {url}: {e.message}") from e
            raise NonRetryableFetchError(f"HTTP {e.status} from {url}: {e.message}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Error fetching {url}: {e!r}")
            raise TransientFetchError(f"Error fetching {url}: {e!r}") from e
        except ValueError as e:
            self.logger.error(f"Malformed JSON from {url}: {e}")
            raise NonRetryableFetchError(f"Malformed JSON from {url}: {e}") from e

        if not isinstance(data, dict):
            raise NonRetryableFetchError(f"Expected a JSON object from {url}, got {data!r}")

        return ResourceSnapshot(
            resource_id=resource_id,
            status=map_status(data.get(self.status_field), self.status_map),
            payload=data,
            fetched_at=self.clock(),
        )


class ThreadedResourceClient:
    """Adapts a blocking fetch function (an SDK describe call, say) to the async client interface.

    ``fetch_fn`` takes a resource id and returns either a ResourceSnapshot or a
    dict with a status field, raising the fetch errors from resource_waiter.errors.
    """

    def __init__(
        self,
        fetch_fn: Callable[[str], Any],
        status_field: str = "status",
        status_map: Optional[dict[str, ResourceStatus]] = None,
    ):
        self.fetch_fn = fetch_fn
        self.status_field = status_field
        self.status_map = normalize_status_map(status_map)

    async def fetch(self, resource_id: str) -> ResourceSnapshot:
        result = await asyncio.to_thread(self.fetch_fn, resource_id)
        if isinstance(result, ResourceSnapshot):
            return result
        if not isinstance(result, dict):
            raise NonRetryableFetchError(
                f"fetch_fn returned {type(result).__name__}, expected a dict or ResourceSnapshot"
            )
        return ResourceSnapshot(
            resource_id=resource_id,
            status=map_status(result.get(self.status_field), self.status_map),
            payload=result,
            fetched_at=asyncio.get_running_loop().time(),
        )
