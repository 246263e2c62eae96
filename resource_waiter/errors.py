from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from resource_waiter.models import WaitOutcome


class WaiterError(Exception):
    """Base class for all resource waiter errors."""


class ConfigurationError(WaiterError):
    """Invalid backoff configuration or waiter arguments. Raised before any polling starts."""


class UnknownPredicateError(ConfigurationError):
    def __init__(self, name: str, known: list[str]):
        super().__init__(
            f"Unknown predicate {name!r}, registered predicates: {', '.join(known) or 'none'}"
        )
        self.name = name


class FetchError(WaiterError):
    """Raised by a resource client when a snapshot cannot be fetched."""


class ResourceNotFoundError(FetchError):
    """The resource client reports that the resource does not exist."""


class TransientFetchError(FetchError):
    """
    Fetch failure that might be resolved by polling again.
    Examples: connection resets, throttling, 5xx responses, per-attempt timeouts.
    """


class NonRetryableFetchError(FetchError):
    """
    Fetch failure that will not be resolved by polling again.
    Examples: access denied, malformed requests.
    """


class WaitOutcomeError(WaiterError):
    """Raised by WaitOutcome.raise_for_outcome() for a wait that did not succeed."""

    def __init__(self, outcome: "WaitOutcome"):
        super().__init__(outcome.describe())
        self.outcome = outcome


class WaitTimedOutError(WaitOutcomeError, TimeoutError):
    pass


class WaitFailedError(WaitOutcomeError):
    pass


class WaitCancelledError(WaitOutcomeError):
    pass
