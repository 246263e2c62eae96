import random
from typing import Any, Callable, Mapping, Optional, Union

from loguru import logger
from pydantic import ValidationError
from resource_waiter.backoff import BackoffPolicy
from resource_waiter.cancellation import CancellationSignal
from resource_waiter.clients import ResourceClient
from resource_waiter.clock import Clock, SystemClock
from resource_waiter.errors import ConfigurationError
from resource_waiter.models import (
    BackoffConfig,
    PollAttempt,
    ResourceSnapshot,
    WaitOutcome,
)
from resource_waiter.poller import Poller
from resource_waiter.predicates import (
    ABSENT,
    EXISTS_AND_READY,
    Predicate,
    PredicateRegistry,
)

ConfigLike = Union[BackoffConfig, Mapping[str, Any], None]


class Waiter:
    def __init__(
        self,
        client: ResourceClient,
        registry: Optional[PredicateRegistry] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        on_attempt: Optional[Callable[[PollAttempt], Any]] = None,
        on_status_change: Optional[Callable[[ResourceSnapshot], Any]] = None,
    ):
        self.client = client
        self.registry = registry or PredicateRegistry.with_defaults()
        self.clock = clock or SystemClock()
        self.rng = rng
        self.on_attempt = on_attempt
        self.on_status_change = on_status_change
        self.logger = logger

    def register_predicate(self, name: str, predicate: Predicate, replace: bool = False) -> None:
        self.registry.register(name, predicate, replace=replace)

    async def wait(
        self,
        resource_id: str,
        predicate_name: str,
        config: ConfigLike = None,
        cancellation_token: Optional[CancellationSignal] = None,
    ) -> WaitOutcome:
        """Wait until the named predicate holds for the resource.

        Raises ConfigurationError (or UnknownPredicateError) before any fetch
        when the arguments are invalid. Every other result, including
        timeouts, failures and cancellation, is returned as a WaitOutcome.
        """
        if not isinstance(resource_id, str) or not resource_id:
            raise ConfigurationError(f"resource_id must be a non-empty string, got {resource_id!r}")
        backoff_config = resolve_config(config)
        predicate = self.registry.get(predicate_name)

        self.logger.debug(
            f"Waiting for {resource_id!r} to be {predicate_name} "
            f"({backoff_config.strategy.value} backoff, max_attempts={backoff_config.max_attempts}, "
            f"max_elapsed={backoff_config.max_elapsed})"
        )
        poller = Poller(
            self.client,
            predicate,
            BackoffPolicy(backoff_config, self.rng),
            clock=self.clock,
            on_attempt=self.on_attempt,
            on_status_change=self.on_status_change,
        )
        return await poller.run(resource_id, cancellation_token)

    async def wait_until_ready(
        self,
        resource_id: str,
        config: ConfigLike = None,
        cancellation_token: Optional[CancellationSignal] = None,
    ) -> WaitOutcome:
        return await self.wait(resource_id, EXISTS_AND_READY, config, cancellation_token)

    async def wait_until_absent(
        self,
        resource_id: str,
        config: ConfigLike = None,
        cancellation_token: Optional[CancellationSignal] = None,
    ) -> WaitOutcome:
        return await self.wait(resource_id, ABSENT, config, cancellation_token)


def resolve_config(config: ConfigLike) -> BackoffConfig:
    """Turn a BackoffConfig, a mapping of options or None into a checked BackoffConfig"""
    if config is None:
        return BackoffConfig()
    if isinstance(config, BackoffConfig):
        return config.check()
    if isinstance(config, Mapping):
        try:
            return BackoffConfig.model_validate(dict(config))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid backoff configuration: {e}") from e
    raise ConfigurationError(
        f"Expected a BackoffConfig or a mapping of options, got {type(config).__name__}"
    )
