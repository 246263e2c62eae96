import random
from typing import Optional

from resource_waiter.errors import ConfigurationError
from resource_waiter.models import BackoffConfig, BackoffStrategy

JITTER_FLOOR = 0.5


class BackoffPolicy:
    def __init__(self, config: BackoffConfig, rng: Optional[random.Random] = None):
        self.config = config.check()
        self.rng = rng or random.Random()

    def base_delay(self, attempt_index: int) -> float:
        """The delay before jitter is applied"""
        if attempt_index <= 0:
            raise ConfigurationError(
                f"attempt_index must be a positive integer, got {attempt_index}"
            )

        config = self.config
        if config.strategy == BackoffStrategy.fixed:
            return config.initial_delay
        if config.strategy == BackoffStrategy.linear:
            return min(config.initial_delay * attempt_index, config.max_delay)

        # Large attempt indices overflow a float, long after max_delay is reached
        try:
            growth = config.multiplier ** (attempt_index - 1)
        except OverflowError:
            return config.max_delay
        return min(config.initial_delay * growth, config.max_delay)

    def next_delay(self, attempt_index: int) -> float:
        """Calculates the delay that follows the given attempt, jittered for exponential backoff"""
        delay = self.base_delay(attempt_index)

        # Scale by a random factor in [0.5, 1.0]
        if self.config.strategy == BackoffStrategy.exponential_jitter:
            delay *= self.rng.uniform(JITTER_FLOOR, 1.0)
        return delay
