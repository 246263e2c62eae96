import random

import pytest
from resource_waiter.backoff import BackoffPolicy
from resource_waiter.errors import ConfigurationError
from resource_waiter.models import BackoffConfig, BackoffStrategy


def make_policy(strategy: BackoffStrategy, seed: int = 0, **options) -> BackoffPolicy:
    options.setdefault("initial_delay", 0.5)
    options.setdefault("max_delay", 8.0)
    options.setdefault("multiplier", 2.0)
    return BackoffPolicy(
        BackoffConfig(strategy=strategy, **options), rng=random.Random(seed)
    )


def test_fixed_is_constant():
    policy = make_policy(BackoffStrategy.fixed)
    assert [policy.next_delay(i) for i in range(1, 20)] == [0.5] * 19


def test_linear_grows_until_capped():
    policy = make_policy(BackoffStrategy.linear, initial_delay=1.5, max_delay=5.0)
    assert [policy.next_delay(i) for i in range(1, 6)] == [1.5, 3.0, 4.5, 5.0, 5.0]


@pytest.mark.parametrize(
    "strategy", [BackoffStrategy.linear, BackoffStrategy.exponential_jitter]
)
def test_base_delay_is_non_decreasing_and_capped(strategy):
    policy = make_policy(strategy)
    delays = [policy.base_delay(i) for i in range(1, 50)]
    assert delays == sorted(delays)
    assert max(delays) == 8.0


def test_exponential_base_sequence():
    policy = make_policy(BackoffStrategy.exponential_jitter, initial_delay=1.0, max_delay=10.0, multiplier=3.0)
    assert [policy.base_delay(i) for i in range(1, 5)] == [1.0, 3.0, 9.0, 10.0]


def test_exponential_jitter_is_reproducible_with_seed():
    policy = make_policy(BackoffStrategy.exponential_jitter, seed=42)
    reference = random.Random(42)
    expected = [
        min(0.5 * 2.0 ** (i - 1), 8.0) * reference.uniform(0.5, 1.0) for i in range(1, 10)
    ]
    assert [policy.next_delay(i) for i in range(1, 10)] == expected


@pytest.mark.parametrize("seed", range(25))
def test_exponential_jitter_stays_within_half_to_full_base(seed):
    policy = make_policy(BackoffStrategy.exponential_jitter, seed=seed)
    for attempt in range(1, 12):
        base = policy.base_delay(attempt)
        delay = policy.next_delay(attempt)
        assert 0.5 * base <= delay <= base <= 8.0


def test_huge_attempt_index_is_capped():
    policy = make_policy(BackoffStrategy.exponential_jitter)
    assert policy.base_delay(100_000) == 8.0


@pytest.mark.parametrize("attempt", [0, -1])
def test_non_positive_attempt_index_is_rejected(attempt):
    policy = make_policy(BackoffStrategy.fixed)
    with pytest.raises(ConfigurationError):
        policy.next_delay(attempt)
