from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from resource_waiter.errors import (
    ConfigurationError,
    WaitCancelledError,
    WaitFailedError,
    WaitTimedOutError,
)


class ResourceStatus(str, Enum):
    pending = "pending"
    ready = "ready"
    absent = "absent"
    failed = "failed"
    unknown = "unknown"


class ResourceSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_id: str
    status: ResourceStatus
    payload: dict[str, Any] = Field(default_factory=dict)
    fetched_at: float = 0.0


class BackoffStrategy(str, Enum):
    fixed = "fixed"
    linear = "linear"
    exponential_jitter = "exponential_jitter"


class BackoffConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    strategy: BackoffStrategy = BackoffStrategy.exponential_jitter
    initial_delay: float = 1.0
    max_delay: float = 32.0
    multiplier: float = 2.0
    max_attempts: Optional[int] = 10
    max_elapsed: Optional[float] = 300.0  # 5 minutes
    fetch_timeout: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _elapsed_only(cls, data: Any) -> Any:
        """A caller who bounds only max_elapsed gets no default attempt cap"""
        if (
            isinstance(data, dict)
            and data.get("max_elapsed") is not None
            and "max_attempts" not in data
        ):
            data = {**data, "max_attempts": None}
        return data

    @model_validator(mode="after")
    def _check_invariants(self) -> "BackoffConfig":
        return self.check()

    def check(self) -> "BackoffConfig":
        """Raise ConfigurationError if the options cannot drive a bounded wait.

        Runs on construction and again in the waiter facade, since
        ``model_construct`` and ``model_copy(update=...)`` skip validation.
        """
        if self.initial_delay < 0:
            raise ConfigurationError(
                f"initial_delay must be non-negative, got {self.initial_delay}"
            )
        if self.initial_delay > self.max_delay:
            raise ConfigurationError(
                f"initial_delay ({self.initial_delay}) must not exceed max_delay ({self.max_delay})"
            )
        if self.strategy == BackoffStrategy.exponential_jitter and self.multiplier <= 1:
            raise ConfigurationError(
                f"multiplier must be greater than 1 for exponential backoff, got {self.multiplier}"
            )
        if self.max_attempts is None and self.max_elapsed is None:
            raise ConfigurationError(
                "At least one of max_attempts or max_elapsed must be set"
            )
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ConfigurationError(
                f"max_attempts must be at least 1, got {self.max_attempts}"
            )
        if self.max_elapsed is not None and self.max_elapsed <= 0:
            raise ConfigurationError(
                f"max_elapsed must be positive, got {self.max_elapsed}"
            )
        if self.fetch_timeout is not None and self.fetch_timeout <= 0:
            raise ConfigurationError(
                f"fetch_timeout must be positive, got {self.fetch_timeout}"
            )
        return self


class Verdict(str, Enum):
    satisfied = "satisfied"
    pending = "pending"
    failed = "failed"


class PollAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    scheduled_delay: float
    snapshot: Optional[ResourceSnapshot] = None
    timestamp: float
    verdict: Verdict
    error: Optional[str] = None


class OutcomeKind(str, Enum):
    succeeded = "succeeded"
    timed_out = "timed_out"
    cancelled = "cancelled"
    permanent_failure = "permanent_failure"


class WaitOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: OutcomeKind
    resource_id: str
    attempts: int
    elapsed: float
    snapshot: Optional[ResourceSnapshot] = None
    reason: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.kind == OutcomeKind.succeeded

    def describe(self) -> str:
        prefix = f"Wait for {self.resource_id!r}"
        if self.kind == OutcomeKind.succeeded:
            return f"{prefix} succeeded after {self.attempts} attempt(s)"
        if self.kind == OutcomeKind.timed_out:
            detail = f"; last error: {self.last_error}" if self.last_error else ""
            return (
                f"{prefix} timed out after {self.attempts} attempt(s) "
                f"in {self.elapsed:.1f}s{detail}"
            )
        if self.kind == OutcomeKind.cancelled:
            return f"{prefix} cancelled after {self.attempts} attempt(s)"
        return f"{prefix} failed permanently: {self.reason}"

    def raise_for_outcome(self) -> ResourceSnapshot:
        """Return the final snapshot of a successful wait, or raise the matching WaitOutcomeError."""
        if self.kind == OutcomeKind.succeeded:
            return self.snapshot
        if self.kind == OutcomeKind.timed_out:
            raise WaitTimedOutError(self)
        if self.kind == OutcomeKind.cancelled:
            raise WaitCancelledError(self)
        raise WaitFailedError(self)
