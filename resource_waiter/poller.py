import asyncio
import inspect
from typing import Any, Callable, Optional

from loguru import logger
from resource_waiter.backoff import BackoffPolicy
from resource_waiter.cancellation import (
    CancellationSignal,
    CancellationToken,
    wait_for_cancellation,
)
from resource_waiter.clients import ResourceClient
from resource_waiter.clock import Clock, SystemClock
from resource_waiter.errors import (
    NonRetryableFetchError,
    ResourceNotFoundError,
    TransientFetchError,
)
from resource_waiter.models import (
    OutcomeKind,
    PollAttempt,
    ResourceSnapshot,
    ResourceStatus,
    Verdict,
    WaitOutcome,
)
from resource_waiter.predicates import Evaluation, Predicate

DEADLINE_FETCH_WINDOW = 1.0


class _FetchInterrupted(Exception):
    pass


class Poller:
    """Polls one resource until its predicate is satisfied or fails, the budget runs out, or the caller cancels.

    Each attempt fetches a snapshot, evaluates the predicate, then either
    resolves or sleeps for the backoff delay. Attempts are strictly sequential.
    Every terminal state is returned as a WaitOutcome; only errors that the
    resource client is not expected to raise propagate.
    """

    def __init__(
        self,
        client: ResourceClient,
        predicate: Predicate,
        policy: BackoffPolicy,
        clock: Optional[Clock] = None,
        on_attempt: Optional[Callable[[PollAttempt], Any]] = None,
        on_status_change: Optional[Callable[[ResourceSnapshot], Any]] = None,
    ):
        self.client = client
        self.predicate = predicate
        self.policy = policy
        self.config = policy.config
        self.clock = clock or SystemClock()
        self.on_attempt = on_attempt
        self.on_status_change = on_status_change
        self.logger = logger

    async def run(
        self, resource_id: str, token: Optional[CancellationSignal] = None
    ) -> WaitOutcome:
        token = token or CancellationToken()
        started = self.clock.now()
        attempt = 0
        delay = 0.0
        at_deadline = False
        snapshot = None
        last_status = None
        last_error = None

        while True:
            if token.is_cancelled():
                return self._outcome(
                    OutcomeKind.cancelled, resource_id, attempt, started, snapshot,
                    last_error=last_error,
                )

            attempt += 1
            timestamp = self.clock.now()
            error = None
            try:
                current = await self._fetch(
                    resource_id, token, self._fetch_timeout(started, at_deadline)
                )
            except _FetchInterrupted:
                return self._outcome(
                    OutcomeKind.cancelled, resource_id, attempt, started, snapshot,
                    last_error=last_error,
                )
            except NonRetryableFetchError as e:
                return self._outcome(
                    OutcomeKind.permanent_failure, resource_id, attempt, started, snapshot,
                    reason=str(e), last_error=last_error,
                )
            except ResourceNotFoundError:
                current = ResourceSnapshot(
                    resource_id=resource_id,
                    status=ResourceStatus.absent,
                    fetched_at=self.clock.now(),
                )
            except TransientFetchError as e:
                current = None
                error = last_error = str(e)
                self.logger.warning(
                    f"Attempt {attempt} for {resource_id!r} failed transiently: {e}"
                )

            if current is None:
                evaluation = Evaluation.pending(error)
            else:
                snapshot = current
                evaluation = self.predicate(current)
                if current.status != last_status:
                    self.logger.debug(f"{resource_id!r} status changed to {current.status.value}")
                    await self._notify(self.on_status_change, current)
                    last_status = current.status

            await self._notify(
                self.on_attempt,
                PollAttempt(
                    index=attempt,
                    scheduled_delay=delay,
                    snapshot=current,
                    timestamp=timestamp,
                    verdict=evaluation.verdict,
                    error=error,
                ),
            )

            if evaluation.verdict == Verdict.satisfied:
                return self._outcome(
                    OutcomeKind.succeeded, resource_id, attempt, started, snapshot,
                    last_error=last_error,
                )
            if evaluation.verdict == Verdict.failed:
                return self._outcome(
                    OutcomeKind.permanent_failure, resource_id, attempt, started, snapshot,
                    reason=evaluation.reason, last_error=last_error,
                )

            elapsed = self.clock.now() - started
            if at_deadline or self._exhausted(attempt, elapsed):
                return self._outcome(
                    OutcomeKind.timed_out, resource_id, attempt, started, snapshot,
                    last_error=last_error,
                )

            # The last sleep ends at max_elapsed, where one final attempt is made
            delay = self.policy.next_delay(attempt)
            at_deadline = False
            if self.config.max_elapsed is not None and delay >= self.config.max_elapsed - elapsed:
                delay = self.config.max_elapsed - elapsed
                at_deadline = True

            self.logger.debug(
                f"{resource_id!r} still pending ({evaluation.reason}), "
                f"waiting {delay:.2f}s before attempt {attempt + 1}"
            )
            if await self.clock.sleep(delay, token):
                return self._outcome(
                    OutcomeKind.cancelled, resource_id, attempt, started, snapshot,
                    last_error=last_error,
                )

    def _exhausted(self, attempt: int, elapsed: float) -> bool:
        if self.config.max_attempts is not None and attempt >= self.config.max_attempts:
            return True
        return self.config.max_elapsed is not None and elapsed >= self.config.max_elapsed

    def _fetch_timeout(self, started: float, at_deadline: bool) -> Optional[float]:
        """Bound for one fetch: fetch_timeout and whatever is left of max_elapsed.

        The attempt made at the deadline has no budget left, so it gets
        fetch_timeout or DEADLINE_FETCH_WINDOW instead.
        """
        if at_deadline:
            return self.config.fetch_timeout or DEADLINE_FETCH_WINDOW
        bounds = []
        if self.config.fetch_timeout is not None:
            bounds.append(self.config.fetch_timeout)
        if self.config.max_elapsed is not None:
            bounds.append(max(self.config.max_elapsed - (self.clock.now() - started), 0.0))
        return min(bounds) if bounds else None

    async def _fetch(
        self, resource_id: str, token: CancellationSignal, timeout: Optional[float]
    ) -> ResourceSnapshot:
        """Runs one fetch, abandoning it on cancellation or after ``timeout`` seconds"""
        fetch = asyncio.ensure_future(self.client.fetch(resource_id))
        cancelled = asyncio.ensure_future(wait_for_cancellation(token))
        try:
            done, _ = await asyncio.wait(
                {fetch, cancelled}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (fetch, cancelled):
                if not task.done():
                    task.cancel()

        if fetch in done:
            return fetch.result()
        if cancelled in done:
            raise _FetchInterrupted()
        raise TransientFetchError(f"Fetching {resource_id!r} timed out after {timeout:.2f}s")

    async def _notify(self, callback: Optional[Callable[[Any], Any]], value: Any) -> None:
        if callback is None:
            return
        result = callback(value)
        if inspect.isawaitable(result):
            await result

    def _outcome(
        self,
        kind: OutcomeKind,
        resource_id: str,
        attempts: int,
        started: float,
        snapshot: Optional[ResourceSnapshot],
        reason: Optional[str] = None,
        last_error: Optional[str] = None,
    ) -> WaitOutcome:
        outcome = WaitOutcome(
            kind=kind,
            resource_id=resource_id,
            attempts=attempts,
            elapsed=self.clock.now() - started,
            snapshot=snapshot,
            reason=reason,
            last_error=last_error,
        )
        if kind in (OutcomeKind.timed_out, OutcomeKind.permanent_failure):
            self.logger.warning(outcome.describe())
        else:
            self.logger.info(outcome.describe())
        return outcome
