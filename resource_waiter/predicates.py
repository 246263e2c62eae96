"""Predicates classify a resource snapshot as satisfied, pending or failed.

A predicate is any pure callable taking a ``ResourceSnapshot`` and returning an
``Evaluation``. Predicates never perform I/O, so they can be tested with
hand-built snapshots. Named predicates are looked up through a
``PredicateRegistry``, which lets new wait conditions be added without touching
the poller.
"""

from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict

from resource_waiter.errors import ConfigurationError, UnknownPredicateError
from resource_waiter.models import ResourceSnapshot, ResourceStatus, Verdict

EXISTS_AND_READY = "exists-and-ready"
ABSENT = "absent"


class Evaluation(BaseModel):
    model_config = ConfigDict(frozen=True)

    verdict: Verdict
    reason: Optional[str] = None

    @classmethod
    def satisfied(cls) -> "Evaluation":
        return cls(verdict=Verdict.satisfied)

    @classmethod
    def pending(cls, reason: Optional[str] = None) -> "Evaluation":
        return cls(verdict=Verdict.pending, reason=reason)

    @classmethod
    def failed(cls, reason: str) -> "Evaluation":
        return cls(verdict=Verdict.failed, reason=reason)


Predicate = Callable[[ResourceSnapshot], Evaluation]


def _failure_reason(snapshot: ResourceSnapshot) -> str:
    detail = snapshot.payload.get("reason") or snapshot.payload.get("message")
    if detail:
        return f"Resource {snapshot.resource_id!r} reported failure: {detail}"
    return f"Resource {snapshot.resource_id!r} reported failure"


def exists_and_ready(snapshot: ResourceSnapshot) -> Evaluation:
    # absent means not created yet, which is still worth waiting for
    if snapshot.status == ResourceStatus.ready:
        return Evaluation.satisfied()
    if snapshot.status == ResourceStatus.failed:
        return Evaluation.failed(_failure_reason(snapshot))
    return Evaluation.pending(snapshot.status.value)


def absent(snapshot: ResourceSnapshot) -> Evaluation:
    if snapshot.status == ResourceStatus.absent:
        return Evaluation.satisfied()
    if snapshot.status == ResourceStatus.failed:
        return Evaluation.failed(_failure_reason(snapshot))
    return Evaluation.pending(snapshot.status.value)


def payload_equals(key: str, expected: Any) -> Predicate:
    """Satisfied once ``snapshot.payload[key] == expected``, e.g. an index status or replica count"""

    def predicate(snapshot: ResourceSnapshot) -> Evaluation:
        if snapshot.status == ResourceStatus.failed:
            return Evaluation.failed(_failure_reason(snapshot))
        actual = snapshot.payload.get(key)
        if actual == expected:
            return Evaluation.satisfied()
        return Evaluation.pending(f"{key}={actual!r}, waiting for {expected!r}")

    return predicate


def all_of(*predicates: Predicate) -> Predicate:
    """Satisfied when every predicate is; fails as soon as any one fails"""
    if not predicates:
        raise ConfigurationError("all_of() needs at least one predicate")

    def predicate(snapshot: ResourceSnapshot) -> Evaluation:
        pending = None
        for inner in predicates:
            evaluation = inner(snapshot)
            if evaluation.verdict == Verdict.failed:
                return evaluation
            if evaluation.verdict == Verdict.pending and pending is None:
                pending = evaluation
        return pending or Evaluation.satisfied()

    return predicate


class PredicateRegistry:
    def __init__(self):
        self._predicates: dict[str, Predicate] = {}

    @classmethod
    def with_defaults(cls) -> "PredicateRegistry":
        registry = cls()
        registry.register(EXISTS_AND_READY, exists_and_ready)
        registry.register(ABSENT, absent)
        return registry

    def register(self, name: str, predicate: Predicate, replace: bool = False) -> None:
        if not name:
            raise ConfigurationError("Predicate name must be a non-empty string")
        if not callable(predicate):
            raise ConfigurationError(f"Predicate {name!r} is not callable")
        if name in self._predicates and not replace:
            raise ConfigurationError(
                f"Predicate {name!r} is already registered, pass replace=True to override it"
            )
        self._predicates[name] = predicate

    def get(self, name: str) -> Predicate:
        try:
            return self._predicates[name]
        except KeyError:
            raise UnknownPredicateError(name, self.names()) from None

    def names(self) -> list[str]:
        return sorted(self._predicates)

    def __contains__(self, name: str) -> bool:
        return name in self._predicates
