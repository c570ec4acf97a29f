"""Immutable resilience policies attached to protected operations."""

from typing import Any, Callable, Sequence

from pydantic import BaseModel, Field
from tenacity import wait_exponential, wait_none, wait_random

Predicate = Callable[[BaseException], bool]


def never_retry(exc: BaseException) -> bool:
    return False


def include_types(
    *types: type[BaseException],
    subclasses: bool = False,
) -> Predicate:
    """Inclusion predicate matching the listed exception types.

    Matching is on the exact type unless ``subclasses`` is set, so adding a
    subclass never silently widens what gets retried.
    """
    included = tuple(types)

    def predicate(exc: BaseException) -> bool:
        if subclasses:
            return isinstance(exc, included)
        return type(exc) in included

    predicate.__name__ = "include_" + "_".join(t.__name__ for t in included)
    return predicate


def exponential_backoff(initial: float, maximum: float, jitter: float = 0.0):
    """Tenacity wait strategy: ``initial * 2**n`` capped at ``maximum`` plus jitter."""
    wait = wait_exponential(multiplier=initial, max=maximum)
    if jitter > 0:
        wait = wait + wait_random(0, jitter)
    return wait


class GatePolicy(BaseModel):
    """Upper bound on concurrent executions of one protected operation."""

    limit: int = Field(ge=1, description="Maximum number of calls in flight at once")

    model_config = {"frozen": True, "extra": "forbid"}


class RetryPolicy(BaseModel):
    """When and how often a failed operation is re-invoked.

    Attributes:
        max_attempts: Total invocations per call (1 disables retry)
        inclusion: Predicate over the unwrapped failure deciding if it is retryable
        backoff: Tenacity wait strategy between attempts (zero delay by default)
        unwrap: Extra container exception types peeled before classification
    """

    max_attempts: int = Field(default=1, ge=1)
    inclusion: Predicate = Field(default=never_retry)
    backoff: Any = Field(default_factory=wait_none)
    unwrap: tuple[type[BaseException], ...] = ()

    model_config = {"frozen": True, "extra": "forbid", "arbitrary_types_allowed": True}

    @classmethod
    def for_types(
        cls,
        max_attempts: int,
        includes: Sequence[type[BaseException]],
        **kwargs: Any,
    ) -> "RetryPolicy":
        return cls(max_attempts=max_attempts, inclusion=include_types(*includes), **kwargs)
