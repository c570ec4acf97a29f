"""Declarative resilience for methods and plain callables.

`@concurrency_limit` and `@retryable` only attach policies to a function;
nothing happens until an owner object is constructed. `ResilientMethods`
(or `bind_resilient_methods` for objects that cannot inherit from it) then
wraps every declared method in a `ResilientCallable` and installs it on the
instance, so call sites keep calling ``owner.method(...)``.

Each owner gets its own gates: they are created with the owner and go away
with it. Policies are fixed at binding time.

Example:

    class RiskyClient(ResilientMethods):
        @concurrency_limit(10)
        @retryable(max_attempts=4, includes=(BadError,))
        async def do_something(self): ...
"""

from __future__ import annotations

import functools
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

from dogs_service.core.interfaces.call_events import CallEventSink
from dogs_service.core.interfaces.clock import ClockPort
from dogs_service.core.interfaces.retry import RetryPort
from dogs_service.core.models.policies import (
    GatePolicy,
    Predicate,
    RetryPolicy,
    include_types,
    never_retry,
)
from dogs_service.core.resilience.gate import AdmissionGate
from dogs_service.core.resilience.invoker import ResilientInvoker

DECLARATIONS_ATTR = "__resilience__"


@dataclass
class Declarations:
    gate: Optional[GatePolicy] = None
    retry: Optional[RetryPolicy] = None

    @property
    def empty(self) -> bool:
        return self.gate is None and self.retry is None


def declarations_of(func: Callable[..., Any]) -> Optional[Declarations]:
    target = getattr(func, "__func__", func)
    return getattr(target, DECLARATIONS_ATTR, None)


def _declare(func: Callable[..., Any]) -> Declarations:
    decl = getattr(func, DECLARATIONS_ATTR, None)
    if decl is None:
        decl = Declarations()
        setattr(func, DECLARATIONS_ATTR, decl)
    return decl


def concurrency_limit(limit: int) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    policy = GatePolicy(limit=limit)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        _declare(func).gate = policy
        return func

    return decorator


def retryable(
    max_attempts: int,
    includes: Sequence[type[BaseException]] = (),
    *,
    predicate: Optional[Predicate] = None,
    subclasses: bool = False,
    backoff: Any = None,
    unwrap: Sequence[type[BaseException]] = (),
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Declare a retry policy.

    Either list the retryable exception types in ``includes`` (exact type
    match unless ``subclasses``) or pass an explicit ``predicate``.
    """
    if predicate is not None and includes:
        raise ValueError("Pass either includes or predicate, not both")
    if predicate is None:
        predicate = include_types(*includes, subclasses=subclasses) if includes else never_retry
    options: Dict[str, Any] = {"unwrap": tuple(unwrap)}
    if backoff is not None:
        options["backoff"] = backoff
    policy = RetryPolicy(max_attempts=max_attempts, inclusion=predicate, **options)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        _declare(func).retry = policy
        return func

    return decorator


class ResilientCallable:
    """Async wrapper with the same arguments as the callable it protects."""

    def __init__(
        self,
        func: Callable[..., Any],
        *,
        retry_policy: Optional[RetryPolicy] = None,
        gate: Optional[AdmissionGate] = None,
        retry: Optional[RetryPort] = None,
        sink: Optional[CallEventSink] = None,
        clock: Optional[ClockPort] = None,
        name: Optional[str] = None,
    ) -> None:
        self.func = func
        self.retry_policy = retry_policy or RetryPolicy()
        self.gate = gate
        self.name = name or getattr(func, "__qualname__", repr(func))
        # template invoker; per-call invokers share its engine, gate and sink
        self.invoker = ResilientInvoker(
            func,
            retry_policy=self.retry_policy,
            gate=gate,
            retry=retry,
            sink=sink,
            clock=clock,
            name=self.name,
        )
        functools.update_wrapper(self, func)

    async def __call__(self, *args: Any, **kwargs: Any) -> Any:
        operation = functools.partial(self.func, *args, **kwargs) if (args or kwargs) else self.func
        invoker = ResilientInvoker(
            operation,
            retry_policy=self.retry_policy,
            gate=self.gate,
            retry=self.invoker.retry,
            sink=self.invoker.sink,
            clock=self.invoker.clock,
            name=self.name,
        )
        return await invoker.invoke()

    def __repr__(self) -> str:
        return f"<ResilientCallable {self.invoker!r}>"


def protect(
    operation: Callable[..., Any],
    *,
    gate_policy: Optional[GatePolicy] = None,
    retry_policy: Optional[RetryPolicy] = None,
    gate: Optional[AdmissionGate] = None,
    retry: Optional[RetryPort] = None,
    sink: Optional[CallEventSink] = None,
    clock: Optional[ClockPort] = None,
    name: Optional[str] = None,
) -> ResilientCallable:
    """Wrap ``operation`` explicitly, without decorators.

    Policies default to the ones declared on the callable, if any. A gate is
    created from ``gate_policy`` unless an existing ``gate`` is shared in.
    """
    decl = declarations_of(operation) or Declarations()
    gate_policy = gate_policy or decl.gate
    name = name or getattr(operation, "__qualname__", None)
    if gate is None and gate_policy is not None:
        gate = AdmissionGate(gate_policy, name=name or "gate")
    return ResilientCallable(
        operation,
        retry_policy=retry_policy or decl.retry,
        gate=gate,
        retry=retry,
        sink=sink,
        clock=clock,
        name=name,
    )


def bind_resilient_methods(
    owner: object,
    *,
    retry: Optional[RetryPort] = None,
    sink: Optional[CallEventSink] = None,
    clock: Optional[ClockPort] = None,
) -> Dict[str, ResilientCallable]:
    """Install protected wrappers for every declared method of ``owner``."""
    bound: Dict[str, ResilientCallable] = {}
    seen: set[str] = set()
    for klass in type(owner).__mro__:
        for attr, value in vars(klass).items():
            if attr in seen:
                continue
            seen.add(attr)
            if not inspect.isfunction(value):
                continue
            decl = declarations_of(value)
            if decl is None or decl.empty:
                continue
            name = f"{type(owner).__name__}.{attr}"
            wrapper = protect(
                getattr(owner, attr),
                gate_policy=decl.gate,
                retry_policy=decl.retry,
                retry=retry,
                sink=sink,
                clock=clock,
                name=name,
            )
            setattr(owner, attr, wrapper)
            bound[attr] = wrapper
    return bound


class ResilientMethods:
    """Base class whose declared methods are protected at construction time."""

    def __init__(
        self,
        *,
        call_events: Optional[CallEventSink] = None,
        retry: Optional[RetryPort] = None,
        clock: Optional[ClockPort] = None,
    ) -> None:
        self._resilient = bind_resilient_methods(self, retry=retry, sink=call_events, clock=clock)

    @property
    def resilience_gates(self) -> Dict[str, AdmissionGate]:
        return {attr: w.gate for attr, w in self._resilient.items() if w.gate is not None}

    def close_resilience(self) -> None:
        """Shut down this owner's gates; in-flight calls finish normally."""
        for gate in self.resilience_gates.values():
            gate.shutdown()
