"""Policy-decorated invoker: admission gate around the retry engine.

Composition order is fixed: the gate is outside the retry loop. One permit is
held for the whole call (all of its attempts), so at most ``limit`` calls are
active at once no matter how many of them are retrying.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from dogs_service.adapters.clock import SystemClock
from dogs_service.adapters.retry_tenacity import TenacityRetryAdapter
from dogs_service.core.exceptions import CallCancelled, GateClosed
from dogs_service.core.interfaces.call_events import CallEventSink
from dogs_service.core.interfaces.clock import ClockPort
from dogs_service.core.interfaces.retry import RetryPort
from dogs_service.core.models.call_record import CallOutcome, InvocationContext
from dogs_service.core.models.policies import RetryPolicy
from dogs_service.core.resilience.cancellation import CancellationToken, resolve_token
from dogs_service.core.resilience.events import emit
from dogs_service.core.resilience.gate import AdmissionGate

logger = logging.getLogger(__name__)

Operation = Callable[[], Union[Any, Awaitable[Any]]]


def _operation_name(operation: Callable[..., Any]) -> str:
    target = operation.func if isinstance(operation, functools.partial) else operation
    return getattr(target, "__qualname__", None) or type(target).__name__


def as_async(operation: Operation) -> Callable[[], Awaitable[Any]]:
    """Adapt a sync operation so it runs on a worker thread."""
    target = operation.func if isinstance(operation, functools.partial) else operation
    if inspect.iscoroutinefunction(target) or inspect.iscoroutinefunction(
        getattr(target, "__call__", None)
    ):
        return operation  # type: ignore[return-value]

    async def run_in_thread() -> Any:
        result = await asyncio.to_thread(operation)
        if inspect.isawaitable(result):
            return await result
        return result

    return run_in_thread


class ResilientInvoker:
    """Runs one operation under an optional gate and a retry policy.

    Args:
        operation: zero-argument callable (sync or async)
        retry_policy: defaults to a single attempt with no retry
        gate: shared admission gate; None means unbounded concurrency
        retry: retry engine (tenacity adapter by default)
        sink: receives a `CallRecord` per retried attempt and per finished call
        clock: time source for elapsed times; defaults to the retry engine's clock
    """

    def __init__(
        self,
        operation: Operation,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        gate: Optional[AdmissionGate] = None,
        retry: Optional[RetryPort] = None,
        sink: Optional[CallEventSink] = None,
        clock: Optional[ClockPort] = None,
        name: Optional[str] = None,
    ) -> None:
        self.operation = operation
        self.retry_policy = retry_policy or RetryPolicy()
        self.gate = gate
        self.retry = retry or TenacityRetryAdapter(clock=clock)
        self.sink = sink
        self.clock: ClockPort = clock or getattr(self.retry, "clock", None) or SystemClock()
        self.name = name or _operation_name(operation)
        self._call = as_async(operation)

    async def invoke(self, token: Optional[CancellationToken] = None) -> Any:
        """Acquire a permit, run the operation under the retry policy, release.

        Returns exactly what the successful attempt returned.
        """
        token = resolve_token(token)
        context = InvocationContext(operation=self.name, started_at=self.clock.monotonic())

        if self.gate is None:
            return await self._run(context, token)

        try:
            permit = await self.gate.acquire(token)
        except GateClosed as exc:
            emit(self.sink, context.record(CallOutcome.gate_closed, self.clock.monotonic(), error=exc))
            raise
        except CallCancelled as exc:
            emit(self.sink, context.record(CallOutcome.cancelled, self.clock.monotonic(), error=exc))
            raise

        try:
            return await self._run(context, token)
        finally:
            self.gate.release(permit)

    async def _run(self, context: InvocationContext, token: Optional[CancellationToken]) -> Any:
        logger.debug(f"[invoker:start] op={self.name} call_id={context.call_id}")
        return await self.retry.execute(
            self._call,
            self.retry_policy,
            context=context,
            token=token,
            sink=self.sink,
        )

    async def __call__(self, token: Optional[CancellationToken] = None) -> Any:
        return await self.invoke(token)

    def __repr__(self) -> str:
        gate = f"limit={self.gate.limit}" if self.gate else "unbounded"
        return f"<ResilientInvoker op={self.name} {gate} max_attempts={self.retry_policy.max_attempts}>"
