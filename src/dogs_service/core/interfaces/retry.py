from typing import Any, Awaitable, Callable, Optional, Protocol

from dogs_service.core.interfaces.call_events import CallEventSink
from dogs_service.core.models.call_record import InvocationContext
from dogs_service.core.models.policies import RetryPolicy
from dogs_service.core.resilience.cancellation import CancellationToken


class RetryPort(Protocol):
    """Abstract retry engine for async operations.

    Implementations re-invoke a failing operation while its failure matches the
    policy's inclusion predicate, up to ``policy.max_attempts`` invocations.
    The contract keeps the core decoupled from a specific library (tenacity).
    """

    async def execute(
        self,
        func: Callable[[], Awaitable[Any]],
        policy: RetryPolicy,
        *,
        context: InvocationContext,
        token: Optional[CancellationToken] = None,
        sink: Optional[CallEventSink] = None,
    ) -> Any:  # pragma: no cover - protocol
        """Run ``func`` under ``policy``.

        Returns:
            Result of the first successful attempt, unchanged.
        Raises:
            The original exception of a non-retryable failure, or the last
            exception once attempts are exhausted (both annotated with the
            outcome and attempt count). `CallCancelled` if the token fired
            before another attempt could start. `RetryInternal` if the
            backoff timer itself failed.
        """
        ...
