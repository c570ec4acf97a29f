import asyncio
from typing import Any, Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from dogs_service.adapters.clock import SystemClock
from dogs_service.core.exceptions import (
    CallCancelled,
    ErrorKind,
    ResilienceError,
    RetryInternal,
    annotate,
    unwrap,
)
from dogs_service.core.interfaces.call_events import CallEventSink
from dogs_service.core.interfaces.clock import ClockPort
from dogs_service.core.models.call_record import CallOutcome, InvocationContext
from dogs_service.core.models.policies import RetryPolicy
from dogs_service.core.resilience.cancellation import (
    CancellationToken,
    resolve_token,
    wait_cancellable,
)
from dogs_service.core.resilience.events import emit


class TenacityRetryAdapter:
    """Tenacity-based retry engine implementing RetryPort.

    Attempts of one call run strictly in sequence. The backoff sleep goes
    through the injected clock and doubles as the cancellation point between
    attempts: a fired token stops the call before the next attempt starts,
    even when the backoff is zero.
    """

    def __init__(self, clock: Optional[ClockPort] = None) -> None:
        self.clock = clock or SystemClock()

    def _is_retryable(self, policy: RetryPolicy) -> Callable[[BaseException], bool]:
        def predicate(exc: BaseException) -> bool:
            # CancelledError, KeyboardInterrupt and SystemExit always propagate
            if not isinstance(exc, Exception):
                return False
            return bool(policy.inclusion(unwrap(exc, policy.unwrap)))

        return predicate

    async def execute(
        self,
        func: Callable[[], Awaitable[Any]],
        policy: RetryPolicy,
        *,
        context: InvocationContext,
        token: Optional[CancellationToken] = None,
        sink: Optional[CallEventSink] = None,
    ) -> Any:
        token = resolve_token(token)
        is_retryable = self._is_retryable(policy)

        async def cancellable_sleep(seconds: float) -> None:
            try:
                completed = await wait_cancellable(self.clock.sleep(float(seconds)), token)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                raise RetryInternal(f"Backoff timer failed: {exc}") from exc
            if not completed:
                raise CallCancelled(
                    f"Call {context.call_id} cancelled after attempt {context.attempt}",
                    attempts=context.attempt,
                ) from context.last_error

        def before_sleep(retry_state: RetryCallState) -> None:
            if token is not None and token.cancelled:
                # no further attempt will start; the cancelled record follows
                return
            emit(
                sink,
                context.record(
                    CallOutcome.retry,
                    self.clock.monotonic(),
                    error=unwrap(context.last_error, policy.unwrap) if context.last_error else None,
                    attempt=retry_state.attempt_number,
                ),
            )

        retrying = AsyncRetrying(
            sleep=cancellable_sleep,
            stop=stop_after_attempt(policy.max_attempts),
            wait=policy.backoff,
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    context.attempt = attempt.retry_state.attempt_number
                    try:
                        result = await func()
                    except BaseException as exc:
                        context.last_error = exc
                        raise
                    emit(sink, context.record(CallOutcome.success, self.clock.monotonic()))
                    return result
        except CallCancelled as exc:
            emit(sink, context.record(CallOutcome.cancelled, self.clock.monotonic(), error=context.last_error))
            raise exc
        except RetryInternal as exc:
            emit(sink, context.record(CallOutcome.internal, self.clock.monotonic(), error=exc))
            raise exc
        except Exception as exc:
            if exc is not context.last_error:
                # raised by the engine machinery (e.g. a broken wait strategy), not by the operation
                emit(sink, context.record(CallOutcome.internal, self.clock.monotonic(), error=exc))
                if isinstance(exc, ResilienceError):
                    raise
                raise RetryInternal(f"Retry engine failed: {exc}") from exc
            if is_retryable(exc):
                outcome, kind = CallOutcome.exhausted, ErrorKind.exhausted
            else:
                outcome, kind = CallOutcome.non_retryable, ErrorKind.non_retryable
            emit(sink, context.record(outcome, self.clock.monotonic(), error=unwrap(exc, policy.unwrap)))
            raise annotate(exc, kind, context.attempt)

        # AsyncRetrying only stops iterating without an outcome if it was misconfigured
        raise RetryInternal("Retry loop completed without success or exception.")
