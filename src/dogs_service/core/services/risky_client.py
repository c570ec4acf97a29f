from typing import Optional

from dogs_service.core.exceptions import BadError
from dogs_service.core.interfaces.call_events import CallEventSink
from dogs_service.core.interfaces.clock import ClockPort
from dogs_service.core.interfaces.retry import RetryPort
from dogs_service.core.resilience.binding import (
    ResilientMethods,
    concurrency_limit,
    retryable,
)
from dogs_service.core.settings import logger


class RiskyClient(ResilientMethods):
    """Demo client whose first two calls fail with `BadError`."""

    def __init__(
        self,
        fail_times: int = 2,
        *,
        call_events: Optional[CallEventSink] = None,
        retry: Optional[RetryPort] = None,
        clock: Optional[ClockPort] = None,
    ) -> None:
        self.fail_times = fail_times
        self.count = 0
        super().__init__(call_events=call_events, retry=retry, clock=clock)

    @concurrency_limit(10)
    @retryable(max_attempts=4, includes=(BadError,))
    async def do_something_that_might_fail(self) -> None:
        self.count += 1
        if self.count <= self.fail_times:
            logger.info(f"[risky:attempt] trying... count={self.count}")
            raise BadError(f"attempt {self.count} failed")
        logger.info(f"[risky:attempt] done count={self.count}")
